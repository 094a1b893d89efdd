"""
conftest.py — Shared pytest fixtures for the FHX quotation backend test suite.

Engine tests are pure unit tests.  Repository and route tests run against a
throw-away SQLite file (aiosqlite) created per test under ``tmp_path``; the
async session helpers drive coroutines with ``asyncio.run`` so no async
pytest plugin is needed.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import asyncio
import sys
import os
from datetime import date
from decimal import Decimal

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# CostRollupEngine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def fallback_engine():
    """
    CostRollupEngine with no resource table, so every routing line is priced
    at the fallback rate.

      cost_per_hour = 60 €/h (1 €/min), material markup = 20 %, subcon markup = 0 %
    """
    from app.services.costing_engine import CostRollupEngine
    return CostRollupEngine(
        material_markup_percent=Decimal("20"),
        subcon_markup_percent=Decimal("0"),
        cost_per_hour_fallback=Decimal("60"),
    )


@pytest.fixture(scope="session")
def resource_engine():
    """
    CostRollupEngine with a resource table:
      CNC1  = 1.50 €/min
      ASSY  = 0.75 €/min
      SUB01 = subcon resource (routing cost 0)
    Fallback 55 €/h, material markup 10 %, subcon markup 20 %.
    """
    from app.services.costing_engine import CostRollupEngine, Resource
    return CostRollupEngine(
        material_markup_percent=Decimal("10"),
        subcon_markup_percent=Decimal("20"),
        cost_per_hour_fallback=Decimal("55"),
        resources=[
            Resource("CNC1", Decimal("1.50")),
            Resource("ASSY", Decimal("0.75")),
            Resource("SUB01", Decimal("0"), is_subcon=True),
        ],
    )


@pytest.fixture
def scenario_a():
    """
    One routing line (setup 10 min, run 2 min), one material line
    (5 € × 2 per part), no subcon, tier 500 @ 35 %.
    """
    from app.services.costing_engine import MaterialLine, QuantityTier, RoutingLine
    return {
        "materials": [MaterialLine(Decimal("5"), Decimal("2"), category="RAW", vendor="V100")],
        "subcons": [],
        "routings": [RoutingLine(10, "CNC-UNKNOWN", Decimal("10"), Decimal("2"))],
        "tiers": [QuantityTier(500, Decimal("35"))],
    }


# ---------------------------------------------------------------------------
# MaterialPriceEstimator fixtures
# ---------------------------------------------------------------------------

AS_OF = date(2026, 6, 1)


@pytest.fixture(scope="session")
def as_of():
    return AS_OF


@pytest.fixture(scope="session")
def estimator():
    """Estimator with 3 / 5 / 10 % contingency, P50 basis and a fixed "today"."""
    from app.services.material_estimator import MaterialPriceEstimator
    return MaterialPriceEstimator(
        contingency_by_volatility={"LOW": "0.03", "MEDIUM": "0.05", "HIGH": "0.10"},
        use_p80=False,
        as_of=AS_OF,
    )


@pytest.fixture
def steel():
    """MEDIUM volatility, 60 % yield, no inflation."""
    from app.services.material_estimator import Material
    return Material("MAT-S355", Decimal("0.6"), Decimal("0"), "MEDIUM", name="S355 plate")


@pytest.fixture
def price_records_10_12_14():
    """Three records dated AS_OF at 10 / 12 / 14 €/kg."""
    from app.services.material_estimator import PriceRecord
    return [
        PriceRecord("MAT-S355", AS_OF, Decimal("10"), "Supplier A"),
        PriceRecord("MAT-S355", AS_OF, Decimal("12"), "Supplier B"),
        PriceRecord("MAT-S355", AS_OF, Decimal("14"), "Supplier C"),
    ]


# ---------------------------------------------------------------------------
# Database fixtures (SQLite via aiosqlite)
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(tmp_path):
    """
    async_sessionmaker bound to a fresh SQLite file with every table created.

    NullPool keeps no connection between ``asyncio.run`` calls, so the same
    factory can be used from several event loops (tests and TestClient).
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool
    from app.db import Base
    from app.models import orm_models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fhx_test.db'}", poolclass=NullPool)

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(session_factory):
    """
    Run ``fn(session)`` in a fresh session and event loop; returns its result.

        quotation = run_db(lambda db: repo.save_quotation(db, payload))
    """
    def _run(fn):
        async def _go():
            async with session_factory() as session:
                return await fn(session)
        return asyncio.run(_go())
    return _run


@pytest.fixture
def client(session_factory):
    """FastAPI TestClient with ``get_db`` bound to the SQLite test database."""
    from fastapi.testclient import TestClient
    from app.db import get_db
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def quotation_payload():
    """
    Quotation body: one material (4 € × 1.5), one CNC routing op (setup 30,
    run 1.5 min), one subcon priced at each of the three default tiers.
    """
    return {
        "quote_number": "Q-2026-0042",
        "customer": "Acme Pumps",
        "customer_code": "ACM01",
        "part_number": "PX-1001",
        "revision": "B",
        "material_markup": "10",
        "subcon_markup": "20",
        "materials": [
            {"line_number": 1, "vendor_no": "V100", "material_description": "Bar 40 mm",
             "category": "RAW", "std_cost_est": "4", "qty_per_unit": "1.5"},
        ],
        "subcons": [
            {"line_number": 1, "subcon_id": 1, "vendor_no": "PLT", "process_description": "Zinc plating",
             "quantity": qty, "std_cost_est": cost}
            for qty, cost in ((500, "0.80"), (750, "0.70"), (1000, "0.60"))
        ],
        "routings": [
            {"op_no": 10, "resource_no": "CNC1", "operation_details": "Turn", "setup_time": "30", "run_time": "1.5"},
        ],
        "volumes": [
            {"quantity": 500, "margin": "45"},
            {"quantity": 750, "margin": "40"},
            {"quantity": 1000, "margin": "35"},
        ],
    }
