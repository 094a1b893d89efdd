"""Settings routes — quotation / quick-quote key-value settings, routing resources and the tool library."""
import logging
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.db import get_db
from app.models.orm_models import QuickQuoteSetting, QuotationResource, QuotationSetting, QuotationToolLibrary
from app.models.quotation_schema import ResourceIn, SettingsUpdate, ToolLibraryIn
from app.services import quotation_repository as repo
from app.services.quotation_settings import QuickQuoteSettings, QuotationSettings

router = APIRouter(prefix="/api/settings", tags=["Settings"])
logger = logging.getLogger("fhx-api")


def _resolved_quotation(settings: QuotationSettings) -> dict:
    return {
        "material_markup_percent": float(settings.material_markup_percent),
        "subcon_markup_percent": float(settings.subcon_markup_percent),
        "cost_per_hour": float(settings.cost_per_hour),
        "tier_margins": [float(m) for m in settings.tier_margins],
        "strict_subcon_tiers": settings.strict_subcon_tiers,
    }


def _resolved_quick_quote(settings: QuickQuoteSettings) -> dict:
    return {
        "use_p80": settings.use_p80,
        "contingency_by_volatility": {k: float(v) for k, v in settings.contingency_by_volatility.items()},
        "complexity_multipliers": {k: float(v) for k, v in settings.complexity_multipliers.items()},
        "default_yield": float(settings.default_yield),
        "default_inflation_rate": float(settings.default_inflation_rate),
    }


# ─── Quotation settings ─────────────────────────────────────────────────────

@router.get("/quotation")
async def get_quotation_settings(db: AsyncSession = Depends(get_db)):
    """Stored key-value rows plus the values the calculators will actually use."""
    raw = await repo.load_settings(db, QuotationSetting)
    return {"settings": raw, "resolved": _resolved_quotation(QuotationSettings.from_settings(raw))}


@router.put("/quotation")
async def update_quotation_settings(payload: SettingsUpdate, db: AsyncSession = Depends(get_db)):
    """UPSERT quotation settings."""
    raw = await repo.upsert_settings(db, QuotationSetting, payload.settings)
    logger.info(f"Quotation settings updated: {sorted(payload.settings)}")
    return {"settings": raw, "resolved": _resolved_quotation(QuotationSettings.from_settings(raw))}


# ─── Quick-quote settings ───────────────────────────────────────────────────

@router.get("/quick-quote")
async def get_quick_quote_settings(db: AsyncSession = Depends(get_db)):
    raw = await repo.load_settings(db, QuickQuoteSetting)
    return {"settings": raw, "resolved": _resolved_quick_quote(QuickQuoteSettings.from_settings(raw))}


@router.put("/quick-quote")
async def update_quick_quote_settings(payload: SettingsUpdate, db: AsyncSession = Depends(get_db)):
    """UPSERT quick-quote settings."""
    raw = await repo.upsert_settings(db, QuickQuoteSetting, payload.settings)
    logger.info(f"Quick-quote settings updated: {sorted(payload.settings)}")
    return {"settings": raw, "resolved": _resolved_quick_quote(QuickQuoteSettings.from_settings(raw))}


# ─── Resources ──────────────────────────────────────────────────────────────

@router.get("/resources")
async def list_resources(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(QuotationResource).order_by(QuotationResource.resource_no))
    return [
        {
            "resource_no": r.resource_no,
            "description": r.description,
            "cost_per_minute": float(r.cost_per_minute),
            "cost_per_hour": round(float(r.cost_per_minute) * 60, 2),
            "is_subcon": r.is_subcon,
            "is_active": r.is_active,
        }
        for r in result.scalars().all()
    ]


@router.post("/resources")
async def upsert_resource(payload: ResourceIn, db: AsyncSession = Depends(get_db)):
    """UPSERT a routing resource by resource number."""
    if payload.cost_per_minute < 0:
        raise HTTPException(status_code=422, detail="cost_per_minute must be non-negative")

    result = await db.execute(select(QuotationResource).where(QuotationResource.resource_no == payload.resource_no))
    resource = result.scalar_one_or_none()
    if not resource:
        resource = QuotationResource(resource_no=payload.resource_no)
        db.add(resource)

    for field, value in payload.model_dump(exclude_none=True).items():
        setattr(resource, field, value)
    resource.is_active = True

    await db.commit()
    return {"status": "updated", "resource": payload.model_dump(mode="json")}


# ─── Tool library ───────────────────────────────────────────────────────────

@router.get("/tools")
async def list_tools(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(QuotationToolLibrary)
        .where(QuotationToolLibrary.is_active.is_(True))
        .order_by(QuotationToolLibrary.tool_name)
    )
    return [{"tool_name": t.tool_name, "default_price": float(t.default_price)} for t in result.scalars().all()]


@router.post("/tools")
async def upsert_tool(payload: ToolLibraryIn, db: AsyncSession = Depends(get_db)):
    """UPSERT a library tool by name; quotation tools posted without a price take its default price."""
    name = payload.tool_name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="tool_name must not be blank")

    result = await db.execute(select(QuotationToolLibrary).where(QuotationToolLibrary.tool_name == name))
    tool = result.scalar_one_or_none()
    if not tool:
        tool = QuotationToolLibrary(tool_name=name)
        db.add(tool)
    tool.default_price = payload.default_price
    tool.is_active = True

    await db.commit()
    logger.info(f"Tool library updated: {name}")
    return {"status": "updated", "tool": {"tool_name": name, "default_price": float(payload.default_price)}}
