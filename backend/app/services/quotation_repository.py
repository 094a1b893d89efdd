"""
Quotation repository — loads settings / resources / price history and saves
quotations with their recomputed volume pricing.

A save is one transaction: volume pricing is computed first, then the child
rows of the quotation are deleted and re-inserted and the whole unit is
committed once.  Any failure rolls back and leaves the previous rows intact.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orm_models import (
    PostProcessTypeRow,
    QuickQuoteSetting,
    QuotationMaterial,
    QuotationResource,
    QuotationRouting,
    QuotationSetting,
    QuotationSubcon,
    QuotationTool,
    QuotationToolLibrary,
    QuotationVolumePricing,
    QuoteMaterial,
    SystemQuotation,
    gen_uuid,
)
from app.models.quotation_schema import QuotationIn, QuotationLines, ToolLineIn
from app.services.costing_engine import (
    CostRollupEngine,
    MaterialLine,
    QuantityTier,
    Resource,
    RoutingLine,
    SubconLine,
    TierCost,
    ToolLine,
    money,
)
from app.services.costing_errors import QuotationLockedError, ValidationError
from app.services.material_estimator import Material, PriceRecord
from app.services.post_process_engine import PostProcessType
from app.services.quotation_settings import QuickQuoteSettings, QuotationSettings

logger = logging.getLogger("fhx-db.quotations")

STATUS_DRAFT = "draft"
STATUS_FINALIZED = "finalized"

_CHILD_MODELS = (QuotationMaterial, QuotationSubcon, QuotationRouting, QuotationTool, QuotationVolumePricing)
_HEADER_FIELDS = ("quote_number", "customer", "customer_code", "part_number", "revision", "description", "currency")


# ── Settings & resources ──────────────────────────────────────────────────────

async def load_settings(db: AsyncSession, model: Type = QuotationSetting) -> Dict[str, str]:
    result = await db.execute(select(model.setting_key, model.setting_value))
    return {key: value for key, value in result.all()}


async def load_quotation_settings(db: AsyncSession) -> QuotationSettings:
    return QuotationSettings.from_settings(await load_settings(db, QuotationSetting))


async def load_quick_quote_settings(db: AsyncSession) -> QuickQuoteSettings:
    return QuickQuoteSettings.from_settings(await load_settings(db, QuickQuoteSetting))


async def upsert_settings(db: AsyncSession, model: Type, values: Dict[str, str]) -> Dict[str, str]:
    """UPSERT key-value rows and commit."""
    result = await db.execute(select(model).where(model.setting_key.in_(list(values))))
    existing = {row.setting_key: row for row in result.scalars().all()}
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            db.add(model(setting_key=key, setting_value=str(value)))
        else:
            row.setting_value = str(value)
    await db.commit()
    return await load_settings(db, model)


COMPANY_SETTING_KEYS = ("company_name", "report_header_text", "theme_color_hex", "report_footer_text")


async def load_company_settings(db: AsyncSession) -> Dict[str, str]:
    """Report branding keys from the quotation settings rows."""
    raw = await load_settings(db, QuotationSetting)
    return {key: raw[key] for key in COMPANY_SETTING_KEYS if raw.get(key)}


async def load_tool_prices(db: AsyncSession) -> Dict[str, Decimal]:
    result = await db.execute(
        select(QuotationToolLibrary.tool_name, QuotationToolLibrary.default_price)
        .where(QuotationToolLibrary.is_active.is_(True))
    )
    return {name: price for name, price in result.all()}


async def resolve_tools(db: AsyncSession, tools: Sequence[ToolLineIn]) -> List[ToolLine]:
    """
    Engine tool lines; a tool posted without a price takes the library's default price.

    Raises:
        ValidationError: a priceless tool is not in the library.
    """
    if not tools:
        return []
    library = await load_tool_prices(db) if any(t.price is None for t in tools) else {}
    lines = []
    for t in tools:
        price = t.price
        if price is None:
            price = library.get(t.tool_name)
            if price is None:
                raise ValidationError(f"Tool {t.tool_name!r} has no price and is not in the tool library")
        lines.append(t.to_line(price))
    return lines


async def load_resources(db: AsyncSession) -> List[Resource]:
    result = await db.execute(select(QuotationResource).where(QuotationResource.is_active.is_(True)))
    return [
        Resource(resource_no=r.resource_no, cost_per_minute=r.cost_per_minute, is_subcon=r.is_subcon)
        for r in result.scalars().all()
    ]


# ── Row → engine conversions ──────────────────────────────────────────────────

def stored_tools(rows: Sequence[QuotationTool]) -> List[ToolLine]:
    """Regroup the per-tier tool rows into one ToolLine per line number."""
    grouped: Dict[int, List[QuotationTool]] = {}
    for row in rows:
        grouped.setdefault(row.line_number, []).append(row)
    return [
        ToolLine(
            tool_name=group[0].tool_name,
            price=group[0].price,
            markup_percent=group[0].markup,
            quantities={r.volume: r.quantity for r in group if r.volume is not None},
        )
        for _, group in sorted(grouped.items())
    ]


def quotation_inputs(
    quotation: SystemQuotation,
) -> Tuple[List[MaterialLine], List[SubconLine], List[RoutingLine], List[QuantityTier], List[ToolLine]]:
    """Engine inputs from a stored quotation (tiers come from its volume-pricing rows)."""
    materials = [
        MaterialLine(
            cost_per_unit=m.std_cost_est, quantity_per_unit=m.qty_per_unit,
            category=m.category or "", vendor=m.vendor_no or "",
        )
        for m in quotation.materials
    ]
    subcons = [
        SubconLine(
            vendor_id=s.vendor_no or "", process_description=s.process_description or "",
            cost_per_unit=s.std_cost_est, quantity=s.quantity,
            cert_required=s.certification_required, subcon_id=s.subcon_id,
        )
        for s in quotation.subcons
    ]
    routings = [
        RoutingLine(
            op_number=r.op_no, resource_id=r.resource_no or "",
            setup_time_minutes=r.setup_time, run_time_minutes=r.run_time,
            override_cost=r.override_cost,
        )
        for r in quotation.routings
    ]
    tiers = [QuantityTier(quantity=v.quantity, target_margin_percent=v.margin) for v in quotation.volume_pricing]
    return materials, subcons, routings, tiers, stored_tools(quotation.tools)


def material_inputs(
    material_row: QuoteMaterial, settings: QuickQuoteSettings
) -> Tuple[Material, List[PriceRecord]]:
    """Material + price history; null yield / inflation fall back to the quick-quote defaults."""
    material = Material(
        material_id=material_row.id,
        default_yield=(
            material_row.default_yield if material_row.default_yield is not None else settings.default_yield
        ),
        inflation_rate_per_year=(
            material_row.inflation_rate_per_year
            if material_row.inflation_rate_per_year is not None
            else settings.default_inflation_rate
        ),
        volatility_level=material_row.volatility_level or "MEDIUM",
        name=material_row.name,
    )
    records = [
        PriceRecord(
            material_id=material_row.id, record_date=r.record_date,
            price_per_kg=r.price_per_kg, supplier_name=r.supplier_name or "",
        )
        for r in material_row.price_records
    ]
    return material, records


async def load_materials(db: AsyncSession, material_ids: Sequence[str]) -> Dict[str, QuoteMaterial]:
    if not material_ids:
        return {}
    result = await db.execute(
        select(QuoteMaterial).where(QuoteMaterial.id.in_(list(set(material_ids))), QuoteMaterial.is_active.is_(True))
    )
    return {m.id: m for m in result.scalars().all()}


async def load_post_process_types(db: AsyncSession) -> List[PostProcessType]:
    result = await db.execute(select(PostProcessTypeRow).where(PostProcessTypeRow.is_active.is_(True)))
    return [
        PostProcessType(
            type_id=p.id, name=p.name, pricing_model=p.pricing_model,
            unit_cost=p.unit_cost, setup_fee=p.setup_fee, minimum_lot_charge=p.minimum_lot_charge,
            default_lead_time_days=p.default_lead_time_days,
        )
        for p in result.scalars().all()
    ]


# ── Quotations ────────────────────────────────────────────────────────────────

async def get_quotation(db: AsyncSession, quotation_id: str) -> Optional[SystemQuotation]:
    result = await db.execute(
        select(SystemQuotation)
        .where(SystemQuotation.id == quotation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def calculate_lines(
    db: AsyncSession,
    payload: QuotationLines,
    default_material_markup=None,
    default_subcon_markup=None,
    tools: Optional[Sequence[ToolLine]] = None,
) -> List[TierCost]:
    """Run the roll-up over posted lines against the stored settings, resources and tool library."""
    settings = await load_quotation_settings(db)
    resources = await load_resources(db)
    if tools is None:
        tools = await resolve_tools(db, payload.tools)
    material_markup = payload.material_markup if payload.material_markup is not None else default_material_markup
    subcon_markup = payload.subcon_markup if payload.subcon_markup is not None else default_subcon_markup
    engine = CostRollupEngine.from_settings(settings, resources, material_markup, subcon_markup)
    tiers = [v.to_tier() for v in payload.volumes] or settings.default_tiers()
    return engine.calculate(
        [m.to_line() for m in payload.materials],
        [s.to_line() for s in payload.subcons],
        [r.to_line() for r in payload.routings],
        tiers,
        tools,
    )


def _tool_rows(quotation_id: str, payload: QuotationLines, tools: Sequence[ToolLine]) -> list:
    rows: list = []
    for posted, tool in zip(payload.tools, tools):
        common = dict(
            quotation_id=quotation_id, line_number=posted.line_number, tool_name=tool.tool_name,
            price=tool.price, markup=tool.markup_percent,
        )
        if not tool.quantities:
            rows.append(QuotationTool(**common, volume=None, quantity=Decimal("0"), total=Decimal("0")))
        for volume, count in sorted(tool.quantities.items()):
            rows.append(QuotationTool(**common, volume=volume, quantity=count, total=money(tool.cost_at(volume))))
    return rows


def _child_rows(
    quotation_id: str, payload: QuotationLines, results: Sequence[TierCost], tools: Sequence[ToolLine]
) -> list:
    rows: list = []
    for m in payload.materials:
        rows.append(QuotationMaterial(
            quotation_id=quotation_id, line_number=m.line_number, vendor_no=m.vendor_no,
            vendor_name=m.vendor_name, material_description=m.material_description, category=m.category,
            std_cost_est=m.std_cost_est, qty_per_unit=m.qty_per_unit,
            total_material=m.std_cost_est * m.qty_per_unit,
        ))
    for s in payload.subcons:
        rows.append(QuotationSubcon(
            quotation_id=quotation_id, line_number=s.line_number, subcon_id=s.subcon_id,
            vendor_no=s.vendor_no, vendor_name=s.vendor_name, process_description=s.process_description,
            quantity=s.quantity, std_cost_est=s.std_cost_est,
            certification_required=s.certification_required,
            total_subcon=s.std_cost_est * s.quantity,
        ))
    for r in payload.routings:
        rows.append(QuotationRouting(
            quotation_id=quotation_id, op_no=r.op_no, resource_no=r.resource_no,
            operation_details=r.operation_details, setup_time=r.setup_time, run_time=r.run_time,
            override_cost=r.override_cost,
        ))
    rows.extend(_tool_rows(quotation_id, payload, tools))
    rows.extend(_volume_rows(quotation_id, results))
    return rows


def _volume_rows(quotation_id: str, results: Sequence[TierCost]) -> list:
    return [
        QuotationVolumePricing(
            quotation_id=quotation_id, quantity=t.quantity, margin=t.margin, hours=t.hours,
            cost_per_hour=t.cost_per_hour, labour_cost=t.labour_cost, material_cost=t.material_cost,
            subcon_cost=t.subcon_cost, tooling_cost=t.tooling_cost, total_cost=t.total_cost, cost_per_unit=t.cost_per_unit,
            unit_price_quoted=t.unit_price, total_price=t.total_price,
            used_fallback_rate=t.used_fallback_rate,
        )
        for t in results
    ]


async def replace_quotation_children(
    db: AsyncSession,
    quotation: SystemQuotation,
    payload: QuotationLines,
    results: Sequence[TierCost],
    tools: Sequence[ToolLine] = (),
) -> None:
    """Delete every child row of ``quotation`` and insert the new set. Does not commit."""
    for model in _CHILD_MODELS:
        await db.execute(delete(model).where(model.quotation_id == quotation.id))
    db.add_all(_child_rows(quotation.id, payload, results, tools))


async def save_quotation(
    db: AsyncSession, payload: QuotationIn, quotation_id: Optional[str] = None
) -> Optional[SystemQuotation]:
    """
    Create (``quotation_id`` None) or fully replace a draft quotation.

    Returns the reloaded quotation, or None when ``quotation_id`` does not exist.

    Raises:
        ValidationError: the roll-up rejected the lines; nothing is written.
        QuotationLockedError: the quotation is finalized.
    """
    quotation = None
    if quotation_id is not None:
        quotation = await get_quotation(db, quotation_id)
        if quotation is None:
            return None
        if quotation.status == STATUS_FINALIZED:
            raise QuotationLockedError(f"Quotation {quotation_id} is finalized; revise it to make changes")

    settings = await load_quotation_settings(db)
    default_mm = quotation.material_markup if quotation is not None else settings.material_markup_percent
    default_sm = quotation.subcon_markup if quotation is not None else settings.subcon_markup_percent
    tools = await resolve_tools(db, payload.tools)
    results = await calculate_lines(db, payload, default_mm, default_sm, tools)

    try:
        if quotation is None:
            quotation = SystemQuotation(id=gen_uuid(), status=STATUS_DRAFT, version=1)
            db.add(quotation)
        for name in _HEADER_FIELDS:
            value = getattr(payload, name)
            if value is not None:
                setattr(quotation, name, value)
        quotation.material_markup = payload.material_markup if payload.material_markup is not None else default_mm
        quotation.subcon_markup = payload.subcon_markup if payload.subcon_markup is not None else default_sm

        await replace_quotation_children(db, quotation, payload, results, tools)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Quotation save failed, rolled back: {e}", extra={"quotation_id": quotation_id or ""})
        raise

    logger.info(
        "Quotation saved",
        extra={"quotation_id": quotation.id, "tiers": [t.quantity for t in results]},
    )
    return await get_quotation(db, quotation.id)


async def finalize_quotation(db: AsyncSession, quotation_id: str) -> Optional[SystemQuotation]:
    quotation = await get_quotation(db, quotation_id)
    if quotation is None:
        return None
    quotation.status = STATUS_FINALIZED
    await db.commit()
    logger.info("Quotation finalized", extra={"quotation_id": quotation_id})
    return await get_quotation(db, quotation_id)


async def recalculate_quotation(db: AsyncSession, quotation_id: str) -> Optional[SystemQuotation]:
    """Re-run the roll-up over the stored lines and tiers (after a settings or resource change)."""
    quotation = await get_quotation(db, quotation_id)
    if quotation is None:
        return None
    if quotation.status == STATUS_FINALIZED:
        raise QuotationLockedError(f"Quotation {quotation_id} is finalized; revise it to make changes")

    settings = await load_quotation_settings(db)
    resources = await load_resources(db)
    materials, subcons, routings, tiers, tools = quotation_inputs(quotation)
    engine = CostRollupEngine.from_settings(
        settings, resources, quotation.material_markup, quotation.subcon_markup
    )
    results = engine.calculate(materials, subcons, routings, tiers or settings.default_tiers(), tools)

    try:
        await db.execute(delete(QuotationVolumePricing).where(QuotationVolumePricing.quotation_id == quotation_id))
        db.add_all(_volume_rows(quotation_id, results))
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return await get_quotation(db, quotation_id)


async def revise_quotation(db: AsyncSession, quotation_id: str) -> Optional[SystemQuotation]:
    """Copy a quotation, lines and pricing included, into a new draft one version up."""
    source = await get_quotation(db, quotation_id)
    if source is None:
        return None

    revision = SystemQuotation(
        id=gen_uuid(),
        status=STATUS_DRAFT,
        version=(source.version or 1) + 1,
        material_markup=source.material_markup,
        subcon_markup=source.subcon_markup,
        **{name: getattr(source, name) for name in _HEADER_FIELDS},
    )
    skip = {"id", "quotation_id"}
    try:
        db.add(revision)
        for collection in (source.materials, source.subcons, source.routings, source.tools, source.volume_pricing):
            for row in collection:
                cols = {c.name: getattr(row, c.name) for c in row.__table__.columns if c.name not in skip}
                db.add(type(row)(quotation_id=revision.id, **cols))
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Quotation revised",
        extra={"quotation_id": revision.id, "source_id": quotation_id, "version": revision.version},
    )
    return await get_quotation(db, revision.id)


def quotation_to_dict(quotation: SystemQuotation) -> Dict:
    """JSON-ready view of a quotation with its lines and volume pricing."""
    def _row(row) -> Dict:
        return {c.name: getattr(row, c.name) for c in row.__table__.columns if c.name != "quotation_id"}

    tiers = [_row(v) for v in quotation.volume_pricing]
    return {
        **_row(quotation),
        "materials": [_row(m) for m in quotation.materials],
        "subcons": [_row(s) for s in quotation.subcons],
        "routings": [_row(r) for r in quotation.routings],
        "tools": [_row(t) for t in quotation.tools],
        "volume_pricing": tiers,
    }
