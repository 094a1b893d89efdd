"""
Quick quote — material + post-process estimate for a set of RFQ parts.

Loads the quick-quote settings, material price history and post-process
catalogue once, then runs MaterialPriceEstimator and PostProcessEngine per
part and totals everything at the request's global margin.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.quotation_schema import QuickQuoteRequest, RfqPartIn
from app.services.costing_errors import DataUnavailableError
from app.services.material_estimator import MaterialEstimate, MaterialPriceEstimator
from app.services.post_process_engine import (
    AppliedPostProcess,
    PostProcessEngine,
    QuotedPart,
    RfqPart,
    quick_quote_totals,
)
from app.services.quotation_repository import (
    load_materials,
    load_post_process_types,
    load_quick_quote_settings,
    material_inputs,
)

logger = logging.getLogger("fhx-costing.quick-quote")


def _rfq_part(part: RfqPartIn) -> RfqPart:
    return RfqPart(
        part_id=part.part_id,
        quantity_requested=part.quantity_requested,
        part_number=part.part_number,
        net_weight_kg=part.estimated_net_weight_kg,
        surface_area_m2=part.estimated_surface_area_m2,
        post_processes=tuple(
            AppliedPostProcess(
                type_id=pp.type_id,
                complexity=pp.complexity,
                override_unit_cost=pp.override_unit_cost,
                override_setup_fee=pp.override_setup_fee,
            )
            for pp in part.post_processes
        ),
    )


async def estimate_material(
    db: AsyncSession,
    material_id: str,
    net_weight_kg: Any,
    quantity: int,
    use_p80: Optional[bool] = None,
    as_of: Optional[date] = None,
) -> MaterialEstimate:
    """
    Single-material estimate from stored price history.

    Raises:
        DataUnavailableError: unknown material or no price records.
        ValidationError: bad yield, weight or quantity.
    """
    settings = await load_quick_quote_settings(db)
    rows = await load_materials(db, [material_id])
    row = rows.get(material_id)
    if row is None:
        raise DataUnavailableError(f"Material {material_id} not found", material_id=material_id)
    material, records = material_inputs(row, settings)
    estimator = MaterialPriceEstimator.from_settings(settings, as_of=as_of)
    return estimator.estimate(records, material, net_weight_kg, quantity, use_p80=use_p80)


async def run_quick_quote(db: AsyncSession, request: QuickQuoteRequest) -> Dict[str, Any]:
    settings = await load_quick_quote_settings(db)
    estimator = MaterialPriceEstimator.from_settings(settings, as_of=request.as_of)
    post_processes = PostProcessEngine(await load_post_process_types(db), settings.complexity_multipliers)
    materials = await load_materials(db, [p.material_id for p in request.parts if p.material_id])

    quoted: List[QuotedPart] = []
    details: List[Dict[str, Any]] = []
    for part in request.parts:
        rfq = _rfq_part(part)
        pp = post_processes.cost_per_part(rfq)

        estimate: Optional[MaterialEstimate] = None
        reason = None
        row = materials.get(part.material_id) if part.material_id else None
        if part.material_id is None:
            reason = "No material selected"
        elif row is None:
            reason = f"Material {part.material_id} not found"
        elif part.estimated_net_weight_kg is None:
            reason = "No net weight"
        else:
            material, records = material_inputs(row, settings)
            try:
                estimate = estimator.estimate(
                    records, material, part.estimated_net_weight_kg, part.quantity_requested,
                    use_p80=request.use_p80,
                )
            except DataUnavailableError as e:
                reason = str(e)
                logger.info("No material estimate for part %s: %s", part.part_id, e,
                            extra={"material_id": part.material_id})

        quoted.append(QuotedPart(
            part_id=part.part_id,
            quantity=part.quantity_requested,
            material_cost_per_part=estimate.material_cost_per_part if estimate else None,
            post_process_cost_per_part=pp["post_process_cost_per_part"],
            manufacturing_cost_per_part=part.manufacturing_cost_per_part,
        ))
        details.append({
            "part_id": part.part_id,
            "part_number": part.part_number,
            "quantity": part.quantity_requested,
            "material_estimate": estimate.to_dict() if estimate else None,
            "no_estimate_reason": reason,
            "post_process_cost_per_part": float(pp["post_process_cost_per_part"]),
            "post_process_lines": pp["lines"],
            "manufacturing_cost_per_part": float(part.manufacturing_cost_per_part),
        })

    totals = quick_quote_totals(quoted, request.global_margin_percent)
    for d, line in zip(details, totals["parts"]):
        d.update(line)

    return {
        "customer_name": request.customer_name,
        "rfq_reference": request.rfq_reference,
        "basis": "P80" if (settings.use_p80 if request.use_p80 is None else request.use_p80) else "P50",
        **totals,
        "parts": details,
    }
