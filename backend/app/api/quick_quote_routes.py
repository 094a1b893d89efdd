"""Quick-quote routes — material / post-process estimate, PERT and production planning."""
import os
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.models.quotation_schema import ProductionPlanIn, QuickQuoteRequest, ThreePointIn
from app.services.costing_errors import DataUnavailableError, ValidationError
from app.services.pert_engine import three_point_estimate
from app.services.production_engine import ProductionPlan, ProductionPlanner
from app.services.quick_quote_service import estimate_material, run_quick_quote
from app.services.quotation_repository import load_company_settings
from app.services.report_engine import ReportEngine

router = APIRouter(prefix="/api/quick-quote", tags=["Quick Quote"])
logger = logging.getLogger("fhx-api")


@router.post("/estimate")
async def quick_quote_estimate(payload: QuickQuoteRequest, db: AsyncSession = Depends(get_db)):
    """Material + post-process cost and sales price for every RFQ part."""
    try:
        return await run_quick_quote(db, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/pdf")
async def quick_quote_pdf(payload: QuickQuoteRequest, db: AsyncSession = Depends(get_db)):
    try:
        result = await run_quick_quote(db, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    report = ReportEngine(company_settings=await load_company_settings(db))
    pdf_path = report.quick_quote_pdf(result)
    if not pdf_path or not os.path.exists(pdf_path):
        raise HTTPException(status_code=500, detail="PDF generation failed")
    return FileResponse(path=pdf_path, media_type="application/pdf", filename=os.path.basename(pdf_path))


@router.get("/materials/{material_id}/estimate")
async def material_estimate(
    material_id: str,
    net_weight_kg: float = Query(..., gt=0),
    quantity: int = Query(..., gt=0),
    use_p80: Optional[bool] = None,
    as_of: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
):
    """PERT material estimate for one material; 404 "no estimate" when there is no price history."""
    try:
        estimate = await estimate_material(db, material_id, net_weight_kg, quantity, use_p80=use_p80, as_of=as_of)
    except DataUnavailableError as e:
        logger.info(f"No estimate for material {material_id}: {e}", extra={"material_id": material_id})
        raise HTTPException(status_code=404, detail=f"No estimate: {e}")
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"material_id": material_id, **estimate.to_dict()}


@router.post("/pert")
async def pert(payload: ThreePointIn):
    try:
        return three_point_estimate(payload.optimistic, payload.most_likely, payload.pessimistic)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/production")
async def production(payload: ProductionPlanIn):
    try:
        planner = ProductionPlanner(ProductionPlan(
            cycle_time_seconds=payload.cycle_time_per_piece,
            hours_per_day=payload.production_hours_per_day,
            effectiveness_percent=payload.production_effectiveness,
            hourly_rate=payload.hourly_rate,
            programming_hours=payload.programming_hours,
            programming_rate=payload.programming_rate,
            setup_hours=payload.setup_hours,
            setup_rate=payload.setup_rate,
        ))
        return {"tiers": planner.plan_tiers(payload.quantities)}
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
