"""
Quotation routes — volume-tier costing, persistence and PDF export.

POST /api/quotations/calculate          — stateless roll-up over posted lines
POST /api/quotations                    — create a draft quotation
GET  /api/quotations/{id}               — quotation with lines and volume pricing
PUT  /api/quotations/{id}               — replace all lines and recompute
POST /api/quotations/{id}/recalculate   — recompute from stored lines
POST /api/quotations/{id}/finalize      — lock the quotation
POST /api/quotations/{id}/revise        — new draft copy, version + 1
GET  /api/quotations/{id}/pdf           — quotation PDF
"""
import os
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.models.quotation_schema import QuotationIn, QuotationLines
from app.services.costing_engine import summarise_tiers
from app.services.costing_errors import QuotationLockedError, ValidationError
from app.services import quotation_repository as repo
from app.services.report_engine import ReportEngine

router = APIRouter(prefix="/api/quotations", tags=["Quotations"])
logger = logging.getLogger("fhx-api")


def _not_found(quotation_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Quotation {quotation_id} not found")


@router.post("/calculate")
async def calculate(payload: QuotationLines, db: AsyncSession = Depends(get_db)):
    """Cost every tier without saving anything."""
    try:
        results = await repo.calculate_lines(db, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        "tiers": [r.to_dict() for r in results],
        "summary": summarise_tiers(results),
    }


@router.post("", status_code=201)
async def create_quotation(payload: QuotationIn, db: AsyncSession = Depends(get_db)):
    try:
        quotation = await repo.save_quotation(db, payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return repo.quotation_to_dict(quotation)


@router.get("/{quotation_id}")
async def get_quotation(quotation_id: str, db: AsyncSession = Depends(get_db)):
    quotation = await repo.get_quotation(db, quotation_id)
    if quotation is None:
        raise _not_found(quotation_id)
    return repo.quotation_to_dict(quotation)


@router.put("/{quotation_id}")
async def update_quotation(quotation_id: str, payload: QuotationIn, db: AsyncSession = Depends(get_db)):
    """Replace every line of a draft quotation and recompute its volume pricing in one transaction."""
    try:
        quotation = await repo.save_quotation(db, payload, quotation_id=quotation_id)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except QuotationLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if quotation is None:
        raise _not_found(quotation_id)
    return repo.quotation_to_dict(quotation)


@router.post("/{quotation_id}/recalculate")
async def recalculate_quotation(quotation_id: str, db: AsyncSession = Depends(get_db)):
    try:
        quotation = await repo.recalculate_quotation(db, quotation_id)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except QuotationLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if quotation is None:
        raise _not_found(quotation_id)
    return repo.quotation_to_dict(quotation)


@router.post("/{quotation_id}/finalize")
async def finalize_quotation(quotation_id: str, db: AsyncSession = Depends(get_db)):
    quotation = await repo.finalize_quotation(db, quotation_id)
    if quotation is None:
        raise _not_found(quotation_id)
    return repo.quotation_to_dict(quotation)


@router.post("/{quotation_id}/revise", status_code=201)
async def revise_quotation(quotation_id: str, db: AsyncSession = Depends(get_db)):
    quotation = await repo.revise_quotation(db, quotation_id)
    if quotation is None:
        raise _not_found(quotation_id)
    return repo.quotation_to_dict(quotation)


@router.get("/{quotation_id}/pdf")
async def quotation_pdf(quotation_id: str, db: AsyncSession = Depends(get_db)):
    quotation = await repo.get_quotation(db, quotation_id)
    if quotation is None:
        raise _not_found(quotation_id)

    report = ReportEngine(company_settings=await repo.load_company_settings(db))
    pdf_path = report.quotation_pdf(repo.quotation_to_dict(quotation))
    if not pdf_path or not os.path.exists(pdf_path):
        raise HTTPException(status_code=500, detail="PDF generation failed")

    return FileResponse(
        path=pdf_path,
        media_type="application/pdf",
        filename=os.path.basename(pdf_path),
    )
