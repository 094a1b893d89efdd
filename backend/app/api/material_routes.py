"""Material catalogue routes — quick-quote materials, price history and post-process types."""
import logging
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.db import get_db
from app.models.orm_models import MaterialPriceRecord, PostProcessTypeRow, QuoteMaterial
from app.models.quotation_schema import PostProcessTypeIn, PriceRecordIn, QuoteMaterialIn
from app.services.material_estimator import VolatilityLevel
from app.services.post_process_engine import PricingModel

router = APIRouter(prefix="/api/materials", tags=["Materials"])
logger = logging.getLogger("fhx-api")


def _material_dict(m: QuoteMaterial) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "grade": m.grade,
        "form": m.form,
        "default_yield": m.default_yield,
        "volatility_level": m.volatility_level,
        "inflation_rate_per_year": m.inflation_rate_per_year,
        "price_record_count": len(m.price_records),
    }


@router.get("")
async def list_materials(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(QuoteMaterial).where(QuoteMaterial.is_active.is_(True)).order_by(QuoteMaterial.name)
    )
    return [_material_dict(m) for m in result.scalars().all()]


@router.post("", status_code=201)
async def create_material(payload: QuoteMaterialIn, db: AsyncSession = Depends(get_db)):
    level = payload.volatility_level.upper()
    if level not in VolatilityLevel.__members__:
        raise HTTPException(status_code=422, detail=f"Unknown volatility level {payload.volatility_level!r}")
    if payload.default_yield is not None and not (0 < payload.default_yield <= 1):
        raise HTTPException(status_code=422, detail="default_yield must be in (0, 1]")

    material = QuoteMaterial(**{**payload.model_dump(), "volatility_level": level})
    db.add(material)
    await db.commit()
    result = await db.execute(
        select(QuoteMaterial)
        .where(QuoteMaterial.id == material.id)
        .execution_options(populate_existing=True)
    )
    return _material_dict(result.scalar_one())


@router.post("/{material_id}/price-records", status_code=201)
async def add_price_record(material_id: str, payload: PriceRecordIn, db: AsyncSession = Depends(get_db)):
    material = await db.get(QuoteMaterial, material_id)
    if material is None:
        raise HTTPException(status_code=404, detail=f"Material {material_id} not found")
    record = MaterialPriceRecord(material_id=material_id, **payload.model_dump())
    db.add(record)
    await db.commit()
    return {"id": record.id, "material_id": material_id, **payload.model_dump(mode="json")}


@router.post("/post-process-types", status_code=201)
async def create_post_process_type(payload: PostProcessTypeIn, db: AsyncSession = Depends(get_db)):
    model = payload.pricing_model.upper()
    if model not in PricingModel.__members__:
        raise HTTPException(status_code=422, detail=f"Unknown pricing model {payload.pricing_model!r}")
    row = PostProcessTypeRow(**{**payload.model_dump(), "pricing_model": model})
    db.add(row)
    await db.commit()
    return {"id": row.id, **payload.model_dump(mode="json"), "pricing_model": model}
