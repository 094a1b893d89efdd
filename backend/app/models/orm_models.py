"""ORM Models for the FHX quotation backend — SQLAlchemy 2.0"""
import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, DateTime, Date,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── SYSTEM QUOTATIONS ─────────────────────────────────────────────────────────
class SystemQuotation(Base):
    __tablename__ = "system_quotations"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quote_number: Mapped[Optional[str]] = mapped_column(String(50))
    customer: Mapped[Optional[str]] = mapped_column(String(255))
    customer_code: Mapped[Optional[str]] = mapped_column(String(50))
    part_number: Mapped[Optional[str]] = mapped_column(String(100))
    revision: Mapped[Optional[str]] = mapped_column(String(20))
    description: Mapped[Optional[str]] = mapped_column(Text)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    status: Mapped[str] = mapped_column(String(30), default="draft")  # draft | finalized
    material_markup: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("20"))
    subcon_markup: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("20"))
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    materials: Mapped[list["QuotationMaterial"]] = relationship(
        "QuotationMaterial", order_by="QuotationMaterial.line_number", lazy="selectin"
    )
    subcons: Mapped[list["QuotationSubcon"]] = relationship(
        "QuotationSubcon", order_by="QuotationSubcon.line_number", lazy="selectin"
    )
    routings: Mapped[list["QuotationRouting"]] = relationship(
        "QuotationRouting", order_by="QuotationRouting.op_no", lazy="selectin"
    )
    tools: Mapped[list["QuotationTool"]] = relationship(
        "QuotationTool", order_by="QuotationTool.line_number", lazy="selectin"
    )
    volume_pricing: Mapped[list["QuotationVolumePricing"]] = relationship(
        "QuotationVolumePricing", order_by="QuotationVolumePricing.quantity", lazy="selectin"
    )


class QuotationMaterial(Base):
    __tablename__ = "quotation_materials"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quotation_id: Mapped[str] = mapped_column(String(36), ForeignKey("system_quotations.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, default=1)
    vendor_no: Mapped[Optional[str]] = mapped_column(String(50))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    material_description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    std_cost_est: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    qty_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("1"))
    total_material: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    __table_args__ = (Index("ix_quotation_materials_quotation", "quotation_id"),)


class QuotationSubcon(Base):
    __tablename__ = "quotation_subcons"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quotation_id: Mapped[str] = mapped_column(String(36), ForeignKey("system_quotations.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, default=1)
    subcon_id: Mapped[int] = mapped_column(Integer, default=1)
    vendor_no: Mapped[Optional[str]] = mapped_column(String(50))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    part_number: Mapped[Optional[str]] = mapped_column(String(120))
    process_description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    std_cost_est: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    certification_required: Mapped[bool] = mapped_column(Boolean, default=False)
    total_subcon: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    __table_args__ = (Index("ix_quotation_subcons_quotation", "quotation_id"),)


class QuotationRouting(Base):
    __tablename__ = "quotation_routings"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quotation_id: Mapped[str] = mapped_column(String(36), ForeignKey("system_quotations.id"), nullable=False)
    op_no: Mapped[int] = mapped_column(Integer, nullable=False)
    resource_no: Mapped[Optional[str]] = mapped_column(String(50))
    operation_details: Mapped[Optional[str]] = mapped_column(Text)
    setup_time: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    run_time: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    override_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4))
    __table_args__ = (Index("ix_quotation_routings_quotation", "quotation_id"),)


class QuotationTool(Base):
    """One row per tool per tier quantity (``volume``); a tool with no quantities keeps one row with volume NULL."""
    __tablename__ = "quotation_tools"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quotation_id: Mapped[str] = mapped_column(String(36), ForeignKey("system_quotations.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, default=1)
    tool_name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    markup: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"))
    volume: Mapped[Optional[int]] = mapped_column(Integer)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    __table_args__ = (Index("ix_quotation_tools_quotation", "quotation_id"),)


class QuotationVolumePricing(Base):
    __tablename__ = "quotation_volume_pricing"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    quotation_id: Mapped[str] = mapped_column(String(36), ForeignKey("system_quotations.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    margin: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"))
    cost_per_hour: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    labour_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    material_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    subcon_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    tooling_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    unit_price_quoted: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(16, 2), default=Decimal("0"))
    used_fallback_rate: Mapped[bool] = mapped_column(Boolean, default=False)
    __table_args__ = (
        UniqueConstraint("quotation_id", "quantity", name="uq_volume_pricing_quantity"),
    )


# ── RESOURCES & SETTINGS ──────────────────────────────────────────────────────
class QuotationResource(Base):
    __tablename__ = "quotation_resources"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    resource_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    cost_per_minute: Mapped[Decimal] = mapped_column(Numeric(10, 4), default=Decimal("0"))
    is_subcon: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuotationToolLibrary(Base):
    __tablename__ = "quotation_tool_library"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    tool_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    default_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuotationSetting(Base):
    __tablename__ = "quotation_settings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    setting_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ── QUICK QUOTE ───────────────────────────────────────────────────────────────
class QuoteMaterial(Base):
    __tablename__ = "quote_materials"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    grade: Mapped[Optional[str]] = mapped_column(String(100))
    form: Mapped[Optional[str]] = mapped_column(String(100))
    density_kg_m3: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    default_yield: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4))
    volatility_level: Mapped[Optional[str]] = mapped_column(String(10), default="MEDIUM")
    inflation_rate_per_year: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 4))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    price_records: Mapped[list["MaterialPriceRecord"]] = relationship(
        "MaterialPriceRecord", back_populates="material", lazy="selectin"
    )


class MaterialPriceRecord(Base):
    __tablename__ = "material_price_records"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    material_id: Mapped[str] = mapped_column(String(36), ForeignKey("quote_materials.id"), nullable=False)
    record_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    price_per_kg: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255))
    quantity_min: Mapped[Optional[int]] = mapped_column(Integer)
    quantity_max: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    material: Mapped["QuoteMaterial"] = relationship("QuoteMaterial", back_populates="price_records")
    __table_args__ = (Index("ix_price_records_material", "material_id"),)


class PostProcessTypeRow(Base):
    __tablename__ = "post_process_types"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    pricing_model: Mapped[str] = mapped_column(String(20), default="PER_PART")
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    setup_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    minimum_lot_charge: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    default_lead_time_days: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class QuickQuoteSetting(Base):
    __tablename__ = "quick_quote_settings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    setting_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
