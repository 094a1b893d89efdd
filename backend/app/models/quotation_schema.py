"""
Request / response schemas for the quotation and quick-quote APIs.

Field names follow the stored column names so a payload round-trips through
the database unchanged.  ``to_*`` helpers convert to the engine input records.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.services.costing_engine import MaterialLine, QuantityTier, RoutingLine, SubconLine, ToolLine


def _two_places(value: Optional[Decimal]) -> Optional[Decimal]:
    """Percentages are stored as Numeric(6, 2); more places would be rounded on save."""
    if value is None:
        return value
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        raise ValueError(f"{value} has more than 2 decimal places")
    return value


class MaterialLineIn(BaseModel):
    line_number: int = 1
    vendor_no: Optional[str] = None
    vendor_name: Optional[str] = None
    material_description: Optional[str] = None
    category: Optional[str] = None
    std_cost_est: Decimal = Field(Decimal("0"), description="Cost per purchase unit")
    qty_per_unit: Decimal = Field(Decimal("1"), description="Purchase units per finished part")

    def to_line(self) -> MaterialLine:
        return MaterialLine(
            cost_per_unit=self.std_cost_est,
            quantity_per_unit=self.qty_per_unit,
            category=self.category or "",
            vendor=self.vendor_no or "",
        )


class SubconLineIn(BaseModel):
    line_number: int = 1
    subcon_id: int = Field(1, description="Groups the per-tier rows of one subcon type")
    vendor_no: Optional[str] = None
    vendor_name: Optional[str] = None
    process_description: Optional[str] = None
    quantity: int = Field(..., description="Tier quantity this cost applies to")
    std_cost_est: Decimal = Decimal("0")
    certification_required: bool = False

    def to_line(self) -> SubconLine:
        return SubconLine(
            vendor_id=self.vendor_no or "",
            process_description=self.process_description or "",
            cost_per_unit=self.std_cost_est,
            quantity=self.quantity,
            cert_required=self.certification_required,
            subcon_id=self.subcon_id,
        )


class RoutingLineIn(BaseModel):
    op_no: int
    resource_no: Optional[str] = None
    operation_details: Optional[str] = None
    setup_time: Decimal = Field(Decimal("0"), description="Minutes per batch")
    run_time: Decimal = Field(Decimal("0"), description="Minutes per part")
    override_cost: Optional[Decimal] = None

    def to_line(self) -> RoutingLine:
        return RoutingLine(
            op_number=self.op_no,
            resource_id=self.resource_no or "",
            setup_time_minutes=self.setup_time,
            run_time_minutes=self.run_time,
            override_cost=self.override_cost,
        )


class ToolLineIn(BaseModel):
    line_number: int = 1
    tool_name: str
    price: Optional[Decimal] = Field(None, description="Null takes the tool library's default price")
    markup: Decimal = Decimal("0")
    quantities: Dict[int, Decimal] = Field(default_factory=dict, description="Tier quantity -> tools needed")

    @field_validator("markup")
    @classmethod
    def _markup_places(cls, markup: Decimal) -> Decimal:
        return _two_places(markup)

    def to_line(self, price: Optional[Decimal] = None) -> ToolLine:
        return ToolLine(
            tool_name=self.tool_name,
            price=self.price if price is None else price,
            markup_percent=self.markup,
            quantities=self.quantities,
        )


class TierIn(BaseModel):
    quantity: int
    margin: Decimal = Field(..., description="Target margin percent, 0 <= margin < 100, at most 2 places")

    @field_validator("margin")
    @classmethod
    def _margin_places(cls, margin: Decimal) -> Decimal:
        return _two_places(margin)

    def to_tier(self) -> QuantityTier:
        return QuantityTier(quantity=self.quantity, target_margin_percent=self.margin)


class QuotationLines(BaseModel):
    material_markup: Optional[Decimal] = None
    subcon_markup: Optional[Decimal] = None
    materials: List[MaterialLineIn] = []
    subcons: List[SubconLineIn] = []
    routings: List[RoutingLineIn] = []
    tools: List[ToolLineIn] = []
    volumes: List[TierIn] = []

    @field_validator("material_markup", "subcon_markup")
    @classmethod
    def _markup_places(cls, markup: Optional[Decimal]) -> Optional[Decimal]:
        return _two_places(markup)

    @field_validator("volumes")
    @classmethod
    def _distinct_quantities(cls, volumes: List[TierIn]) -> List[TierIn]:
        seen = set()
        for v in volumes:
            if v.quantity in seen:
                raise ValueError(f"Duplicate tier quantity {v.quantity}")
            seen.add(v.quantity)
        return volumes


class QuotationIn(QuotationLines):
    quote_number: Optional[str] = None
    customer: Optional[str] = None
    customer_code: Optional[str] = None
    part_number: Optional[str] = None
    revision: Optional[str] = None
    description: Optional[str] = None
    currency: str = "EUR"


# ── Quick quote ──────────────────────────────────────────────────────────────

class AppliedPostProcessIn(BaseModel):
    type_id: str
    complexity: str = "A"
    override_unit_cost: Optional[Decimal] = None
    override_setup_fee: Optional[Decimal] = None


class RfqPartIn(BaseModel):
    part_id: str
    part_number: str = ""
    material_id: Optional[str] = None
    estimated_net_weight_kg: Optional[Decimal] = Field(None, gt=0)
    estimated_surface_area_m2: Optional[Decimal] = Field(None, ge=0)
    quantity_requested: int = Field(..., gt=0)
    post_processes: List[AppliedPostProcessIn] = []
    manufacturing_cost_per_part: Decimal = Decimal("0")


class QuickQuoteRequest(BaseModel):
    customer_name: Optional[str] = None
    rfq_reference: Optional[str] = None
    global_margin_percent: Decimal = Decimal("20")
    use_p80: Optional[bool] = None
    as_of: Optional[date] = None
    parts: List[RfqPartIn]


class ThreePointIn(BaseModel):
    optimistic: Decimal
    most_likely: Decimal
    pessimistic: Decimal


class ProductionPlanIn(BaseModel):
    cycle_time_per_piece: Decimal = Decimal("0")
    production_hours_per_day: Decimal = Decimal("18")
    production_effectiveness: Decimal = Decimal("85")
    hourly_rate: Decimal = Decimal("0")
    programming_hours: Optional[Decimal] = None
    programming_rate: Optional[Decimal] = None
    setup_hours: Optional[Decimal] = None
    setup_rate: Optional[Decimal] = None
    quantities: List[int]


# ── Settings ─────────────────────────────────────────────────────────────────

class SettingsUpdate(BaseModel):
    settings: dict[str, str]


class ResourceIn(BaseModel):
    resource_no: str
    description: Optional[str] = None
    cost_per_minute: Decimal = Decimal("0")
    is_subcon: bool = False


class ToolLibraryIn(BaseModel):
    tool_name: str
    default_price: Decimal = Field(Decimal("0"), ge=0)


# ── Material catalogue ───────────────────────────────────────────────────────

class QuoteMaterialIn(BaseModel):
    name: str
    grade: Optional[str] = None
    form: Optional[str] = None
    density_kg_m3: Optional[Decimal] = None
    default_yield: Optional[Decimal] = Field(None, description="Net / buy weight ratio; null uses the setting")
    volatility_level: str = Field("MEDIUM", description="LOW | MEDIUM | HIGH")
    inflation_rate_per_year: Optional[Decimal] = Field(
        None, gt=-1, description="0.03 = 3 %/year, above -1; null uses the setting"
    )


class PriceRecordIn(BaseModel):
    record_date: date
    price_per_kg: Decimal = Field(..., ge=0)
    supplier_name: Optional[str] = None
    quantity_min: Optional[int] = None
    quantity_max: Optional[int] = None
    notes: Optional[str] = None


class PostProcessTypeIn(BaseModel):
    name: str
    pricing_model: str = Field("PER_PART", description="PER_KG | PER_M2 | PER_PART")
    unit_cost: Decimal = Decimal("0")
    setup_fee: Optional[Decimal] = None
    minimum_lot_charge: Optional[Decimal] = None
    default_lead_time_days: Optional[int] = None
