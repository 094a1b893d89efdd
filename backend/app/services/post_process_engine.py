"""
Post-process costing and quick-quote totals.

Post-processes (plating, anodising, heat treatment...) are priced per lot:

    basis     = kg × qty (PER_KG) | m² × qty (PER_M2) | qty (PER_PART)
    variable  = unit_cost × basis × complexity multiplier (A / B / C)
    lot cost  = max(setup_fee + variable, minimum_lot_charge)
    per part  = lot cost / qty

Quick-quote totals sell every part at one global margin:
    sales/part = cost/part / (1 − margin / 100)
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from app.services.costing_engine import money, to_decimal
from app.services.costing_errors import ValidationError

logger = logging.getLogger("fhx-costing.post-process")

_HUNDRED = Decimal("100")


class PricingModel(str, enum.Enum):
    PER_KG = "PER_KG"
    PER_M2 = "PER_M2"
    PER_PART = "PER_PART"


@dataclass(frozen=True)
class PostProcessType:
    type_id: str
    name: str
    pricing_model: PricingModel
    unit_cost: Decimal = Decimal("0")
    setup_fee: Decimal = Decimal("0")
    minimum_lot_charge: Decimal = Decimal("0")
    default_lead_time_days: Optional[int] = None

    def __post_init__(self):
        model = self.pricing_model
        if not isinstance(model, PricingModel):
            try:
                model = PricingModel(str(model).upper())
            except ValueError:
                raise ValidationError(f"Unknown pricing model {self.pricing_model!r} for {self.name}")
        object.__setattr__(self, "pricing_model", model)
        for name in ("unit_cost", "setup_fee", "minimum_lot_charge"):
            object.__setattr__(self, name, to_decimal(getattr(self, name) or 0, name))


@dataclass(frozen=True)
class AppliedPostProcess:
    type_id: str
    complexity: str = "A"
    override_unit_cost: Optional[Decimal] = None
    override_setup_fee: Optional[Decimal] = None


@dataclass(frozen=True)
class RfqPart:
    part_id: str
    quantity_requested: int
    part_number: str = ""
    net_weight_kg: Optional[Decimal] = None
    surface_area_m2: Optional[Decimal] = None
    post_processes: Sequence[AppliedPostProcess] = field(default_factory=tuple)


class PostProcessEngine:

    def __init__(
        self,
        process_types: Iterable[PostProcessType],
        complexity_multipliers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._types: Dict[str, PostProcessType] = {t.type_id: t for t in process_types}
        self.complexity_multipliers: Dict[str, Decimal] = {
            str(k).upper(): to_decimal(v, f"complexity_{k}") for k, v in (complexity_multipliers or {}).items()
        }

    def _basis(self, model: PricingModel, part: RfqPart) -> Decimal:
        qty = part.quantity_requested
        if model is PricingModel.PER_KG:
            return to_decimal(part.net_weight_kg or 0, "net_weight_kg") * qty
        if model is PricingModel.PER_M2:
            return to_decimal(part.surface_area_m2 or 0, "surface_area_m2") * qty
        return Decimal(qty)

    def lot_cost(self, part: RfqPart, applied: AppliedPostProcess) -> Optional[Dict[str, Any]]:
        """Cost of one post-process lot for ``part``; None when the process type is unknown."""
        process = self._types.get(applied.type_id)
        if process is None:
            logger.warning("Unknown post-process type %s on part %s, skipped", applied.type_id, part.part_id)
            return None

        multiplier = self.complexity_multipliers.get((applied.complexity or "A").upper(), Decimal("1"))
        setup_fee = (
            to_decimal(applied.override_setup_fee, "override_setup_fee")
            if applied.override_setup_fee is not None else process.setup_fee
        )
        unit_cost = (
            to_decimal(applied.override_unit_cost, "override_unit_cost")
            if applied.override_unit_cost is not None else process.unit_cost
        )
        basis = self._basis(process.pricing_model, part)
        variable = unit_cost * basis * multiplier
        lot = max(setup_fee + variable, process.minimum_lot_charge)

        return {
            "type_id": process.type_id,
            "name": process.name,
            "pricing_model": process.pricing_model.value,
            "complexity": (applied.complexity or "A").upper(),
            "complexity_multiplier": float(multiplier),
            "basis": float(basis),
            "setup_fee": float(setup_fee),
            "variable_cost": float(money(variable)),
            "minimum_lot_charge": float(process.minimum_lot_charge),
            "lot_cost": lot,
            "cost_per_part": lot / part.quantity_requested,
        }

    def cost_per_part(self, part: RfqPart) -> Dict[str, Any]:
        """Sum of every applied post-process, per part."""
        if part.quantity_requested <= 0:
            raise ValidationError(f"Part {part.part_id} quantity must be positive")

        lines: List[Dict[str, Any]] = []
        total = Decimal("0")
        for applied in part.post_processes:
            line = self.lot_cost(part, applied)
            if line is None:
                continue
            total += line["cost_per_part"]
            line["lot_cost"] = float(money(line["lot_cost"]))
            line["cost_per_part"] = float(money(line["cost_per_part"]))
            lines.append(line)

        return {"post_process_cost_per_part": money(total), "lines": lines}


@dataclass
class QuotedPart:
    part_id: str
    quantity: int
    material_cost_per_part: Optional[Decimal] = None  # None = no estimate available
    post_process_cost_per_part: Decimal = Decimal("0")
    manufacturing_cost_per_part: Decimal = Decimal("0")


def quick_quote_totals(parts: Sequence[QuotedPart], global_margin_percent: Any) -> Dict[str, Any]:
    """
    Totals for a quick quote at one global margin.

    Parts without a material estimate are costed without material and listed
    under ``parts_without_material_estimate`` so the gap stays visible.
    """
    margin = to_decimal(global_margin_percent, "global_margin_percent")
    if margin < 0 or margin >= _HUNDRED:
        raise ValidationError(f"Global margin must be in [0, 100), got {margin}")

    total_cost = Decimal("0")
    total_sales = Decimal("0")
    missing: List[str] = []
    lines = []
    for part in parts:
        if part.quantity <= 0:
            raise ValidationError(f"Part {part.part_id} quantity must be positive")
        if part.material_cost_per_part is None:
            missing.append(part.part_id)
        cost_per_part = (
            to_decimal(part.material_cost_per_part or 0, "material_cost_per_part")
            + to_decimal(part.post_process_cost_per_part, "post_process_cost_per_part")
            + to_decimal(part.manufacturing_cost_per_part, "manufacturing_cost_per_part")
        )
        sales_per_part = cost_per_part / (1 - margin / _HUNDRED)
        total_cost += cost_per_part * part.quantity
        total_sales += sales_per_part * part.quantity
        lines.append({
            "part_id": part.part_id,
            "quantity": part.quantity,
            "cost_per_part": float(money(cost_per_part)),
            "sales_price_per_part": float(money(sales_per_part)),
        })

    return {
        "global_margin_percent": float(margin),
        "parts": lines,
        "total_cost": float(money(total_cost)),
        "total_sales": float(money(total_sales)),
        "margin": float(money(total_sales - total_cost)),
        "parts_without_material_estimate": missing,
    }
