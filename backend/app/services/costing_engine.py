"""
CostRollupEngine — volume-tier cost and price roll-up for part quotations.

Covers, per quantity tier:
  - Labour from routing setup + run time at the resolved resource rate
  - Material cost from BOM lines with material markup
  - Subcon cost from the subcon rows priced at that tier quantity, with markup
  - Tooling cost from the tools bought for that tier, each with its own markup
  - Total cost, cost per unit and unit price at the tier's target margin

All money is Decimal.  Components are rounded to cents (ROUND_HALF_UP) before
they are summed, so total_cost is exactly labour + material + subcon + tooling.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.services.costing_errors import ValidationError

logger = logging.getLogger("fhx-costing")


CENT = Decimal("0.01")
HOURS_PLACES = Decimal("0.001")
_HUNDRED = Decimal("100")
_SIXTY = Decimal("60")


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Coerce int / float / str / Decimal to Decimal (floats via str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be numeric, got {value!r}")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MaterialLine:
    cost_per_unit: Decimal
    quantity_per_unit: Decimal
    category: str = ""
    vendor: str = ""

    def __post_init__(self):
        object.__setattr__(self, "cost_per_unit", to_decimal(self.cost_per_unit, "cost_per_unit"))
        object.__setattr__(self, "quantity_per_unit", to_decimal(self.quantity_per_unit, "quantity_per_unit"))

    @property
    def line_cost(self) -> Decimal:
        return self.cost_per_unit * self.quantity_per_unit


@dataclass(frozen=True)
class SubconLine:
    vendor_id: str
    process_description: str
    cost_per_unit: Decimal
    quantity: int
    cert_required: bool = False
    subcon_id: int = 1  # groups the per-tier rows of one subcon type

    def __post_init__(self):
        object.__setattr__(self, "cost_per_unit", to_decimal(self.cost_per_unit, "cost_per_unit"))


@dataclass(frozen=True)
class RoutingLine:
    op_number: int
    resource_id: str
    setup_time_minutes: Decimal
    run_time_minutes: Decimal
    override_cost: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, "setup_time_minutes", to_decimal(self.setup_time_minutes, "setup_time_minutes"))
        object.__setattr__(self, "run_time_minutes", to_decimal(self.run_time_minutes, "run_time_minutes"))
        if self.override_cost is not None:
            object.__setattr__(self, "override_cost", to_decimal(self.override_cost, "override_cost"))


@dataclass(frozen=True)
class ToolLine:
    """
    A tool bought for the order: ``quantities`` maps a tier quantity to the
    number of tools needed at that tier.  Tiers not listed need none.
    """
    tool_name: str
    price: Decimal
    markup_percent: Decimal = Decimal("0")
    quantities: Mapping[int, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "price", to_decimal(self.price, "price"))
        object.__setattr__(self, "markup_percent", to_decimal(self.markup_percent, "markup_percent"))
        object.__setattr__(
            self, "quantities",
            {int(qty): to_decimal(n, f"{self.tool_name} quantity") for qty, n in self.quantities.items()},
        )

    def cost_at(self, quantity: int) -> Decimal:
        """Marked-up cost of the tools needed for a batch of ``quantity`` parts."""
        count = self.quantities.get(quantity, Decimal("0"))
        return count * self.price * (1 + self.markup_percent / _HUNDRED)


@dataclass(frozen=True)
class Resource:
    resource_no: str
    cost_per_minute: Decimal
    is_subcon: bool = False

    def __post_init__(self):
        object.__setattr__(self, "cost_per_minute", to_decimal(self.cost_per_minute, "cost_per_minute"))


@dataclass(frozen=True)
class QuantityTier:
    quantity: int
    target_margin_percent: Decimal

    def __post_init__(self):
        object.__setattr__(
            self, "target_margin_percent", to_decimal(self.target_margin_percent, "target_margin_percent")
        )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

@dataclass
class TierCost:
    quantity: int
    hours: Decimal
    labour_cost: Decimal
    material_cost: Decimal
    subcon_cost: Decimal
    tooling_cost: Decimal
    total_cost: Decimal
    cost_per_unit: Decimal
    unit_price: Decimal
    total_price: Decimal
    margin: Decimal
    cost_per_hour: Decimal
    fallback_resources: List[str] = field(default_factory=list)

    @property
    def used_fallback_rate(self) -> bool:
        return bool(self.fallback_resources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quantity": self.quantity,
            "hours": float(self.hours),
            "labour_cost": float(self.labour_cost),
            "material_cost": float(self.material_cost),
            "subcon_cost": float(self.subcon_cost),
            "tooling_cost": float(self.tooling_cost),
            "total_cost": float(self.total_cost),
            "cost_per_unit": float(self.cost_per_unit),
            "unit_price": float(self.unit_price),
            "total_price": float(self.total_price),
            "margin": float(self.margin),
            "cost_per_hour": float(self.cost_per_hour),
            "used_fallback_rate": self.used_fallback_rate,
            "fallback_resources": list(self.fallback_resources),
        }


class CostRollupEngine:
    """
    Per-tier cost and price roll-up for a single part quotation.

    Stateless between calls: the configuration passed to ``__init__`` is read
    only, so one instance may be shared across concurrent requests.
    """

    def __init__(
        self,
        material_markup_percent: Any = Decimal("0"),
        subcon_markup_percent: Any = Decimal("0"),
        cost_per_hour_fallback: Any = Decimal("55"),
        resources: Optional[Iterable[Resource]] = None,
        strict_subcon_tiers: bool = True,
    ) -> None:
        self.material_markup_percent = to_decimal(material_markup_percent, "material_markup_percent")
        self.subcon_markup_percent = to_decimal(subcon_markup_percent, "subcon_markup_percent")
        self.cost_per_hour_fallback = to_decimal(cost_per_hour_fallback, "cost_per_hour_fallback")
        self.strict_subcon_tiers = strict_subcon_tiers
        self._resources: Dict[str, Resource] = {r.resource_no: r for r in (resources or [])}

        if self.material_markup_percent < 0:
            raise ValidationError("material_markup_percent must be non-negative")
        if self.subcon_markup_percent < 0:
            raise ValidationError("subcon_markup_percent must be non-negative")
        if self.cost_per_hour_fallback < 0:
            raise ValidationError("cost_per_hour_fallback must be non-negative")

    @classmethod
    def from_settings(
        cls,
        settings,
        resources: Optional[Iterable[Resource]] = None,
        material_markup_percent: Any = None,
        subcon_markup_percent: Any = None,
    ) -> "CostRollupEngine":
        """Build from a resolved QuotationSettings; per-quotation markups win over defaults."""
        return cls(
            material_markup_percent=(
                settings.material_markup_percent if material_markup_percent is None else material_markup_percent
            ),
            subcon_markup_percent=(
                settings.subcon_markup_percent if subcon_markup_percent is None else subcon_markup_percent
            ),
            cost_per_hour_fallback=settings.cost_per_hour,
            resources=resources,
            strict_subcon_tiers=settings.strict_subcon_tiers,
        )

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def resolve_rate(self, resource_id: str) -> Tuple[Decimal, bool]:
        """
        Return (cost per minute, used_fallback) for a routing resource.

        Subcon resources cost nothing on the routing; their cost comes from
        the subcon lines.
        """
        resource = self._resources.get(resource_id)
        if resource is None:
            return self.cost_per_hour_fallback / _SIXTY, True
        if resource.is_subcon:
            return Decimal("0"), False
        return resource.cost_per_minute, False

    @staticmethod
    def batch_minutes(routings: Sequence[RoutingLine], quantity: int) -> Decimal:
        setup = sum((r.setup_time_minutes for r in routings), Decimal("0"))
        run = sum((r.run_time_minutes for r in routings), Decimal("0"))
        return setup + run * quantity

    def labour_cost(self, routings: Sequence[RoutingLine], quantity: int) -> Tuple[Decimal, List[str]]:
        """Batch labour cost and the resources that fell back to the default hourly rate."""
        total = Decimal("0")
        fallback: List[str] = []
        for line in routings:
            if line.override_cost is not None:
                total += line.override_cost
                continue
            rate, used_fallback = self.resolve_rate(line.resource_id)
            if used_fallback and line.resource_id not in fallback:
                fallback.append(line.resource_id)
            total += (line.setup_time_minutes + line.run_time_minutes * quantity) * rate
        return money(total), fallback

    @staticmethod
    def material_cost_per_part(materials: Sequence[MaterialLine]) -> Decimal:
        """Markup-free material cost of a single part."""
        return sum((m.line_cost for m in materials), Decimal("0"))

    def subcon_cost_per_unit(self, subcons: Sequence[SubconLine], quantity: int) -> Decimal:
        """Subcon cost per unit at one tier quantity, markup included."""
        base = sum((s.cost_per_unit for s in subcons if s.quantity == quantity), Decimal("0"))
        return base * (1 + self.subcon_markup_percent / _HUNDRED)

    @staticmethod
    def tooling_cost(tools: Sequence[ToolLine], quantity: int) -> Decimal:
        """Tooling for one batch; not multiplied by the tier quantity."""
        return money(sum((t.cost_at(quantity) for t in tools), Decimal("0")))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        materials: Sequence[MaterialLine],
        subcons: Sequence[SubconLine],
        routings: Sequence[RoutingLine],
        tiers: Sequence[QuantityTier],
        tools: Sequence[ToolLine] = (),
    ) -> None:
        if not tiers:
            raise ValidationError("At least one quantity tier is required")
        for tier in tiers:
            if isinstance(tier.quantity, bool) or not isinstance(tier.quantity, int):
                raise ValidationError(f"Tier quantity must be an integer, got {tier.quantity!r}")
            if tier.quantity <= 0:
                raise ValidationError(f"Tier quantity must be positive, got {tier.quantity}")
            if tier.target_margin_percent < 0 or tier.target_margin_percent >= _HUNDRED:
                raise ValidationError(
                    f"Target margin must be in [0, 100), got {tier.target_margin_percent} "
                    f"for quantity {tier.quantity}"
                )
        for m in materials:
            if m.cost_per_unit < 0 or m.quantity_per_unit < 0:
                raise ValidationError("Material cost and quantity per unit must be non-negative")
        for s in subcons:
            if s.cost_per_unit < 0:
                raise ValidationError(f"Subcon cost must be non-negative ({s.process_description})")
        for r in routings:
            if r.setup_time_minutes < 0 or r.run_time_minutes < 0:
                raise ValidationError(f"Routing op {r.op_number} has negative setup or run time")
            if r.override_cost is not None and r.override_cost < 0:
                raise ValidationError(f"Routing op {r.op_number} has a negative override cost")

        tier_qtys = {t.quantity for t in tiers}
        if subcons:
            self._check_subcon_tiers(subcons, tier_qtys)
        for tool in tools:
            if tool.price < 0 or tool.markup_percent < 0:
                raise ValidationError(f"Tool {tool.tool_name!r} has a negative price or markup")
            if any(n < 0 for n in tool.quantities.values()):
                raise ValidationError(f"Tool {tool.tool_name!r} has a negative quantity")
            extra = sorted(set(tool.quantities) - tier_qtys)
            if extra:
                if self.strict_subcon_tiers:
                    raise ValidationError(f"Tool {tool.tool_name!r} is quantified for unknown tiers {extra}")
                logger.warning(
                    "Tool quantities for unknown tiers ignored",
                    extra={"tool": tool.tool_name, "extra_quantities": extra},
                )

    def _check_subcon_tiers(self, subcons: Sequence[SubconLine], tier_qtys) -> None:
        """Each subcon type (``subcon_id``) must be priced exactly once at every tier quantity."""
        groups: Dict[int, List[int]] = {}
        for s in subcons:
            qtys = groups.setdefault(s.subcon_id, [])
            if s.quantity in qtys:
                raise ValidationError(
                    f"Subcon {s.subcon_id} ({s.process_description}) is priced twice at quantity {s.quantity}"
                )
            qtys.append(s.quantity)

        for subcon_id, qtys in sorted(groups.items()):
            missing = sorted(tier_qtys - set(qtys))
            extra = sorted(set(qtys) - tier_qtys)
            if not missing and not extra:
                continue
            if self.strict_subcon_tiers:
                raise ValidationError(
                    f"Subcon pricing quantities do not match tiers for subcon {subcon_id} "
                    f"(tiers without subcon rows: {missing}, subcon rows without tier: {extra})"
                )
            logger.warning(
                "Subcon quantities out of step with tiers; missing tiers cost zero subcon",
                extra={"subcon_id": subcon_id, "missing_tiers": missing, "extra_quantities": extra},
            )

    # ------------------------------------------------------------------
    # Roll-up
    # ------------------------------------------------------------------

    def calculate_tier(
        self,
        materials: Sequence[MaterialLine],
        subcons: Sequence[SubconLine],
        routings: Sequence[RoutingLine],
        tier: QuantityTier,
        tools: Sequence[ToolLine] = (),
    ) -> TierCost:
        """Cost one tier. Call ``validate`` first (``calculate`` does)."""
        qty = tier.quantity
        minutes = self.batch_minutes(routings, qty)
        labour, fallback = self.labour_cost(routings, qty)

        material_markup = 1 + self.material_markup_percent / _HUNDRED
        material = money(self.material_cost_per_part(materials) * material_markup * qty)
        subcon = money(self.subcon_cost_per_unit(subcons, qty) * qty)
        tooling = self.tooling_cost(tools, qty)

        total = labour + material + subcon + tooling
        cost_per_unit = total / qty
        unit_price = cost_per_unit / (1 - tier.target_margin_percent / _HUNDRED)

        if fallback:
            logger.warning(
                "Routing resources priced at fallback rate",
                extra={"resources": fallback, "cost_per_hour": str(self.cost_per_hour_fallback)},
            )

        return TierCost(
            quantity=qty,
            hours=(minutes / _SIXTY).quantize(HOURS_PLACES, rounding=ROUND_HALF_UP),
            labour_cost=labour,
            material_cost=material,
            subcon_cost=subcon,
            tooling_cost=tooling,
            total_cost=total,
            cost_per_unit=money(cost_per_unit),
            unit_price=money(unit_price),
            total_price=money(unit_price * qty),
            margin=tier.target_margin_percent,
            cost_per_hour=self.cost_per_hour_fallback,
            fallback_resources=fallback,
        )

    def calculate(
        self,
        materials: Sequence[MaterialLine],
        subcons: Sequence[SubconLine],
        routings: Sequence[RoutingLine],
        tiers: Sequence[QuantityTier],
        tools: Sequence[ToolLine] = (),
    ) -> List[TierCost]:
        """Validate every input, then cost each tier in the order given."""
        self.validate(materials, subcons, routings, tiers, tools)
        results = [self.calculate_tier(materials, subcons, routings, t, tools) for t in tiers]
        logger.debug("Cost roll-up complete", extra={"tiers": [t.quantity for t in tiers]})
        return results


def summarise_tiers(results: Sequence[TierCost]) -> Dict[str, Any]:
    """Display summary: cheapest unit price tier and price spread across tiers."""
    if not results:
        return {"tiers": 0}
    best = min(results, key=lambda r: r.unit_price)
    prices = [r.unit_price for r in results]
    return {
        "tiers": len(results),
        "best_unit_price": float(best.unit_price),
        "best_quantity": best.quantity,
        "unit_price_spread": float(max(prices) - min(prices)),
        "any_fallback_rate": any(r.used_fallback_rate for r in results),
    }
