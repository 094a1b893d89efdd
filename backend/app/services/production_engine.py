"""
Production planning per quantity tier.

  effective seconds/day = hours/day × 3600 × effectiveness / 100
  pieces/day            = effective seconds/day / cycle time
  days needed           = ceil(quantity / pieces/day)
  cost per detail       = (cycle time / 3600) × hourly rate × 100 / effectiveness
  total cost            = quantity × cost per detail

Programming and setup are one-off costs (hours × rate) reported per tier.
A zero cycle time or effectiveness gives zero throughput and zero cost.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from app.services.costing_engine import money, to_decimal
from app.services.costing_errors import ValidationError

DEFAULT_HOURS_PER_DAY: Decimal = Decimal("18")
DEFAULT_EFFECTIVENESS: Decimal = Decimal("85")

_HUNDRED = Decimal("100")
_SECONDS_PER_HOUR = Decimal("3600")


@dataclass(frozen=True)
class ProductionPlan:
    cycle_time_seconds: Decimal = Decimal("0")
    hours_per_day: Decimal = DEFAULT_HOURS_PER_DAY
    effectiveness_percent: Decimal = DEFAULT_EFFECTIVENESS
    hourly_rate: Decimal = Decimal("0")
    programming_hours: Optional[Decimal] = None
    programming_rate: Optional[Decimal] = None
    setup_hours: Optional[Decimal] = None
    setup_rate: Optional[Decimal] = None

    def __post_init__(self):
        for name in ("cycle_time_seconds", "hours_per_day", "effectiveness_percent", "hourly_rate"):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))
        for name in ("programming_hours", "programming_rate", "setup_hours", "setup_rate"):
            value = getattr(self, name)
            object.__setattr__(self, name, to_decimal(value, name) if value is not None else None)


class ProductionPlanner:

    def __init__(self, plan: ProductionPlan) -> None:
        self.plan = plan
        self._validate()

    def _validate(self) -> None:
        p = self.plan
        for name in ("cycle_time_seconds", "hours_per_day", "effectiveness_percent", "hourly_rate"):
            if getattr(p, name) < 0:
                raise ValidationError(f"{name} must be non-negative")
        if p.hours_per_day > 24:
            raise ValidationError(f"hours_per_day cannot exceed 24, got {p.hours_per_day}")
        if p.effectiveness_percent > _HUNDRED:
            raise ValidationError(f"effectiveness_percent cannot exceed 100, got {p.effectiveness_percent}")

    @property
    def programming_cost(self) -> Decimal:
        return (self.plan.programming_hours or Decimal("0")) * (self.plan.programming_rate or Decimal("0"))

    @property
    def setup_cost(self) -> Decimal:
        return (self.plan.setup_hours or Decimal("0")) * (self.plan.setup_rate or Decimal("0"))

    def pieces_per_day(self) -> Decimal:
        p = self.plan
        if p.cycle_time_seconds <= 0:
            return Decimal("0")
        effective_seconds = p.hours_per_day * _SECONDS_PER_HOUR * p.effectiveness_percent / _HUNDRED
        return effective_seconds / p.cycle_time_seconds

    def cost_per_detail(self) -> Decimal:
        p = self.plan
        if p.cycle_time_seconds <= 0 or p.effectiveness_percent <= 0:
            return Decimal("0")
        return (p.cycle_time_seconds / _SECONDS_PER_HOUR) * p.hourly_rate * (_HUNDRED / p.effectiveness_percent)

    def plan_tier(self, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValidationError(f"Tier quantity must be positive, got {quantity}")
        per_day = self.pieces_per_day()
        days = math.ceil(Decimal(quantity) / per_day) if per_day > 0 else 0
        per_detail = self.cost_per_detail()
        return {
            "quantity": quantity,
            "pieces_per_day": float(per_day.quantize(Decimal("0.01"))),
            "time_needed_days": days,
            "cost_per_detail": float(money(per_detail)),
            "total_cost": float(money(per_detail * quantity)),
            "programming_cost": float(money(self.programming_cost)),
            "setup_cost": float(money(self.setup_cost)),
        }

    def plan_tiers(self, quantities: Sequence[int]) -> List[Dict[str, Any]]:
        return [self.plan_tier(q) for q in quantities]
