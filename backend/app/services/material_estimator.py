"""
MaterialPriceEstimator — deterministic per-part material cost from price history.

No AI, deterministic only.  Steps:
  1. Compound each historical price/kg forward to today at the material's
     yearly inflation rate.
  2. PERT estimate over the adjusted prices (low / median / high).
  3. Price/kg = P50 (expected) or P80.
  4. Buy weight = net weight / yield; raw cost = buy weight × qty × price.
  5. Contingency by volatility level; cost per part = (raw + contingency) / qty.

An empty price history raises DataUnavailableError: "no estimate" must never
be reported as a zero material cost.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.services.costing_engine import money, to_decimal
from app.services.costing_errors import DataUnavailableError, ValidationError
from app.services.pert_engine import PertEstimate, pert_from_samples

logger = logging.getLogger("fhx-costing.material")

DAYS_PER_YEAR: Decimal = Decimal("365.25")
_PRICE_PLACES = Decimal("0.0001")


class VolatilityLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class PriceRecord:
    material_id: str
    record_date: date
    price_per_kg: Decimal
    supplier_name: str = ""

    def __post_init__(self):
        if self.price_per_kg is None:
            raise ValidationError(f"Price record for material {self.material_id} has no price")
        object.__setattr__(self, "price_per_kg", to_decimal(self.price_per_kg, "price_per_kg"))


@dataclass(frozen=True)
class Material:
    material_id: str
    default_yield: Decimal
    inflation_rate_per_year: Decimal = Decimal("0")
    volatility_level: VolatilityLevel = VolatilityLevel.MEDIUM
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "default_yield", to_decimal(self.default_yield, "default_yield"))
        object.__setattr__(
            self, "inflation_rate_per_year", to_decimal(self.inflation_rate_per_year, "inflation_rate_per_year")
        )
        # (1 + rate) is raised to fractional powers
        if self.inflation_rate_per_year <= -1:
            raise ValidationError(
                f"Inflation rate for material {self.material_id} must be above -1, got {self.inflation_rate_per_year}"
            )
        level = self.volatility_level
        if not isinstance(level, VolatilityLevel):
            try:
                level = VolatilityLevel(str(level or "MEDIUM").upper())
            except ValueError:
                raise ValidationError(f"Unknown volatility level {self.volatility_level!r}")
        object.__setattr__(self, "volatility_level", level)


@dataclass
class MaterialEstimate:
    pert: PertEstimate
    basis: str  # "P50" | "P80"
    price_per_kg: Decimal
    buy_weight_per_part: Decimal
    total_buy_weight: Decimal
    raw_material_cost: Decimal
    contingency_rate: Decimal
    contingency: Decimal
    material_cost_per_part: Decimal
    adjusted_prices: List[Decimal] = field(default_factory=list)

    @property
    def low(self) -> Decimal:
        return self.pert.low

    @property
    def most_likely(self) -> Decimal:
        return self.pert.most_likely

    @property
    def high(self) -> Decimal:
        return self.pert.high

    @property
    def expected(self) -> Decimal:
        return self.pert.expected

    @property
    def std_dev(self) -> Decimal:
        return self.pert.std_dev

    @property
    def p80(self) -> Decimal:
        return self.pert.p80

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.pert.to_dict(),
            "basis": self.basis,
            "price_per_kg": float(self.price_per_kg.quantize(_PRICE_PLACES)),
            "buy_weight_per_part": float(self.buy_weight_per_part.quantize(_PRICE_PLACES)),
            "total_buy_weight": float(self.total_buy_weight.quantize(_PRICE_PLACES)),
            "raw_material_cost": float(money(self.raw_material_cost)),
            "contingency_rate": float(self.contingency_rate),
            "contingency": float(money(self.contingency)),
            "material_cost_per_part": float(self.material_cost_per_part),
            "record_count": len(self.adjusted_prices),
        }


def years_between(earlier: date, later: date) -> Decimal:
    return Decimal((later - earlier).days) / DAYS_PER_YEAR


def inflation_adjust(price: Decimal, rate: Decimal, years_ago: Decimal) -> Decimal:
    """Compound ``price`` forward by ``years_ago`` years at ``rate`` per year."""
    if rate == 0 or years_ago == 0:
        return price
    return price * (1 + rate) ** years_ago


class MaterialPriceEstimator:
    """
    Deterministic PERT material estimator.

    ``contingency_by_volatility`` maps LOW / MEDIUM / HIGH to a ratio
    (0.05 = 5 %).  ``as_of`` fixes "today" for the inflation adjustment.
    """

    def __init__(
        self,
        contingency_by_volatility: Optional[Mapping[str, Any]] = None,
        use_p80: bool = False,
        as_of: Optional[date] = None,
    ) -> None:
        rates = contingency_by_volatility or {}
        self.contingency_by_volatility: Dict[str, Decimal] = {
            str(k).upper(): to_decimal(v, f"contingency_{k}") for k, v in rates.items()
        }
        for level, rate in self.contingency_by_volatility.items():
            if rate < 0:
                raise ValidationError(f"Contingency rate for {level} must be non-negative")
        self.use_p80 = use_p80
        self.as_of = as_of

    @classmethod
    def from_settings(cls, settings, as_of: Optional[date] = None) -> "MaterialPriceEstimator":
        """Build from a resolved QuickQuoteSettings."""
        return cls(
            contingency_by_volatility=dict(settings.contingency_by_volatility),
            use_p80=settings.use_p80,
            as_of=as_of,
        )

    def adjusted_prices(self, records: Sequence[PriceRecord], material: Material) -> List[Decimal]:
        today = self.as_of or date.today()
        return [
            inflation_adjust(r.price_per_kg, material.inflation_rate_per_year, years_between(r.record_date, today))
            for r in records
        ]

    def price_estimate(self, records: Sequence[PriceRecord], material: Material) -> PertEstimate:
        """PERT over inflation-adjusted prices. Raises DataUnavailableError when empty."""
        if not records:
            raise DataUnavailableError(
                f"No price records for material {material.material_id}", material_id=material.material_id
            )
        return pert_from_samples(self.adjusted_prices(records, material))

    def contingency_rate(self, volatility: VolatilityLevel) -> Decimal:
        rate = self.contingency_by_volatility.get(volatility.value)
        if rate is None:
            logger.warning("No contingency rate for %s volatility, using 0", volatility.value)
            return Decimal("0")
        return rate

    def estimate(
        self,
        price_records: Sequence[PriceRecord],
        material: Material,
        net_weight_kg: Any,
        quantity_requested: int,
        use_p80: Optional[bool] = None,
    ) -> MaterialEstimate:
        """
        Per-part material cost for ``quantity_requested`` parts.

        Raises:
            ValidationError: non-positive yield, weight or quantity; yield > 1.
            DataUnavailableError: no price records for the material.
        """
        net_weight = to_decimal(net_weight_kg, "net_weight_kg")
        if material.default_yield <= 0 or material.default_yield > 1:
            raise ValidationError(f"Material yield must be in (0, 1], got {material.default_yield}")
        if net_weight <= 0:
            raise ValidationError(f"Net weight must be positive, got {net_weight}")
        if isinstance(quantity_requested, bool) or not isinstance(quantity_requested, int) or quantity_requested <= 0:
            raise ValidationError(f"Quantity requested must be a positive integer, got {quantity_requested!r}")

        if not price_records:
            raise DataUnavailableError(
                f"No price records for material {material.material_id}", material_id=material.material_id
            )
        adjusted = self.adjusted_prices(price_records, material)
        pert = pert_from_samples(adjusted)

        p80 = self.use_p80 if use_p80 is None else use_p80
        price_per_kg = pert.p80 if p80 else pert.expected

        buy_weight = net_weight / material.default_yield
        total_buy_weight = buy_weight * quantity_requested
        # net × qty × price / yield keeps exact results for exact inputs
        raw_cost = net_weight * quantity_requested * price_per_kg / material.default_yield
        rate = self.contingency_rate(material.volatility_level)
        contingency = raw_cost * rate
        per_part = (raw_cost + contingency) / quantity_requested

        return MaterialEstimate(
            pert=pert,
            basis="P80" if p80 else "P50",
            price_per_kg=price_per_kg,
            buy_weight_per_part=buy_weight,
            total_buy_weight=total_buy_weight,
            raw_material_cost=raw_cost,
            contingency_rate=rate,
            contingency=contingency,
            material_cost_per_part=money(per_part),
            adjusted_prices=sorted(adjusted),
        )
