"""
Quotation settings — immutable configuration resolved from key-value rows.

The quotation and quick-quote tables store settings as
``(setting_key, setting_value)`` string pairs.  They are resolved once per
request into frozen dataclasses and passed into each calculation; the engines
never read settings on their own.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger("fhx-costing.settings")


# ---------------------------------------------------------------------------
# Defaults (used when a key is missing or unparsable)
# ---------------------------------------------------------------------------
DEFAULT_MATERIAL_MARKUP: Decimal = Decimal("20")
DEFAULT_SUBCON_MARKUP: Decimal = Decimal("20")
DEFAULT_COST_PER_HOUR: Decimal = Decimal("55")
DEFAULT_TIER_MARGINS: Tuple[Decimal, ...] = (Decimal("45"), Decimal("40"), Decimal("35"))
DEFAULT_TIER_QUANTITIES: Tuple[int, ...] = (500, 750, 1000)

DEFAULT_CONTINGENCY: Dict[str, Decimal] = {
    "LOW": Decimal("0.03"),
    "MEDIUM": Decimal("0.05"),
    "HIGH": Decimal("0.10"),
}
DEFAULT_COMPLEXITY: Dict[str, Decimal] = {
    "A": Decimal("1.0"),
    "B": Decimal("1.25"),
    "C": Decimal("1.5"),
}
DEFAULT_YIELD: Decimal = Decimal("0.6")
DEFAULT_INFLATION_RATE: Decimal = Decimal("0.03")

# margins and markups are stored with 2 decimal places
_PERCENT_PLACES = Decimal("0.01")
_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _decimal(raw: Mapping[str, str], key: str, default: Decimal) -> Decimal:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        parsed = None
    if parsed is None or not parsed.is_finite():
        logger.warning("Setting %s=%r is not numeric, using default %s", key, value, default)
        return default
    return parsed


def _flag(raw: Mapping[str, str], key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    return str(value).strip().lower() in _TRUE_STRINGS


@dataclass(frozen=True)
class QuotationSettings:
    material_markup_percent: Decimal = DEFAULT_MATERIAL_MARKUP
    subcon_markup_percent: Decimal = DEFAULT_SUBCON_MARKUP
    cost_per_hour: Decimal = DEFAULT_COST_PER_HOUR
    tier_margins: Tuple[Decimal, ...] = DEFAULT_TIER_MARGINS
    # Distinct subcon quantities must equal the tier quantities when True
    strict_subcon_tiers: bool = True

    @classmethod
    def from_settings(cls, raw: Optional[Mapping[str, str]] = None) -> "QuotationSettings":
        """Build from the ``quotation_settings`` key-value rows."""
        raw = raw or {}
        margins = tuple(
            _decimal(raw, f"margin_vol_{i + 1}", default).quantize(_PERCENT_PLACES, rounding=ROUND_HALF_UP)
            for i, default in enumerate(DEFAULT_TIER_MARGINS)
        )
        return cls(
            material_markup_percent=_decimal(raw, "material_markup_default", DEFAULT_MATERIAL_MARKUP),
            subcon_markup_percent=_decimal(raw, "subcon_markup_default", DEFAULT_SUBCON_MARKUP),
            cost_per_hour=_decimal(raw, "cost_per_hour", DEFAULT_COST_PER_HOUR),
            tier_margins=margins,
            strict_subcon_tiers=_flag(raw, "strict_subcon_tiers", True),
        )

    def default_tiers(self):
        """Default quantity tiers for a new quotation (500/750/1000 at the configured margins)."""
        from app.services.costing_engine import QuantityTier

        return [
            QuantityTier(quantity=qty, target_margin_percent=margin)
            for qty, margin in zip(DEFAULT_TIER_QUANTITIES, self.tier_margins)
        ]


@dataclass(frozen=True)
class QuickQuoteSettings:
    use_p80: bool = False
    contingency_by_volatility: Mapping[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_CONTINGENCY)
    )
    complexity_multipliers: Mapping[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_COMPLEXITY)
    )
    default_yield: Decimal = DEFAULT_YIELD
    default_inflation_rate: Decimal = DEFAULT_INFLATION_RATE

    @classmethod
    def from_settings(cls, raw: Optional[Mapping[str, str]] = None) -> "QuickQuoteSettings":
        """Build from the ``quick_quote_settings`` key-value rows."""
        raw = raw or {}
        contingency = {
            level: _decimal(raw, f"contingency_{level.lower()}", default)
            for level, default in DEFAULT_CONTINGENCY.items()
        }
        complexity = {
            grade: _decimal(raw, f"complexity_multiplier_{grade.lower()}", default)
            for grade, default in DEFAULT_COMPLEXITY.items()
        }
        default_yield = _decimal(raw, "default_yield", DEFAULT_YIELD)
        if not 0 < default_yield <= 1:
            logger.warning("Setting default_yield=%s is outside (0, 1], using default %s", default_yield, DEFAULT_YIELD)
            default_yield = DEFAULT_YIELD
        inflation = _decimal(raw, "default_inflation_rate", DEFAULT_INFLATION_RATE)
        if inflation <= -1:
            logger.warning(
                "Setting default_inflation_rate=%s is not above -1, using default %s", inflation, DEFAULT_INFLATION_RATE
            )
            inflation = DEFAULT_INFLATION_RATE
        return cls(
            use_p80=_flag(raw, "use_p80_estimate", False),
            contingency_by_volatility=contingency,
            complexity_multipliers=complexity,
            default_yield=default_yield,
            default_inflation_rate=inflation,
        )

    def contingency_rate(self, volatility: str) -> Decimal:
        return self.contingency_by_volatility.get(
            (volatility or "MEDIUM").upper(), DEFAULT_CONTINGENCY["MEDIUM"]
        )

    def complexity_multiplier(self, grade: str) -> Decimal:
        return self.complexity_multipliers.get((grade or "A").upper(), Decimal("1"))
