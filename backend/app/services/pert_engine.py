"""
PERT three-point estimation.

Two entry points:
  - three_point_estimate: optimistic / most likely / pessimistic figures
    entered by an estimator, with 68 / 95 / 99 % confidence ranges.
  - pert_from_samples: low / median / high taken from a set of observed
    values (historical prices), used by the material price estimator.

Expected = (O + 4M + P) / 6, standard deviation = (P - O) / 6.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Sequence

from app.services.costing_engine import to_decimal
from app.services.costing_errors import DataUnavailableError, ValidationError

# z-score of the 80th percentile under the normal approximation
P80_Z: Decimal = Decimal("0.84")

_SIX = Decimal("6")
_FOUR = Decimal("4")
_TWO = Decimal("2")


@dataclass(frozen=True)
class PertEstimate:
    low: Decimal
    most_likely: Decimal
    high: Decimal
    expected: Decimal
    std_dev: Decimal
    p80: Decimal

    def to_dict(self) -> Dict[str, float]:
        return {
            "low": float(self.low),
            "most_likely": float(self.most_likely),
            "high": float(self.high),
            "expected": float(self.expected),
            "std_dev": float(self.std_dev),
            "p80": float(self.p80),
        }


def _pert(low: Decimal, most_likely: Decimal, high: Decimal) -> PertEstimate:
    expected = (low + _FOUR * most_likely + high) / _SIX
    std_dev = (high - low) / _SIX
    return PertEstimate(
        low=low,
        most_likely=most_likely,
        high=high,
        expected=expected,
        std_dev=std_dev,
        p80=expected + P80_Z * std_dev,
    )


def median(values: Sequence[Decimal]) -> Decimal:
    """Median of a non-empty sequence; mean of the two middle values for even counts."""
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / _TWO
    return ordered[mid]


def pert_from_samples(values: Sequence[Any]) -> PertEstimate:
    """PERT estimate with low = min, most likely = median, high = max of the samples."""
    if not values:
        raise DataUnavailableError("No samples to estimate from")
    decimals = [to_decimal(v, "sample") for v in values]
    return _pert(min(decimals), median(decimals), max(decimals))


def three_point_estimate(optimistic: Any, most_likely: Any, pessimistic: Any) -> Dict[str, Any]:
    """
    Classic three-point PERT with confidence ranges.

    Requires optimistic <= most_likely <= pessimistic.

    Returns:
        Dict with expected, std_dev, variance, p80 and confidence_range
        (low/high at ±1σ, ±2σ and ±3σ).
    """
    o = to_decimal(optimistic, "optimistic")
    m = to_decimal(most_likely, "most_likely")
    p = to_decimal(pessimistic, "pessimistic")
    if o > m or m > p:
        raise ValidationError(
            f"Three-point estimate needs optimistic <= most likely <= pessimistic (got {o}, {m}, {p})"
        )

    est = _pert(o, m, p)
    sd = est.std_dev
    ranges = {}
    for k, label in ((1, "68"), (2, "95"), (3, "99")):
        ranges[f"low{label}"] = float(est.expected - k * sd)
        ranges[f"high{label}"] = float(est.expected + k * sd)

    return {
        "optimistic": float(o),
        "most_likely": float(m),
        "pessimistic": float(p),
        "expected": float(est.expected),
        "std_dev": float(sd),
        "variance": float(sd * sd),
        "p80": float(est.p80),
        "confidence_range": ranges,
    }
