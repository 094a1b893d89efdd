"""
test_post_process_engine.py — Unit tests for PostProcessEngine and quick_quote_totals.

Catalogue used throughout:
  PLT  zinc plating   PER_KG    2.00 €/kg   setup 50   minimum lot 150
  ANO  anodising      PER_M2   12.00 €/m²   no setup   no minimum
  DBR  deburring      PER_PART  0.50 €/pc   setup 20   no minimum
Complexity multipliers A 1.0 / B 1.25 / C 1.5.
"""

from decimal import Decimal

import pytest

from app.services.costing_errors import ValidationError
from app.services.post_process_engine import (
    AppliedPostProcess,
    PostProcessEngine,
    PostProcessType,
    PricingModel,
    QuotedPart,
    RfqPart,
    quick_quote_totals,
)
from app.services.quotation_settings import DEFAULT_COMPLEXITY


@pytest.fixture
def engine():
    return PostProcessEngine(
        [
            PostProcessType("PLT", "Zinc plating", "PER_KG", Decimal("2"), Decimal("50"), Decimal("150")),
            PostProcessType("ANO", "Anodising", PricingModel.PER_M2, Decimal("12")),
            PostProcessType("DBR", "Deburring", "per_part", Decimal("0.5"), Decimal("20"), None),
        ],
        DEFAULT_COMPLEXITY,
    )


def _part(qty=100, *applied):
    return RfqPart("P1", qty, "PX-1", Decimal("0.5"), Decimal("0.02"), tuple(applied))


class TestLotCost:

    def test_per_kg_hits_minimum_lot(self, engine):
        """basis 0.5 × 100 = 50 kg; 50 + 2 × 50 = 150 = minimum → 1.50 per part"""
        line = engine.lot_cost(_part(), AppliedPostProcess("PLT"))
        assert line["lot_cost"] == Decimal("150")
        assert line["cost_per_part"] == Decimal("1.5")

    def test_complexity_multiplier(self, engine):
        """grade C: 50 + 2 × 50 × 1.5 = 200 → 2.00 per part"""
        line = engine.lot_cost(_part(), AppliedPostProcess("PLT", "C"))
        assert line["lot_cost"] == Decimal("200")
        assert line["complexity_multiplier"] == 1.5

    def test_minimum_lot_charge_small_batch(self, engine):
        """10 parts: 50 + 2 × 5 = 60 < 150 → 150 / 10 = 15.00 per part"""
        line = engine.lot_cost(_part(10), AppliedPostProcess("PLT"))
        assert line["cost_per_part"] == Decimal("15")

    def test_per_m2(self, engine):
        """0.02 × 100 = 2 m² × 12 × 1.25 = 30 → 0.30 per part"""
        line = engine.lot_cost(_part(), AppliedPostProcess("ANO", "b"))
        assert line["lot_cost"] == Decimal("30")
        assert line["pricing_model"] == "PER_M2"

    def test_overrides(self, engine):
        """override unit cost 3: 50 + 3 × 50 = 200; override setup 0: 0 + 100 → minimum 150"""
        assert engine.lot_cost(_part(), AppliedPostProcess("PLT", override_unit_cost=Decimal("3")))["lot_cost"] == 200
        assert engine.lot_cost(_part(), AppliedPostProcess("PLT", override_setup_fee=Decimal("0")))["lot_cost"] == 150

    def test_unknown_type_skipped(self, engine, caplog):
        with caplog.at_level("WARNING", logger="fhx-costing.post-process"):
            assert engine.lot_cost(_part(), AppliedPostProcess("XXX")) is None
        assert any("Unknown post-process" in r.getMessage() for r in caplog.records)

    def test_missing_weight_costs_setup_only(self, engine):
        part = RfqPart("P2", 100, post_processes=())
        line = engine.lot_cost(part, AppliedPostProcess("DBR"))
        assert line["basis"] == 100.0
        assert line["lot_cost"] == Decimal("70")


class TestCostPerPart:

    def test_sum_of_processes(self, engine):
        """plating 1.50 + anodising 0.30 + deburring 0.70 = 2.50"""
        part = _part(100, AppliedPostProcess("PLT"), AppliedPostProcess("ANO", "B"),
                     AppliedPostProcess("DBR"), AppliedPostProcess("GONE"))
        out = engine.cost_per_part(part)
        assert out["post_process_cost_per_part"] == Decimal("2.50")
        assert [line["type_id"] for line in out["lines"]] == ["PLT", "ANO", "DBR"]
        assert out["lines"][0]["cost_per_part"] == 1.5

    def test_no_processes(self, engine):
        assert engine.cost_per_part(_part())["post_process_cost_per_part"] == Decimal("0.00")

    def test_zero_quantity(self, engine):
        with pytest.raises(ValidationError):
            engine.cost_per_part(_part(0, AppliedPostProcess("PLT")))

    def test_unknown_pricing_model(self):
        with pytest.raises(ValidationError):
            PostProcessType("X", "Mystery", "PER_HOUR", Decimal("1"))


class TestQuickQuoteTotals:

    @pytest.fixture
    def parts(self):
        return [
            QuotedPart("P1", 100, Decimal("21.00"), Decimal("2.50"), Decimal("6.50")),
            QuotedPart("P2", 10, None, Decimal("0"), Decimal("5")),
        ]

    def test_totals(self, parts):
        """
        P1: 30.00 cost → 30 / 0.75 = 40.00 sales, × 100
        P2: 5.00 cost  → 6.67 sales, × 10
        """
        out = quick_quote_totals(parts, 25)
        assert out["total_cost"] == 3050.0
        assert out["total_sales"] == 4066.67
        assert out["margin"] == 1016.67
        assert out["parts"][0]["sales_price_per_part"] == 40.0

    def test_parts_without_estimate_listed(self, parts):
        assert quick_quote_totals(parts, 25)["parts_without_material_estimate"] == ["P2"]

    @pytest.mark.parametrize("margin", [100, -1])
    def test_bad_margin(self, parts, margin):
        with pytest.raises(ValidationError):
            quick_quote_totals(parts, margin)
