"""
test_costing_engine.py — Unit tests for CostRollupEngine.

Tests cover:
  - Worked example: one routing line at the fallback rate, one material line,
    tier 500 @ 35 % → unit price 21.57
  - Resource rates per routing line, subcon resources, per-line override cost
  - Material and subcon markups
  - Subcon quantity / tier quantity coupling per subcon type (strict and lenient)
  - Tooling per tier with per-tool markup
  - Invariants: total = labour + material + subcon + tooling, unit price rises
    with margin, unit price never below cost per unit
  - Guards: margin >= 100, zero / fractional quantity, negative inputs
  - summarise_tiers and construction from QuotationSettings

All tests are pure unit tests; no database or external services required.
"""

from decimal import Decimal

import pytest

from app.services.costing_engine import (
    CostRollupEngine,
    MaterialLine,
    QuantityTier,
    Resource,
    RoutingLine,
    SubconLine,
    ToolLine,
    money,
    summarise_tiers,
    to_decimal,
)
from app.services.costing_errors import ValidationError
from app.services.quotation_settings import QuotationSettings


def _plating(qty_costs):
    return [SubconLine("PLT", "Zinc plating", Decimal(cost), qty) for qty, cost in qty_costs]


# ===========================================================================
# Class 1: Worked example at the fallback rate
# ===========================================================================

class TestFallbackRateExample:
    """
    Routing: setup 10 min + run 2 min, resource unknown → 60 €/h fallback.
    Material: 5 € × 2 per part, markup 20 %.  No subcon.  Tier 500 @ 35 %.
    """

    def test_batch_minutes(self, scenario_a):
        """batch minutes = 10 + 2 × 500 = 1010"""
        assert CostRollupEngine.batch_minutes(scenario_a["routings"], 500) == Decimal("1010")

    def test_labour_cost(self, fallback_engine, scenario_a):
        """labour = 1010 / 60 × 60 = 1010.00"""
        labour, fallback = fallback_engine.labour_cost(scenario_a["routings"], 500)
        assert labour == Decimal("1010.00")
        assert fallback == ["CNC-UNKNOWN"]

    def test_full_tier(self, fallback_engine, scenario_a):
        """
        material = 5 × 2 × 1.2 × 500 = 6000.00
        total    = 1010 + 6000      = 7010.00
        per unit = 7010 / 500       = 14.02
        price    = 14.02 / 0.65     = 21.569… → 21.57
        """
        [tier] = fallback_engine.calculate(**scenario_a)
        assert tier.labour_cost == Decimal("1010.00")
        assert tier.material_cost == Decimal("6000.00")
        assert tier.subcon_cost == Decimal("0.00")
        assert tier.total_cost == Decimal("7010.00")
        assert tier.cost_per_unit == Decimal("14.02")
        assert tier.unit_price == Decimal("21.57")

    def test_total_price_and_hours(self, fallback_engine, scenario_a):
        """total price = 21.5692… × 500 = 10784.62; hours = 1010 / 60 = 16.833"""
        [tier] = fallback_engine.calculate(**scenario_a)
        assert tier.total_price == Decimal("10784.62")
        assert tier.hours == Decimal("16.833")

    def test_fallback_flag_reported(self, fallback_engine, scenario_a):
        [tier] = fallback_engine.calculate(**scenario_a)
        assert tier.used_fallback_rate is True
        out = tier.to_dict()
        assert out["used_fallback_rate"] is True
        assert out["fallback_resources"] == ["CNC-UNKNOWN"]
        assert out["unit_price"] == 21.57

    def test_fallback_logged(self, fallback_engine, scenario_a, caplog):
        with caplog.at_level("WARNING", logger="fhx-costing"):
            fallback_engine.calculate(**scenario_a)
        assert any("fallback rate" in r.getMessage() for r in caplog.records)


# ===========================================================================
# Class 2: Resource table, subcon and markups
# ===========================================================================

class TestResourcePricing:
    """
    CNC1 at 1.50 €/min, setup 30 + run 1.5 min/part; material 4 € × 1.5
    at 10 % markup; plating subcon at 20 % markup.
    """

    @pytest.fixture
    def lines(self):
        return {
            "materials": [MaterialLine(Decimal("4"), Decimal("1.5"))],
            "subcons": _plating([(500, "0.80"), (750, "0.70"), (1000, "0.60")]),
            "routings": [RoutingLine(10, "CNC1", Decimal("30"), Decimal("1.5"))],
            "tiers": [
                QuantityTier(500, Decimal("45")),
                QuantityTier(750, Decimal("40")),
                QuantityTier(1000, Decimal("35")),
            ],
        }

    def test_tier_500(self, resource_engine, lines):
        """
        labour   = (30 + 1.5 × 500) × 1.50 = 1170.00
        material = 4 × 1.5 × 1.1 × 500     = 3300.00
        subcon   = 0.80 × 1.2 × 500        = 480.00
        total 4950.00 → 9.90/unit → 9.90 / 0.55 = 18.00
        """
        t = resource_engine.calculate(**lines)[0]
        assert t.labour_cost == Decimal("1170.00")
        assert t.material_cost == Decimal("3300.00")
        assert t.subcon_cost == Decimal("480.00")
        assert t.total_cost == Decimal("4950.00")
        assert t.unit_price == Decimal("18.00")
        assert t.total_price == Decimal("9000.00")
        assert t.used_fallback_rate is False

    def test_tier_750(self, resource_engine, lines):
        """total = 1732.50 + 4950.00 + 630.00 = 7312.50 → 9.75 / 0.60 = 16.25"""
        t = resource_engine.calculate(**lines)[1]
        assert t.total_cost == Decimal("7312.50")
        assert t.cost_per_unit == Decimal("9.75")
        assert t.unit_price == Decimal("16.25")

    def test_tier_1000_rounding(self, resource_engine, lines):
        """total = 2295 + 6600 + 720 = 9615.00; 9.615 → 9.62; 9.615 / 0.65 = 14.7923 → 14.79"""
        t = resource_engine.calculate(**lines)[2]
        assert t.total_cost == Decimal("9615.00")
        assert t.cost_per_unit == Decimal("9.62")
        assert t.unit_price == Decimal("14.79")
        assert t.total_price == Decimal("14792.31")

    def test_subcon_resource_costs_nothing_on_routing(self, resource_engine):
        routings = [RoutingLine(20, "SUB01", Decimal("15"), Decimal("3"))]
        labour, fallback = resource_engine.labour_cost(routings, 100)
        assert labour == Decimal("0.00")
        assert fallback == []

    def test_override_cost_added_once_per_batch(self, resource_engine):
        """An override replaces the time-based cost of its line, whatever the quantity."""
        routings = [
            RoutingLine(10, "CNC1", Decimal("0"), Decimal("1")),
            RoutingLine(20, "DEBURR", Decimal("999"), Decimal("999"), override_cost=Decimal("250")),
        ]
        labour_100, fallback = resource_engine.labour_cost(routings, 100)
        labour_200, _ = resource_engine.labour_cost(routings, 200)
        assert labour_100 == Decimal("400.00")   # 100 × 1.5 + 250
        assert labour_200 == Decimal("550.00")   # 200 × 1.5 + 250
        assert fallback == []

    def test_resolve_rate(self, resource_engine):
        assert resource_engine.resolve_rate("CNC1") == (Decimal("1.50"), False)
        rate, used_fallback = resource_engine.resolve_rate("NOPE")
        assert used_fallback is True
        assert abs(rate - Decimal("55") / 60) < Decimal("0.0000001")


# ===========================================================================
# Class 3: Subcon / tier coupling
# ===========================================================================

class TestSubconTierCoupling:

    @pytest.fixture
    def mismatched(self):
        return {
            "materials": [],
            "subcons": _plating([(500, "1.00")]),
            "routings": [],
            "tiers": [QuantityTier(500, Decimal("30")), QuantityTier(750, Decimal("30"))],
        }

    def test_strict_mismatch_raises(self, mismatched):
        engine = CostRollupEngine()
        with pytest.raises(ValidationError, match="Subcon pricing quantities"):
            engine.calculate(**mismatched)

    def test_lenient_mismatch_costs_zero_subcon(self, mismatched, caplog):
        engine = CostRollupEngine(strict_subcon_tiers=False)
        with caplog.at_level("WARNING", logger="fhx-costing"):
            t500, t750 = engine.calculate(**mismatched)
        assert t500.subcon_cost == Decimal("500.00")
        assert t750.subcon_cost == Decimal("0.00")
        assert any("out of step" in r.getMessage() for r in caplog.records)

    def test_no_subcons_is_allowed(self):
        [t] = CostRollupEngine().calculate([], [], [], [QuantityTier(10, Decimal("0"))])
        assert t.total_cost == Decimal("0.00")
        assert t.unit_price == Decimal("0.00")

    def test_subcon_rows_of_one_tier_are_summed(self):
        """Two subcon types at qty 100: (2 + 3) × 1.1 × 100 = 550.00"""
        engine = CostRollupEngine(subcon_markup_percent=Decimal("10"))
        subcons = [
            SubconLine("PLT", "Plating", Decimal("2"), 100, subcon_id=1),
            SubconLine("HT", "Heat treat", Decimal("3"), 100, cert_required=True, subcon_id=2),
        ]
        [t] = engine.calculate([], subcons, [], [QuantityTier(100, Decimal("20"))])
        assert t.subcon_cost == Decimal("550.00")

    @pytest.fixture
    def heat_treat_missing_1000(self):
        """Plating priced at 500 and 1000, heat treatment only at 500."""
        return {
            "materials": [],
            "subcons": [
                SubconLine("PLT", "Plating", Decimal("1"), 500, subcon_id=1),
                SubconLine("PLT", "Plating", Decimal("1"), 1000, subcon_id=1),
                SubconLine("HT", "Heat treat", Decimal("1"), 500, subcon_id=2),
            ],
            "routings": [],
            "tiers": [QuantityTier(500, Decimal("30")), QuantityTier(1000, Decimal("30"))],
        }

    def test_each_subcon_type_must_cover_every_tier(self, heat_treat_missing_1000):
        with pytest.raises(ValidationError, match=r"subcon 2 \(tiers without subcon rows: \[1000\]"):
            CostRollupEngine().calculate(**heat_treat_missing_1000)

    def test_lenient_gap_in_one_type_is_logged(self, heat_treat_missing_1000, caplog):
        engine = CostRollupEngine(strict_subcon_tiers=False)
        with caplog.at_level("WARNING", logger="fhx-costing"):
            t500, t1000 = engine.calculate(**heat_treat_missing_1000)
        assert t500.subcon_cost == Decimal("1000.00")
        assert t1000.subcon_cost == Decimal("1000.00")
        [warning] = [r for r in caplog.records if "out of step" in r.getMessage()]
        assert warning.subcon_id == 2
        assert warning.missing_tiers == [1000]

    @pytest.mark.parametrize("strict", [True, False])
    def test_duplicate_subcon_row_rejected(self, strict):
        subcons = _plating([(500, "0.80"), (500, "0.80")])
        engine = CostRollupEngine(strict_subcon_tiers=strict)
        with pytest.raises(ValidationError, match="priced twice at quantity 500"):
            engine.calculate([], subcons, [], [QuantityTier(500, Decimal("30"))])


# ===========================================================================
# Class 3b: Tooling
# ===========================================================================

class TestTooling:
    """
    Soft jaws at 200 € with 10 % markup: 1 set for 500 parts, 2 sets for 1000.
    Tooling is a batch cost, not multiplied by the tier quantity.
    """

    @pytest.fixture
    def jaws(self):
        return ToolLine("Soft jaws", Decimal("200"), Decimal("10"), {500: 1, 1000: 2})

    @pytest.fixture
    def tiers(self):
        return [QuantityTier(500, Decimal("0")), QuantityTier(750, Decimal("0")), QuantityTier(1000, Decimal("20"))]

    def test_tooling_per_tier(self, jaws, tiers):
        """500: 1 × 200 × 1.1 = 220.00; 750: none listed = 0.00; 1000: 2 × 220 = 440.00"""
        t500, t750, t1000 = CostRollupEngine().calculate([], [], [], tiers, [jaws])
        assert t500.tooling_cost == Decimal("220.00")
        assert t750.tooling_cost == Decimal("0.00")
        assert t1000.tooling_cost == Decimal("440.00")

    def test_tooling_priced_into_unit_price(self, jaws, tiers):
        """1000 @ 20 %: 440 / 1000 = 0.44 per unit → 0.44 / 0.8 = 0.55"""
        t500, _, t1000 = CostRollupEngine().calculate([], [], [], tiers, [jaws])
        assert t500.total_cost == Decimal("220.00")
        assert t500.unit_price == Decimal("0.44")
        assert t1000.unit_price == Decimal("0.55")
        assert t1000.to_dict()["tooling_cost"] == 440.0

    def test_no_tools_costs_nothing(self, fallback_engine, scenario_a):
        [tier] = fallback_engine.calculate(**scenario_a)
        assert tier.tooling_cost == Decimal("0.00")
        assert tier.total_cost == Decimal("7010.00")

    def test_tool_quantity_for_unknown_tier(self, tiers):
        tool = ToolLine("Drill jig", "50", "0", {200: 1})
        with pytest.raises(ValidationError, match="unknown tiers"):
            CostRollupEngine().calculate([], [], [], tiers, [tool])
        [t] = CostRollupEngine(strict_subcon_tiers=False).calculate([], [], [], tiers[:1], [tool])
        assert t.tooling_cost == Decimal("0.00")

    @pytest.mark.parametrize("price, markup, count", [("-1", "0", 1), ("10", "-5", 1), ("10", "0", -1)])
    def test_negative_tool_inputs(self, tiers, price, markup, count):
        tool = ToolLine("Fixture", price, markup, {500: count})
        with pytest.raises(ValidationError, match="negative"):
            CostRollupEngine().calculate([], [], [], tiers, [tool])


# ===========================================================================
# Class 4: Invariants
# ===========================================================================

class TestInvariants:

    def test_total_is_sum_of_components(self, resource_engine):
        lines = dict(
            materials=[MaterialLine("3.333", "1.7"), MaterialLine("0.127", "12")],
            subcons=_plating([(37, "0.333"), (113, "0.291")]),
            routings=[RoutingLine(10, "CNC1", "17.5", "0.77"), RoutingLine(20, "XX", "5", "0.333")],
            tiers=[QuantityTier(37, "33.3"), QuantityTier(113, "27.5")],
            tools=[ToolLine("Collet", "41.17", "12.5", {37: 1, 113: 3})],
        )
        for t in resource_engine.calculate(**lines):
            assert t.tooling_cost > 0
            assert t.total_cost == t.labour_cost + t.material_cost + t.subcon_cost + t.tooling_cost

    def test_unit_price_rises_with_margin(self, fallback_engine, scenario_a):
        prices = []
        for margin in ("0", "10", "35", "60", "99"):
            tiers = [QuantityTier(500, Decimal(margin))]
            [t] = fallback_engine.calculate(scenario_a["materials"], [], scenario_a["routings"], tiers)
            prices.append(t.unit_price)
        assert prices == sorted(prices)
        assert len(set(prices)) == len(prices)

    def test_zero_margin_price_equals_cost(self, fallback_engine, scenario_a):
        [t] = fallback_engine.calculate(
            scenario_a["materials"], [], scenario_a["routings"], [QuantityTier(500, Decimal("0"))]
        )
        assert t.unit_price == t.cost_per_unit

    def test_tiers_are_returned_in_input_order(self, fallback_engine, scenario_a):
        tiers = [QuantityTier(1000, "30"), QuantityTier(100, "40"), QuantityTier(500, "35")]
        results = fallback_engine.calculate(scenario_a["materials"], [], scenario_a["routings"], tiers)
        assert [r.quantity for r in results] == [1000, 100, 500]


# ===========================================================================
# Class 5: Guards
# ===========================================================================

class TestGuards:

    @pytest.mark.parametrize("margin", ["100", "120", "-1"])
    def test_bad_margin(self, fallback_engine, scenario_a, margin):
        with pytest.raises(ValidationError):
            fallback_engine.calculate(
                scenario_a["materials"], [], scenario_a["routings"], [QuantityTier(500, Decimal(margin))]
            )

    @pytest.mark.parametrize("qty", [0, -5])
    def test_non_positive_quantity(self, fallback_engine, scenario_a, qty):
        with pytest.raises(ValidationError, match="positive"):
            fallback_engine.calculate(scenario_a["materials"], [], scenario_a["routings"], [QuantityTier(qty, "30")])

    def test_fractional_quantity(self, fallback_engine, scenario_a):
        with pytest.raises(ValidationError, match="integer"):
            fallback_engine.calculate(scenario_a["materials"], [], scenario_a["routings"], [QuantityTier(2.5, "30")])

    def test_empty_tiers(self, fallback_engine):
        with pytest.raises(ValidationError, match="At least one"):
            fallback_engine.calculate([], [], [], [])

    def test_negative_setup_time(self, fallback_engine):
        with pytest.raises(ValidationError, match="negative"):
            fallback_engine.calculate([], [], [RoutingLine(10, "X", "-1", "1")], [QuantityTier(10, "20")])

    def test_negative_material_cost(self, fallback_engine):
        with pytest.raises(ValidationError):
            fallback_engine.calculate([MaterialLine("-1", "1")], [], [], [QuantityTier(10, "20")])

    def test_negative_markup_rejected(self):
        with pytest.raises(ValidationError):
            CostRollupEngine(material_markup_percent=-5)

    def test_non_numeric_input(self):
        with pytest.raises(ValidationError):
            MaterialLine("abc", "1")
        with pytest.raises(ValidationError):
            to_decimal(None, "x")
        with pytest.raises(ValidationError):
            to_decimal(True, "x")

    def test_validation_error_is_value_error(self):
        assert issubclass(ValidationError, ValueError)


# ===========================================================================
# Class 6: Helpers and settings
# ===========================================================================

class TestHelpers:

    def test_money_rounds_half_up(self):
        assert money(Decimal("2.345")) == Decimal("2.35")
        assert money(Decimal("2.344")) == Decimal("2.34")

    def test_to_decimal_from_float_avoids_binary_noise(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_summarise_tiers(self, resource_engine):
        results = resource_engine.calculate(
            [MaterialLine("4", "1.5")], [], [RoutingLine(10, "CNC1", "30", "1.5")],
            [QuantityTier(500, "45"), QuantityTier(1000, "35")],
        )
        summary = summarise_tiers(results)
        assert summary["tiers"] == 2
        assert summary["best_quantity"] == 1000
        assert summary["any_fallback_rate"] is False
        assert summarise_tiers([]) == {"tiers": 0}

    def test_from_settings_uses_defaults_and_overrides(self):
        settings = QuotationSettings.from_settings({"cost_per_hour": "72", "material_markup_default": "15"})
        engine = CostRollupEngine.from_settings(settings, [Resource("CNC1", "1")], subcon_markup_percent="5")
        assert engine.cost_per_hour_fallback == Decimal("72")
        assert engine.material_markup_percent == Decimal("15")
        assert engine.subcon_markup_percent == Decimal("5")
        assert engine.strict_subcon_tiers is True
