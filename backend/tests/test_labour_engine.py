"""
test_labour_engine.py — Unit tests for labour hours, crew allocation and waste.

Default rules: 8h/day, stairs 15 %, extended uplift 10 %, 25 % duration
buffer, quarter-hour rounding, max 8 fitters, supervisor above 4 days.
"""

import pytest

from smartquote.models.quote_schema import LabourResult, QuoteParameters, RateConfiguration, RuleSettings
from smartquote.services.labour_engine import (
    LabourEngine,
    duration_buffer_percentage,
    optimise_crew,
    round_to_nearest,
)


def _labour(buffered_hours: float) -> LabourResult:
    return LabourResult(
        total_hours=buffered_hours,
        uplift_buffer_percentage=0.0,
        hours_after_uplift=buffered_hours,
        duration_buffer_percentage=25.0,
        buffered_hours=buffered_hours,
        total_days=buffered_hours / 8,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestRounding:

    @pytest.mark.parametrize("value,expected", [
        (31.1, 31.0),
        (31.125, 31.25),
        (15.625, 15.75),
        (12.5, 12.5),
        (0.0, 0.0),
    ])
    def test_quarter_hour(self, value, expected):
        assert round_to_nearest(value) == pytest.approx(expected)

    def test_zero_step_is_identity(self):
        assert round_to_nearest(3.14159, step=0) == 3.14159


class TestDurationBuffer:

    @pytest.mark.parametrize("hours", [1.0, 16.0, 17.0, 45.0, 400.0])
    def test_floors_never_lower_baseline(self, hours):
        """The 10 % and 15 % floors sit below the 25 % baseline."""
        assert duration_buffer_percentage(hours, RuleSettings()) == 25.0

    def test_large_job_at_least_fifteen(self):
        assert duration_buffer_percentage(45.0, RuleSettings()) >= 15.0

    def test_configured_floors_lift_a_low_baseline(self):
        """Baseline 5 %: unchanged up to 16h, floored to 10 % above 16h, 15 % above 40h."""
        rules = RuleSettings(duration_buffer_baseline_percent=5.0)
        assert duration_buffer_percentage(10.0, rules) == 5.0
        assert duration_buffer_percentage(20.0, rules) == 10.0
        assert duration_buffer_percentage(45.0, rules) == 15.0

    def test_custom_floor_table(self):
        rules = RuleSettings(duration_buffer_baseline_percent=0.0, duration_buffer_floors=[(8.0, 30.0)])
        assert duration_buffer_percentage(8.0, rules) == 0.0
        assert duration_buffer_percentage(8.5, rules) == 30.0


class TestOptimiseCrew:

    def test_float_noise_does_not_add_a_fitter(self):
        """56h / 7h = 8 fitter-days → 1 day × 8 fitters, not 9."""
        assert optimise_crew(56, 7, 8) == (1, 8)

    def test_fewest_days_then_fewest_fitters(self):
        """100h / 8h = 12.5 fitter-days: 1 day needs 13 (> 8), 2 days need 7."""
        assert optimise_crew(100, 8, 8) == (2, 7)

    def test_just_over_one_day_of_max_crew(self):
        """65h / 8h = 8.125: 1 day needs 9, 2 days need ceil(4.06) = 5."""
        assert optimise_crew(65, 8, 8) == (2, 5)

    def test_single_fitter_cap(self):
        assert optimise_crew(20, 8, 1) == (3, 1)

    def test_zero_hours(self):
        assert optimise_crew(0, 8, 8) == (0, 0)


# ---------------------------------------------------------------------------
# LabourEngine.calculate_labour
# ---------------------------------------------------------------------------

class TestCalculateLabour:

    def test_no_uplift(self, labour_engine, make_resolved):
        """10h × 1.25 = 12.5h buffered, 12.5 / 8 = 1.5625 days."""
        labour = labour_engine.calculate_labour([make_resolved(quantity=4, time_per_unit=2.5)], QuoteParameters())
        assert labour.total_hours == pytest.approx(10.0)
        assert labour.uplift_buffer_percentage == 0.0
        assert labour.hours_after_uplift == pytest.approx(10.0)
        assert labour.duration_buffer_percentage == 25.0
        assert labour.buffered_hours == pytest.approx(12.5)
        assert labour.total_days == pytest.approx(1.5625)

    def test_stairs_and_extended_uplift(self, labour_engine, make_resolved):
        """10h × 1.25 (15 % + 10 %) = 12.5h, × 1.25 = 15.625h → 15.75h."""
        params = QuoteParameters(uplift_via_stairs=True, extended_uplift=True)
        labour = labour_engine.calculate_labour([make_resolved(quantity=4, time_per_unit=2.5)], params)
        assert labour.uplift_buffer_percentage == 25.0
        assert labour.hours_after_uplift == pytest.approx(12.5)
        assert labour.buffered_hours == pytest.approx(15.75)

    def test_sums_all_products(self, labour_engine, make_resolved):
        products = [
            make_resolved("A", quantity=2, time_per_unit=1.0, line_number=1),
            make_resolved("B", quantity=1, time_per_unit=2.0, line_number=2),
        ]
        assert labour_engine.calculate_labour(products, QuoteParameters()).total_hours == pytest.approx(4.0)

    def test_empty(self, labour_engine):
        labour = labour_engine.calculate_labour([], QuoteParameters())
        assert labour.buffered_hours == 0.0
        assert labour.total_days == 0.0

    def test_engines_keep_their_own_buffer_settings(self, labour_engine, make_resolved):
        """
        Same 10h job on two engines:
          default  10 × 1.25 = 12.5h
          tight    10 × 1.05 = 10.5h (5 % baseline, under the 16h floor)
        """
        tight = LabourEngine(RateConfiguration(rules=RuleSettings(duration_buffer_baseline_percent=5.0)))
        products = [make_resolved(quantity=4, time_per_unit=2.5)]

        assert tight.calculate_labour(products, QuoteParameters()).buffered_hours == pytest.approx(10.5)
        assert labour_engine.calculate_labour(products, QuoteParameters()).buffered_hours == pytest.approx(12.5)
        assert tight.calculate_labour(products, QuoteParameters()).duration_buffer_percentage == 5.0


# ---------------------------------------------------------------------------
# LabourEngine.calculate_crew
# ---------------------------------------------------------------------------

class TestCalculateCrew:

    def test_light_job(self, labour_engine, make_resolved):
        """12.5h at 8h/day = 1.5625 fitter-days → 1 day × 2 fitters, one-man van."""
        crew = labour_engine.calculate_crew(_labour(12.5), [make_resolved()], QuoteParameters())
        assert crew.installation_days == 1.0
        assert crew.total_project_days == 1.0
        assert crew.total_fitters == 2
        assert crew.is_two_man_van_required is False
        assert crew.van_fitters == 1
        assert crew.on_foot_fitters == 1
        assert crew.van_count == 1
        assert crew.supervisor_count == 0
        assert crew.crew_size == 2
        assert crew.hour_load_per_person == pytest.approx(6.25)
        assert crew.days_per_fitter == pytest.approx(0.78125)

    def test_heavy_item_needs_two_man_van(self, labour_engine, make_resolved):
        crew = labour_engine.calculate_crew(_labour(12.5), [make_resolved(is_heavy=True)], QuoteParameters())
        assert crew.is_two_man_van_required is True
        assert crew.van_fitters == 2
        assert crew.on_foot_fitters == 0

    def test_van_override(self, labour_engine, make_resolved):
        params = QuoteParameters(override_van_type="twoMan")
        crew = labour_engine.calculate_crew(_labour(12.5), [make_resolved()], params)
        assert crew.is_two_man_van_required is True

    def test_fitter_override_gives_fractional_days(self, labour_engine, make_resolved):
        """12.5h / (3 fitters × 8h) = 0.5208 days."""
        params = QuoteParameters(override_fitter_count=3)
        crew = labour_engine.calculate_crew(_labour(12.5), [make_resolved()], params)
        assert crew.total_fitters == 3
        assert crew.installation_days == pytest.approx(12.5 / 24)

    def test_supervisor_above_threshold(self, labour_engine, make_resolved):
        """300h / 8h = 37.5 fitter-days → 5 days × 8 fitters; 5 > 4 days."""
        crew = labour_engine.calculate_crew(_labour(300), [make_resolved()], QuoteParameters())
        assert (crew.installation_days, crew.total_fitters) == (5.0, 8)
        assert crew.supervisor_count == 1
        assert crew.crew_size == 9

    def test_uplift_days_count_towards_supervisor(self, labour_engine, make_resolved):
        short = labour_engine.calculate_crew(
            _labour(12.5), [make_resolved()], QuoteParameters(custom_extended_uplift_days=2)
        )
        assert short.total_project_days == 3.0
        assert short.supervisor_count == 0

        long = labour_engine.calculate_crew(
            _labour(12.5), [make_resolved()], QuoteParameters(custom_extended_uplift_days=4)
        )
        assert long.installation_days == 1.0
        assert long.total_project_days == 5.0
        assert long.supervisor_count == 1

    def test_manual_supervisor(self, labour_engine, make_resolved):
        params = QuoteParameters(manually_add_supervisor=True)
        assert labour_engine.calculate_crew(_labour(12.5), [make_resolved()], params).supervisor_count == 1

    def test_supervisor_override_wins(self, labour_engine, make_resolved):
        crew = labour_engine.calculate_crew(
            _labour(300), [make_resolved()], QuoteParameters(override_supervisor_count=0)
        )
        assert crew.supervisor_count == 0

        crew = labour_engine.calculate_crew(
            _labour(12.5), [make_resolved()], QuoteParameters(override_supervisor_count=2)
        )
        assert crew.supervisor_count == 2

    def test_specialist_in_crew_size(self, labour_engine, make_resolved):
        params = QuoteParameters(specialist_reworking=True)
        crew = labour_engine.calculate_crew(_labour(12.5), [make_resolved()], params)
        assert crew.specialist_count == 1
        assert crew.crew_size == 3

    def test_zero_hours(self, labour_engine):
        crew = labour_engine.calculate_crew(_labour(0), [], QuoteParameters())
        assert crew.total_fitters == 0
        assert crew.van_count == 0
        assert crew.installation_days == 0.0
        assert crew.hour_load_per_person == 0.0


# ---------------------------------------------------------------------------
# LabourEngine.calculate_waste
# ---------------------------------------------------------------------------

class TestCalculateWaste:

    def test_per_item_volume(self, labour_engine, make_resolved):
        """(3 + 2) items × 0.035 m³ = 0.175 m³."""
        products = [make_resolved(quantity=3), make_resolved(quantity=2, line_number=2)]
        waste = labour_engine.calculate_waste(products, QuoteParameters())
        assert waste.total_volume_m3 == pytest.approx(0.175)
        assert waste.loads_required == pytest.approx(0.175)
        assert waste.is_flagged is False

    def test_override_flagged(self, labour_engine, make_resolved):
        waste = labour_engine.calculate_waste([make_resolved()], QuoteParameters(override_waste_volume_m3=1.5))
        assert waste.total_volume_m3 == 1.5
        assert waste.is_flagged is True

    def test_threshold_is_exclusive(self, labour_engine):
        waste = labour_engine.calculate_waste([], QuoteParameters(override_waste_volume_m3=1.0))
        assert waste.is_flagged is False
