"""
labour_engine.py — Labour, crew and waste calculation for installation quotes.

Covers:
  - Total labour hours with stairs / extended-uplift buffers
  - Duration buffer (configured baseline, floors above 16h and 40h by default)
  - Quarter-hour rounding of buffered hours
  - Crew optimisation: fewest days first, then fewest fitters (max 8)
  - Van allocation (one-man / two-man), on-foot fitters, supervisor rule
  - Waste volume and flagging

All functions are pure: identical inputs always produce identical results.
"""

import logging
import math
from typing import List, Tuple

from smartquote.config import HOURS_ROUNDING_STEP
from smartquote.models.quote_schema import (
    CrewResult,
    LabourResult,
    QuoteParameters,
    RateConfiguration,
    ResolvedProduct,
    RuleSettings,
    WasteResult,
)

logger = logging.getLogger("smartquote-api.labour")

# Seats in the van by van type
VAN_SEATS = {"oneMan": 1, "twoMan": 2}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ceil(value: float) -> int:
    # 56 / 7 must stay 8, not 9, after float noise
    return math.ceil(round(value, 9))


def round_to_nearest(value: float, step: float = HOURS_ROUNDING_STEP) -> float:
    """Round half-up to the nearest ``step``: 31.1 → 31.0, 31.125 → 31.25."""
    if step <= 0:
        return value
    return math.floor(value / step + 0.5) * step


def duration_buffer_percentage(hours_after_uplift: float, rules: RuleSettings) -> float:
    """
    Duration buffer for a job of the given size.

    Starts at the configured baseline (25 % by default); each floor is applied
    in order as max(current, floor) once its hour threshold is exceeded.
    """
    pct = rules.duration_buffer_baseline_percent
    for threshold, floor in rules.duration_buffer_floors:
        if hours_after_uplift > threshold:
            pct = max(floor, pct)
    return pct


def optimise_crew(buffered_hours: float, hours_per_day: float, max_fitters: int) -> Tuple[int, int]:
    """
    Return ``(days, fitters)`` for the job: fewest whole days first, then the
    fewest fitters that finish in that many days, never exceeding ``max_fitters``.

    Example: 56h at 7h/day (8 fitter-days), max 8 → (1, 8).
    """
    if buffered_hours <= 0 or hours_per_day <= 0:
        return 0, 0

    fitter_days = buffered_hours / hours_per_day
    for days in range(1, _ceil(fitter_days) + 1):
        fitters = _ceil(fitter_days / days)
        if fitters > max_fitters:
            continue
        return days, fitters

    # Unreachable for max_fitters >= 1: days == ceil(fitter_days) needs one fitter
    return _ceil(fitter_days), 1


# ---------------------------------------------------------------------------
# LabourEngine
# ---------------------------------------------------------------------------

class LabourEngine:
    """
    Labour, crew and waste calculations driven by an injected RateConfiguration.

    Only ``config.rules`` is read here; pricing lives in PricingEngine.
    """

    def __init__(self, config: RateConfiguration) -> None:
        self.config = config

    # -----------------------------------------------------------------------
    # 1. Labour hours
    # -----------------------------------------------------------------------

    def calculate_labour(self, products: List[ResolvedProduct], params: QuoteParameters) -> LabourResult:
        rules = self.config.rules
        total_hours = sum(p.total_time for p in products)

        uplift_pct = 0.0
        if params.uplift_via_stairs:
            uplift_pct += rules.uplift_stairs_buffer_percent
        if params.extended_uplift:
            uplift_pct += rules.extended_uplift_buffer_percent

        hours_after_uplift = total_hours * (1 + uplift_pct / 100)
        buffer_pct = duration_buffer_percentage(hours_after_uplift, rules)
        buffered_hours = round_to_nearest(hours_after_uplift * (1 + buffer_pct / 100))

        return LabourResult(
            total_hours=total_hours,
            uplift_buffer_percentage=uplift_pct,
            hours_after_uplift=hours_after_uplift,
            duration_buffer_percentage=buffer_pct,
            buffered_hours=buffered_hours,
            total_days=buffered_hours / rules.hours_per_day,
        )

    # -----------------------------------------------------------------------
    # 2. Crew allocation
    # -----------------------------------------------------------------------

    def calculate_crew(
        self,
        labour: LabourResult,
        products: List[ResolvedProduct],
        params: QuoteParameters,
    ) -> CrewResult:
        rules = self.config.rules
        hours_per_day = rules.hours_per_day

        if params.override_fitter_count is not None:
            total_fitters = params.override_fitter_count
            installation_days = labour.buffered_hours / (max(total_fitters, 1) * hours_per_day)
        else:
            days, total_fitters = optimise_crew(labour.buffered_hours, hours_per_day, rules.max_fitters)
            installation_days = float(days)

        total_project_days = installation_days
        if params.custom_extended_uplift_days > 0:
            total_project_days += params.custom_extended_uplift_days

        any_heavy = any(p.is_heavy for p in products)
        van_type = params.override_van_type or ("twoMan" if any_heavy else "oneMan")
        van_fitters = min(total_fitters, VAN_SEATS[van_type])
        on_foot_fitters = total_fitters - van_fitters
        van_count = 1 if van_fitters > 0 else 0

        needs_supervisor = total_project_days > rules.supervisor_threshold_days or params.manually_add_supervisor
        supervisor_count = (
            params.override_supervisor_count
            if params.override_supervisor_count is not None
            else (1 if needs_supervisor else 0)
        )
        specialist_count = 1 if params.specialist_reworking else 0

        hour_load = labour.buffered_hours / max(total_fitters, 1)

        logger.debug(
            "crew allocated",
            extra={
                "total_fitters": total_fitters,
                "installation_days": installation_days,
                "van_type": van_type,
                "supervisor_count": supervisor_count,
            },
        )

        return CrewResult(
            crew_size=total_fitters + supervisor_count + specialist_count,
            total_fitters=total_fitters,
            van_count=van_count,
            van_fitters=van_fitters,
            on_foot_fitters=on_foot_fitters,
            supervisor_count=supervisor_count,
            specialist_count=specialist_count,
            installation_days=installation_days,
            total_project_days=total_project_days,
            days_per_fitter=hour_load / hours_per_day,
            hour_load_per_person=hour_load,
            is_two_man_van_required=van_type == "twoMan",
        )

    # -----------------------------------------------------------------------
    # 3. Waste
    # -----------------------------------------------------------------------

    def calculate_waste(self, products: List[ResolvedProduct], params: QuoteParameters) -> WasteResult:
        rules = self.config.rules
        if params.override_waste_volume_m3 is not None:
            volume = params.override_waste_volume_m3
        else:
            volume = sum(p.quantity for p in products) * rules.default_waste_volume_m3

        return WasteResult(
            total_volume_m3=volume,
            loads_required=volume,
            is_flagged=volume > rules.waste_flag_threshold_m3,
        )
