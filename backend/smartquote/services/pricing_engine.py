"""
PricingEngine — day-rate pricing of an installation crew.

Covers:
  - Installation period: van, on-foot fitters, supervisors × install days
  - Extended uplift period: its own van / fitter / supervisor costs
  - Specialist reworking flat fee
  - Parking and selected-vehicle transport × billable days
  - Out-of-hours surcharge, applied to the labour subtotal only
  - Client-facing notes (parking, mileage, ULEZ, delivery)
"""

import logging
from typing import Mapping, Optional

from smartquote.models.quote_schema import (
    CrewResult,
    PricingResult,
    QuoteNotes,
    QuoteParameters,
    RateConfiguration,
)

logger = logging.getLogger("smartquote-api.pricing")


def out_of_hours_multiplier(ooh_type: Optional[str], multipliers: Mapping[str, float]) -> float:
    return multipliers.get(ooh_type or "", 1.0)


class PricingEngine:
    """Prices a CrewResult against the injected rate card. All values GBP."""

    def __init__(self, config: RateConfiguration) -> None:
        self.config = config

    def _van_day_rate(self, crew: CrewResult) -> float:
        pricing = self.config.pricing
        return pricing.two_man_van_day_rate if crew.is_two_man_van_required else pricing.one_man_van_day_rate

    # -----------------------------------------------------------------------
    # Pricing
    # -----------------------------------------------------------------------

    def calculate_pricing(self, crew: CrewResult, params: QuoteParameters) -> PricingResult:
        pricing = self.config.pricing
        rules = self.config.rules

        uplift_days = params.custom_extended_uplift_days or 0.0
        install_days = crew.total_project_days - uplift_days
        billable_days = crew.total_project_days

        # Installation period
        van_cost = self._van_day_rate(crew) * install_days if crew.van_count > 0 else 0.0
        fitter_cost = crew.on_foot_fitters * pricing.additional_fitter_day_rate * install_days
        supervisor_cost = crew.supervisor_count * pricing.supervisor_day_rate * install_days

        # Extended uplift period
        if params.extended_uplift and uplift_days > 0:
            if params.custom_extended_uplift_fitters is not None:
                uplift_fitters = params.custom_extended_uplift_fitters
            else:
                uplift_fitters = min(rules.max_uplift_fitters, crew.van_fitters + crew.on_foot_fitters)

            if uplift_fitters > 0:
                van_cost += self._van_day_rate(crew) * uplift_days

            van_seats = 2 if crew.is_two_man_van_required else 1
            uplift_on_foot = max(0, uplift_fitters - van_seats)
            fitter_cost += uplift_on_foot * pricing.additional_fitter_day_rate * uplift_days

            if params.uplift_supervisor:
                supervisor_cost += pricing.supervisor_day_rate * uplift_days

        reworking_cost = pricing.specialist_reworking_flat_rate if params.specialist_reworking else 0.0

        daily_parking = (
            params.daily_parking_charge
            if params.daily_parking_charge is not None
            else pricing.default_daily_parking_charge
        )
        parking_cost = daily_parking * billable_days

        transport_cost = 0.0
        for vehicle_id, count in params.selected_vehicles.items():
            vehicle = self.config.vehicles.get(vehicle_id)
            if vehicle is None:
                logger.warning("unknown vehicle ignored", extra={"vehicle_id": vehicle_id})
                continue
            transport_cost += vehicle.cost_per_day * count * billable_days

        labour_cost = van_cost + fitter_cost + supervisor_cost
        non_labour_cost = reworking_cost + parking_cost + transport_cost
        standard_cost = labour_cost + non_labour_cost

        # Out-of-hours: a share of the labour subtotal is re-priced at the multiplier
        multiplier = 1.0
        ratio = 0.0
        labour_after = labour_cost
        if (
            params.out_of_hours_working
            and params.out_of_hours_type
            and params.out_of_hours_days > 0
            and billable_days > 0
        ):
            multiplier = out_of_hours_multiplier(params.out_of_hours_type, pricing.out_of_hours_multipliers)
            ratio = min(1.0, params.out_of_hours_days / billable_days)
            labour_after = labour_cost * ratio * multiplier + labour_cost * (1 - ratio)

        return PricingResult(
            van_cost=van_cost,
            fitter_cost=fitter_cost,
            supervisor_cost=supervisor_cost,
            labour_cost_after_surcharge=labour_after,
            reworking_cost=reworking_cost,
            parking_cost=parking_cost,
            transport_cost=transport_cost,
            billable_days=billable_days,
            standard_cost=standard_cost,
            total_cost=labour_after + non_labour_cost,
            out_of_hours_surcharge=labour_after - labour_cost,
            out_of_hours_multiplier=multiplier,
            out_of_hours_ratio=ratio,
        )

    # -----------------------------------------------------------------------
    # Notes
    # -----------------------------------------------------------------------

    def generate_notes(self, pricing: PricingResult, params: QuoteParameters) -> QuoteNotes:
        charge = (
            params.daily_parking_charge
            if params.daily_parking_charge is not None
            else self.config.pricing.default_daily_parking_charge
        )
        if pricing.parking_cost > 0:
            parking = f"Daily charge of £{charge:.2f} applied."
        else:
            parking = "To be confirmed/arranged by client."
        return QuoteNotes(
            parking=parking,
            mileage="Mileage to be calculated based on distance from base.",
            ulez="ULEZ/Congestion charges will be added if applicable.",
            delivery="Standard delivery to ground floor included. Additional charges may apply for complex logistics.",
        )
