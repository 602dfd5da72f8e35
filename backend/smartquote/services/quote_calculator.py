"""
QuoteCalculator — full calculation pipeline for a resolved product list.

    labour → crew → waste → pricing → notes

The result is a pure function of (products, parameters, rate configuration).
"""
import logging
from typing import List

from smartquote.models.quote_schema import (
    CalculationResults,
    QuoteParameters,
    RateConfiguration,
    ResolvedProduct,
)
from smartquote.services.labour_engine import LabourEngine
from smartquote.services.perf_monitor import timed
from smartquote.services.pricing_engine import PricingEngine

logger = logging.getLogger("smartquote-api.calculator")


class QuoteCalculator:

    def __init__(self, config: RateConfiguration) -> None:
        self.config = config
        self.labour_engine = LabourEngine(config)
        self.pricing_engine = PricingEngine(config)

    @timed
    def calculate_all(self, products: List[ResolvedProduct], params: QuoteParameters) -> CalculationResults:
        labour = self.labour_engine.calculate_labour(products, params)
        crew = self.labour_engine.calculate_crew(labour, products, params)
        waste = self.labour_engine.calculate_waste(products, params)
        pricing = self.pricing_engine.calculate_pricing(crew, params)
        notes = self.pricing_engine.generate_notes(pricing, params)

        logger.info(
            "quote calculated",
            extra={
                "product_count": len(products),
                "buffered_hours": labour.buffered_hours,
                "total_cost": round(pricing.total_cost, 2),
            },
        )
        return CalculationResults(
            labour=labour,
            crew=crew,
            waste=waste,
            pricing=pricing,
            notes=notes,
            detailed_products=list(products),
        )
