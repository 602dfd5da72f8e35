"""FastAPI dependency injection: quoting services built once per app."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from smartquote.config import load_rate_config
from smartquote.models.quote_schema import RateConfiguration
from smartquote.services.edge_rules import EdgeRuleEngine
from smartquote.services.hybrid_parser import ExtractionStrategy, HybridParsingOrchestrator
from smartquote.services.parse_cache import ParseCache
from smartquote.services.product_resolver import ProductResolver
from smartquote.services.quote_calculator import QuoteCalculator
from smartquote.services.quote_extractors import AccurateQuoteExtractor, FastQuoteExtractor


@dataclass
class QuoteServices:
    config: RateConfiguration
    resolver: ProductResolver
    calculator: QuoteCalculator
    orchestrator: HybridParsingOrchestrator


def build_services(
    config: Optional[RateConfiguration] = None,
    fast: Optional[ExtractionStrategy] = None,
    accurate: Optional[ExtractionStrategy] = None,
    cache: Optional[ParseCache] = None,
) -> QuoteServices:
    """Wire the services around one RateConfiguration (loaded from env when omitted)."""
    config = config or load_rate_config()
    return QuoteServices(
        config=config,
        resolver=ProductResolver(config.product_catalogue, EdgeRuleEngine()),
        calculator=QuoteCalculator(config),
        orchestrator=HybridParsingOrchestrator(
            fast=fast or FastQuoteExtractor(),
            accurate=accurate or AccurateQuoteExtractor(),
            cache=cache,
        ),
    )


def get_services(request: Request) -> QuoteServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services
