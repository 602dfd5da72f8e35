"""
conftest.py — Shared pytest fixtures for the SmartQuote backend test suite.

No network or LLM fixtures are defined here.  Extraction strategies and the
LLM client are replaced by in-memory fakes, so every test is a pure unit test.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``smartquote.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import asyncio
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any smartquote imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStrategy:
    """
    Stand-in for an extractor: ``parse`` returns a fixed outcome or raises.

    ``delay`` seconds are slept first so timeouts can be exercised.
    """

    def __init__(self, name: str, outcome=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.name = name
        self.outcome = outcome
        self.error = error
        self.delay = delay
        self.calls = 0
        self.completed = 0

    async def parse(self, content):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.completed += 1
        if self.error is not None:
            raise self.error
        return self.outcome


class FakeLLMClient:
    """Replays canned responses (str or Exception) and records every call."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def _next(self):
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def chat(self, messages, **kwargs):
        self.calls.append({"kind": "chat", "messages": messages, **kwargs})
        return self._next()

    async def vision(self, images, prompt, **kwargs):
        self.calls.append({"kind": "vision", "images": images, "prompt": prompt, **kwargs})
        return self._next()


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rate_config():
    """
    Default RateConfiguration.

    Rates: one-man van 325, two-man van 550, fitter 185, supervisor 245,
    reworking 740.  Rules: 8h/day, stairs 15 %, extended 10 %, waste 0.035 m³,
    supervisor above 4 days, max 8 fitters, max 6 uplift fitters.
    """
    from smartquote.config import get_default_rate_config
    return get_default_rate_config()


@pytest.fixture
def small_catalogue():
    """A handful of catalogue keys chosen to exercise every matching strategy."""
    from smartquote.models.quote_schema import CatalogueEntry
    return {
        "FLX 4P": CatalogueEntry(install_time_hours=1.45, is_heavy=True),
        "POWER-MODULE": CatalogueEntry(install_time_hours=0.20),
        "JUST-A-CHAIR": CatalogueEntry(install_time_hours=0.30),
        "CAGE-SOFA-L1800": CatalogueEntry(install_time_hours=0.70),
        "DEFAULT": CatalogueEntry(install_time_hours=0.33),
    }


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def resolver(small_catalogue):
    from smartquote.services.product_resolver import ProductResolver
    return ProductResolver(small_catalogue)


@pytest.fixture(scope="session")
def default_resolver(rate_config):
    """ProductResolver over the full default catalogue."""
    from smartquote.services.product_resolver import ProductResolver
    return ProductResolver(rate_config.product_catalogue)


@pytest.fixture(scope="session")
def labour_engine(rate_config):
    from smartquote.services.labour_engine import LabourEngine
    return LabourEngine(rate_config)


@pytest.fixture(scope="session")
def pricing_engine(rate_config):
    from smartquote.services.pricing_engine import PricingEngine
    return PricingEngine(rate_config)


@pytest.fixture(scope="session")
def calculator(rate_config):
    from smartquote.services.quote_calculator import QuoteCalculator
    return QuoteCalculator(rate_config)


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_raw():
    """Factory for RawProducts with sensible defaults."""
    from smartquote.models.quote_schema import RawProduct

    def _make(code: str, quantity: int = 1, line_number: int = 1, raw: Optional[str] = None, clean: str = ""):
        return RawProduct(
            line_number=line_number,
            product_code=code,
            raw_description=raw if raw is not None else code,
            clean_description=clean,
            quantity=quantity,
        )
    return _make


@pytest.fixture
def make_resolved():
    """Factory for ResolvedProducts with explicit time per unit."""
    from smartquote.models.quote_schema import ResolvedProduct

    def _make(code: str = "ITEM", quantity: int = 1, time_per_unit: float = 1.0,
              is_heavy: bool = False, line_number: int = 1):
        return ResolvedProduct(
            line_number=line_number,
            product_code=code,
            raw_description=code,
            quantity=quantity,
            description=f"Line {line_number} - {code}",
            time_per_unit=time_per_unit,
            total_time=quantity * time_per_unit,
            waste_per_unit=0.035,
            total_waste=quantity * 0.035,
            is_heavy=is_heavy,
            source="catalogue",
        )
    return _make


@pytest.fixture
def make_outcome(make_raw):
    """Factory for ExtractionOutcomes holding the given product codes."""
    from smartquote.services.quote_extractors import ExtractionOutcome

    def _make(codes: List[str], confidence: float):
        products = [make_raw(code, line_number=i + 1) for i, code in enumerate(codes)]
        return ExtractionOutcome(products=products, confidence_score=confidence)
    return _make


@pytest.fixture
def fake_strategy():
    """Returns the FakeStrategy class so tests can build strategies inline."""
    return FakeStrategy


@pytest.fixture
def fake_llm():
    """Returns the FakeLLMClient class so tests can script LLM replies."""
    return FakeLLMClient
