"""
Quoting configuration — single source of truth for thresholds, timeouts,
LLM routing and the default rate card.

Import from here in all services rather than hardcoding values.  Rate data
(day rates, buffer percentages, surcharge multipliers, vehicles, the product
catalogue) is never read directly by the engines: it is wrapped in a
RateConfiguration and injected.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

from pydantic import ValidationError

from smartquote.models.quote_schema import (
    CatalogueEntry,
    PricingRates,
    RateConfiguration,
    RuleSettings,
    Vehicle,
)
from smartquote.services.errors import ConfigurationError

logger = logging.getLogger("smartquote-api.config")


# ── Raw product sanity limits ──────────────────────────────────────────────────
# Quantities at or above this are treated as OCR / extraction errors.
MAX_SANE_QUANTITY: int = 1000
MAX_PRODUCT_CODE_LENGTH: int = 50


# ── Labour rounding ────────────────────────────────────────────────────────────
# Buffered hours are rounded to the nearest quarter hour
HOURS_ROUNDING_STEP: float = 0.25


# ── Hybrid parsing ─────────────────────────────────────────────────────────────
PARSE_TIMEOUT_SECONDS: float = float(os.getenv("PARSE_TIMEOUT_SECONDS", "10"))
PARSE_MIN_CONFIDENCE: float = float(os.getenv("PARSE_MIN_CONFIDENCE", "70"))
PARSE_CACHE_TTL_SECONDS: float = float(os.getenv("PARSE_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
PARSE_CACHE_MAX_ENTRIES: int = int(os.getenv("PARSE_CACHE_MAX_ENTRIES", "100"))

# Fast extractor has no model-reported confidence; this is the assumed score.
FAST_EXTRACTOR_CONFIDENCE: float = 75.0

EXTRACTOR_MAX_ATTEMPTS: int = 3
# Accurate extractor: per-product confidence bands (0–1 scale)
ACCURATE_DROP_BELOW: float = 0.3
ACCURATE_REVIEW_BELOW: float = 0.7
ACCURATE_PASS_CONFIDENCE: float = 0.5


# ── LLM routing ────────────────────────────────────────────────────────────────
FAST_EXTRACTOR_MODEL: str = os.getenv("LLM_FAST_MODEL", "gemini/gemini-2.5-flash")
ACCURATE_EXTRACTOR_MODEL: str = os.getenv("LLM_ACCURATE_MODEL", "gemini/gemini-2.0-flash")
FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "groq/llama-3.1-70b-versatile")


# ── Default rate card ──────────────────────────────────────────────────────────

def _entry(hours: float, heavy: bool) -> dict[str, Any]:
    return {"install_time_hours": hours, "waste_volume_m3": 0.035, "is_heavy": heavy}


# October 2025 catalogue. Aliases ("FLX 4P", "4P FLX") sit alongside the full
# range codes so that both document styles resolve.
DEFAULT_PRODUCT_CATALOGUE: dict[str, dict[str, Any]] = {
    # FLX
    "FLX-SINGLE-L1200":         _entry(0.60, False),
    "FLX-SINGLE-L1400":         _entry(0.60, False),
    "FLX-SINGLE-L1600":         _entry(0.60, False),
    "FLX-COWORK-4P-L2400":      _entry(1.45, True),
    "FLX-COWORK-6P-L3600":      _entry(1.90, True),
    "FLX-COWORK-6P-L4200":      _entry(1.90, True),
    "FLX-COWORK-8P-L4800":      _entry(2.00, True),
    "FLX-ESSENTIALS":           _entry(0.65, False),
    "FLX Single":               _entry(0.60, False),
    "FLX 4P":                   _entry(1.45, True),
    "4P FLX":                   _entry(1.45, True),
    "FLX 6P":                   _entry(1.90, True),
    "6P FLX":                   _entry(1.90, True),
    "FLX 8P":                   _entry(2.00, True),
    "8P FLX":                   _entry(2.00, True),
    # Locked times
    "Hi-Lo Single":             _entry(1.30, True),
    "Hi-Lo Duo":                _entry(1.65, True),
    "Snakey Riser":             _entry(0.05, False),
    "Just A Chair":             _entry(0.30, False),
    "Planter Shell":            _entry(0.00, False),
    "Locker Carcass":           _entry(0.50, False),
    # Workaround / Woody
    "WORKAROUND-MEETING-L2000": _entry(1.30, True),
    "WA-MEETING-L2000":         _entry(1.30, True),
    "WOODY-MEETING-L2000":      _entry(1.30, True),
    "WORKAROUND-MEETING-L2800": _entry(1.70, True),
    "WORKAROUND-MEETING-L3600": _entry(1.70, True),
    "WORKAROUND-MEETING-L4000": _entry(2.00, True),
    "WORKAROUND-CIRCULAR-D1000": _entry(0.70, False),
    "WORKAROUND-CIRCULAR-D1200": _entry(0.70, False),
    "WORKAROUND-CIRCULAR-D1800": _entry(1.45, True),
    # Cage
    "CAGE-SOFA-L1800":          _entry(0.70, False),
    "CAGE-SOFA-L2400":          _entry(0.70, False),
    "CAGE-BASE-CUPBOARD":       _entry(0.50, False),
    "CAGE-STEEL-CUBE":          _entry(0.50, False),
    "CAGE-OPEN-CUBE":           _entry(0.50, False),
    # Cafe / Cat
    "CAFE-ROUND-D1000":         _entry(0.40, False),
    "CAFE-ROUND-D1200":         _entry(0.40, False),
    "CAFE-BAR-L1800":           _entry(0.40, False),
    "CAT-BAR-L1800":            _entry(1.30, True),
    "CAT-BAR-L2400":            _entry(1.30, True),
    "CAT-TABLE":                _entry(1.30, True),
    # Credenza / Enza
    "CREDENZA-L1600":           _entry(0.40, False),
    "CREDENZA-L2000":           _entry(0.40, False),
    "ENZA-L1600":               _entry(0.40, False),
    "ENZ":                      _entry(0.40, False),
    # Tables
    "ROLLER-L2400":             _entry(1.80, True),
    "ROLLER-L3200":             _entry(2.25, True),
    "SURF-L2000":               _entry(1.60, True),
    "DUKE-L2400":               _entry(1.50, True),
    "LUDO-L2000":               _entry(1.50, True),
    "BADBOY-L1000":             _entry(0.65, False),
    "BADBOY-L2000":             _entry(1.00, True),
    "INDY-L1800":               _entry(1.00, True),
    "NAZ-CUPBOARD":             _entry(0.50, False),
    "NAZ-LOCKER":               _entry(0.50, False),
    # Bass
    "BASS-RECT-L2000":          _entry(1.60, True),
    "BASS-RECT-L2400":          _entry(1.60, True),
    "BASS-RECT-L2800":          _entry(1.75, True),
    "BASS-PLUS-L4000":          _entry(2.00, True),
    "BASS-ROUND-D1200":         _entry(1.30, True),
    "BASS-COFFEE-TABLE":        _entry(0.10, False),
    "BASS-TAPERED-SMALL":       _entry(1.85, True),
    "BASS-TAPERED-LARGE":       _entry(2.05, True),
    "BASS-PILL":                _entry(1.80, True),
    # Frank
    "FRANK-L2000":              _entry(1.60, True),
    "FRANK-L2400":              _entry(1.60, True),
    "FRANK-L3200":              _entry(2.00, True),
    "FRANK-L4800":              _entry(2.80, True),
    "FRANK-BENCH-L1200":        _entry(1.00, True),
    # Arne
    "ARNE-L1800":               _entry(1.30, True),
    "ARNE-L4000":               _entry(3.00, True),
    "ARNE-COFFEE-TABLE":        _entry(1.20, True),
    # Hi-Lo
    "HILO-SINGLE-L1200":        _entry(1.30, True),
    "HILO-DUO-L1200":           _entry(1.65, True),
    "HILO-DIVIDER":             _entry(0.00, False),
    "HILO-CABLE-SPINE":         _entry(0.00, False),
    # Lockers / storage
    "DESK-END-CUPBOARD":        _entry(0.50, False),
    "LOCKER-CARCASS-2H":        _entry(0.50, False),
    "LOCKER-CARCASS-4H":        _entry(0.50, False),
    "CLOAKING-PANELS":          _entry(0.00, False),
    # Seating
    "JUST-A-CHAIR":             _entry(0.30, False),
    "JAC BLACK":                _entry(0.30, False),
    "R-JAC":                    _entry(0.30, False),
    "BILLY-SINGLE":             _entry(1.35, True),
    # Glow
    "GLOW-LAMP":                _entry(0.35, False),
    "GLOW-20":                  _entry(0.35, False),
    "GLOW-INTEGRATED":          _entry(1.90, True),
    # Power / accessories
    "POWER-MODULE":             _entry(0.20, False),
    "POWER-BAR":                _entry(0.20, False),
    "POW TRAY":                 _entry(0.20, False),
    "R-POW":                    _entry(0.20, False),
    "SPM":                      _entry(0.20, False),
    "NEOPRENE-CABLE-RISER":     _entry(0.05, False),
    "CABLE-SPINE":              _entry(0.00, False),
    # Legacy codes
    "T9b":                      _entry(0.42, False),
    "D1":                       _entry(0.33, False),
    "D2a":                      _entry(0.50, True),
    "CH-01":                    _entry(0.17, False),
    "SOFA-3":                   _entry(0.75, True),
    "DEFAULT":                  _entry(0.33, False),
}

DEFAULT_VEHICLES: dict[str, dict[str, Any]] = {
    "small-van": {"name": "Small Van (Transit)",  "cost_per_day": 325.0},
    "large-van": {"name": "Large Van (Sprinter)", "cost_per_day": 550.0},
    "luton-van": {"name": "Luton Van",            "cost_per_day": 685.0},
    "75t-lorry": {"name": "7.5T Lorry",           "cost_per_day": 850.0},
}


def get_default_rate_config() -> RateConfiguration:
    """Build a fresh default RateConfiguration."""
    return RateConfiguration(
        pricing=PricingRates(),
        rules=RuleSettings(),
        vehicles={vid: Vehicle(id=vid, **v) for vid, v in DEFAULT_VEHICLES.items()},
        product_catalogue={
            key: CatalogueEntry(**entry) for key, entry in DEFAULT_PRODUCT_CATALOGUE.items()
        },
    )


def load_rate_config(path: Optional[str] = None) -> RateConfiguration:
    """
    Load a RateConfiguration, merging a JSON override file over the defaults.

    Sections (``pricing``, ``rules``, ``vehicles``, ``product_catalogue``) are
    merged key-wise so an override file only needs the values it changes.
    ``path`` defaults to the ``SMARTQUOTE_RATE_CONFIG`` env var; with neither set
    the defaults are returned unchanged.
    """
    path = path or os.getenv("SMARTQUOTE_RATE_CONFIG")
    defaults = get_default_rate_config()
    if not path:
        return defaults

    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read rate config {path}: {e}") from e

    if not isinstance(overrides, dict):
        raise ConfigurationError(f"Rate config {path} must be a JSON object")

    merged = defaults.model_dump()
    for section in ("pricing", "rules", "vehicles", "product_catalogue"):
        value = overrides.get(section)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise ConfigurationError(f"Section '{section}' in {path} must be an object")
        merged[section] = {**merged[section], **value}

    for vid, vehicle in merged["vehicles"].items():
        if isinstance(vehicle, dict):
            vehicle.setdefault("id", vid)

    try:
        config = RateConfiguration.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rate config {path}: {e}") from e

    logger.info(
        "rate config loaded",
        extra={"config_path": path, "catalogue_size": len(config.product_catalogue)},
    )
    return config
