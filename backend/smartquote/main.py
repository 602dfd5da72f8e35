"""
SmartQuote API v1.0
FastAPI backend for furniture-installation quoting: hybrid LLM quote parsing,
catalogue product resolution and labour / crew / pricing calculation.
"""
import os
import sys
import time
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartquote import __version__
from smartquote.api.deps import build_services
from smartquote.api.quote_routes import router as quote_router
from smartquote.config import FAST_EXTRACTOR_MODEL, ACCURATE_EXTRACTOR_MODEL
from smartquote.services.logging_config import setup_logging
from smartquote.services.middleware import RequestTimingMiddleware
from smartquote.services.perf_monitor import tracker as perf_tracker

load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("smartquote-api")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()

if not (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")):
    logger.warning("MISSING env var: GEMINI_API_KEY, document parsing will fail")
if not os.getenv("GROQ_API_KEY"):
    logger.info("Optional env var not set: GROQ_API_KEY (LLM fallback disabled)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may pre-wire services with fake extractors
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    logger.info(
        "services ready",
        extra={"product_count": len(app.state.services.config.product_catalogue)},
    )
    yield


app = FastAPI(
    title="SmartQuote Installation Estimator API",
    version=__version__,
    description="AI-assisted quoting for furniture installation works",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS, restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

app.include_router(quote_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": __version__,
        "llm_fast": FAST_EXTRACTOR_MODEL,
        "llm_accurate": ACCURATE_EXTRACTOR_MODEL,
    }


@app.get("/metrics")
async def metrics():
    """
    Performance metrics endpoint.

    Returns parse throughput, cache hit rate, fallbacks, error counts and
    process-level memory usage, sourced from the in-process ParseMetricsTracker.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **perf_tracker.get_metrics(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("smartquote.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
