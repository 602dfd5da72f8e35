"""Structured logging configuration for SmartQuote."""
import logging
import json
import sys
from datetime import datetime, timezone

# Extra fields copied onto the JSON line when a record carries them
_EXTRA_FIELDS = (
    "request_id",
    "duration_ms",
    "parse_method",
    "cache_age_ms",
    "confidence_score",
    "product_count",
    "resolved_count",
    "unresolved_count",
    "product_code",
    "line_number",
    "reason",
    "total_cost",
    "llm_model",
    "http_method",
    "http_path",
    "http_status",
)


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Configure application logging."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    # Suppress noisy loggers
    for name in ["uvicorn.access", "httpcore", "httpx", "LiteLLM", "pdfminer"]:
        logging.getLogger(name).setLevel(logging.WARNING)
