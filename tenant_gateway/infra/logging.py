"""Structured logging configuration."""

import logging
import sys
from pythonjsonlogger.json import JsonFormatter
from tenant_gateway.infra.config import config

# Substrings of record attributes whose values never reach the log output
SENSITIVE_KEYS = (
    "token",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "secret",
    "password",
)

# Attributes every LogRecord carries; everything else came in through `extra`
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def _redact(value):
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if _is_sensitive(str(k)) else _redact(v)
            for k, v in value.items()
        }
    return value


class RedactingFilter(logging.Filter):
    """Mask sensitive values passed through `extra={...}`."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in list(vars(record).items()):
            if key in _STANDARD_ATTRS:
                continue
            if _is_sensitive(key):
                setattr(record, key, "[REDACTED]")
            else:
                setattr(record, key, _redact(value))
        return True


def setup_logging():
    """Setup structured JSON logging."""
    logger = logging.getLogger("tenant_gateway")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)

    # Remove existing handlers
    logger.handlers = []

    formatter = JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RedactingFilter())
    logger.addHandler(console_handler)

    # Set levels for third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


# Initialize logging
app_logger = setup_logging()
