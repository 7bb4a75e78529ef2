"""
Structured Logging

structlog configuration shared by the API and the pipeline:
- JSON or console output
- ISO timestamps and log levels
- Patient identifier redaction
"""

import hashlib
import logging
import sys

import structlog

# Keys whose values are patient identifiers
REDACTED_KEYS = ("patient_id", "patientId", "pid")

_configured = False


def _digest(value: str) -> str:
    return "pid:" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]


def redact_identifiers(logger, method_name, event_dict):
    """Replace patient identifiers with a short stable digest."""
    for key in REDACTED_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and value:
            event_dict[key] = _digest(value)
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog over the standard library logger."""
    global _configured

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_identifiers,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def is_configured() -> bool:
    return _configured
