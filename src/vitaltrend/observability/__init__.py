"""
VitalTrend Observability Module

structlog configuration with identifier redaction.
"""

from vitaltrend.observability.logging import (
    configure_logging,
    redact_identifiers,
    is_configured,
)

__all__ = [
    "configure_logging",
    "redact_identifiers",
    "is_configured",
]
