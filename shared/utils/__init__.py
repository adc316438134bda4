"""
Utility modules for distribution modeling services.

Provides common utilities for:
- Structured logging
- OpenTelemetry tracing
- Error handling
- Deterministic identifiers
"""

from .logging import setup_logging
from .tracing import setup_tracing
from .errors import DistributionError, ValidationError, ConfigurationError
from .identifiers import canonical_json, encode_parameters

__all__ = [
    "setup_logging",
    "setup_tracing",
    "DistributionError",
    "ValidationError",
    "ConfigurationError",
    "canonical_json",
    "encode_parameters",
]
