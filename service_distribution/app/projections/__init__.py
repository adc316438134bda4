"""Projection formulas."""

from .calculator import (
    DEFAULT_PARAMETERS,
    PARAMETER_FIELDS,
    ProjectionParameters,
    ProjectionResult,
    calculate_projections,
    quick_estimate,
)

__all__ = [
    "DEFAULT_PARAMETERS",
    "PARAMETER_FIELDS",
    "ProjectionParameters",
    "ProjectionResult",
    "calculate_projections",
    "quick_estimate",
]
