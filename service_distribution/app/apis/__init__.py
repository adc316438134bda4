"""HTTP API for distribution modeling."""

from .routes import DistributionAPI, error_middleware

__all__ = ["DistributionAPI", "error_middleware"]
