"""Configuration for distribution modeling service."""

import os
from shared.framework.config import ServiceConfig


CACHE_BACKENDS = ("redis", "memory")


class DistributionConfig(ServiceConfig):
    """Configuration for distribution modeling service."""

    def __init__(self) -> None:
        super().__init__(service_name="distribution-modeling")

        self.cache_backend = os.getenv("DISTMOD_CACHE_BACKEND", "redis").lower()
        if self.cache_backend not in CACHE_BACKENDS:
            raise ValueError(f"Invalid cache backend: {self.cache_backend}")

        # Cache TTLs (seconds)
        self.cache_ttl_seconds = int(os.getenv("DISTMOD_CACHE_TTL", "300"))
        self.session_fresh_ttl = int(os.getenv("DISTMOD_SESSION_FRESH_TTL", "300"))
        self.session_stale_ttl = int(os.getenv("DISTMOD_SESSION_STALE_TTL", "60"))
        self.projection_ttl = int(os.getenv("DISTMOD_PROJECTION_TTL", "30"))
        self.session_params_ttl = int(os.getenv("DISTMOD_SESSION_PARAMS_TTL", "300"))

        # Live edits
        self.live_edit_deadline_ms = float(os.getenv("DISTMOD_LIVE_EDIT_DEADLINE_MS", "500"))
        self.complex_edit_threshold = int(os.getenv("DISTMOD_COMPLEX_EDIT_THRESHOLD", "3"))
        self.live_edit_priority = int(os.getenv("DISTMOD_LIVE_EDIT_PRIORITY", "10"))

        # Exports
        self.export_delay_seconds = float(os.getenv("DISTMOD_EXPORT_DELAY", "0.5"))
        self.export_step_scale = float(os.getenv("DISTMOD_EXPORT_STEP_SCALE", "1.0"))

        # Materialized views
        self.refresh_on_start = os.getenv("DISTMOD_REFRESH_ON_START", "false").lower() == "true"
        self.periodic_refresh_enabled = os.getenv("DISTMOD_PERIODIC_REFRESH", "true").lower() == "true"
        self.refresh_flag_ttl = int(os.getenv("DISTMOD_REFRESH_FLAG_TTL", "300"))
        self.last_refresh_ttl = int(os.getenv("DISTMOD_LAST_REFRESH_TTL", str(24 * 3600)))

        self.bridge_drain_timeout = float(os.getenv("DISTMOD_BRIDGE_DRAIN_TIMEOUT", "30"))
