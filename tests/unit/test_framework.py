"""Unit tests for shared framework configuration and health checks."""

import pytest

from shared.framework.config import ServiceConfig
from shared.framework.health import HealthChecker

from service_distribution.app.config import DistributionConfig


class TestServiceConfig:
    """Test environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DISTMOD_ENV", raising=False)
        config = ServiceConfig(service_name="test-service")
        assert config.environment == "local"
        assert config.queue.poll_interval == 0.1
        assert config.queue.drain_timeout == 30.0
        assert config.queue.lease_seconds == 30.0

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("DISTMOD_ENV", "moon")
        with pytest.raises(ValueError):
            ServiceConfig(service_name="test-service")

    def test_invalid_job_lease(self, monkeypatch):
        monkeypatch.setenv("DISTMOD_QUEUE_JOB_LEASE", "0")
        with pytest.raises(ValueError):
            ServiceConfig(service_name="test-service")

    def test_service_name_required(self):
        with pytest.raises(ValueError):
            ServiceConfig(service_name="")

    def test_distribution_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("DISTMOD_CACHE_BACKEND", "Memory")
        monkeypatch.setenv("DISTMOD_LIVE_EDIT_DEADLINE_MS", "250")
        config = DistributionConfig()
        assert config.service_name == "distribution-modeling"
        assert config.cache_backend == "memory"
        assert config.live_edit_deadline_ms == 250.0
        assert config.complex_edit_threshold == 3

    def test_invalid_cache_backend(self, monkeypatch):
        monkeypatch.setenv("DISTMOD_CACHE_BACKEND", "memcached")
        with pytest.raises(ValueError):
            DistributionConfig()


class TestHealthChecker:
    """Test health aggregation."""

    @pytest.mark.asyncio
    async def test_all_healthy(self):
        checker = HealthChecker(ServiceConfig(service_name="test-service"))

        async def ping():
            return True

        checker.add_dependency("redis", ping)
        health = await checker.check_health()
        assert health["healthy"] is True
        assert health["status"] == "healthy"
        assert set(health["checks"]) == {"config", "redis"}

    @pytest.mark.asyncio
    async def test_non_critical_failure_degrades(self):
        checker = HealthChecker(ServiceConfig(service_name="test-service"))

        async def ping():
            raise ConnectionError("down")

        checker.add_dependency("postgres", ping, critical=False)
        health = await checker.check_health()
        assert health["healthy"] is True
        assert health["status"] == "degraded"
        assert health["checks"]["postgres"]["status"] == "unhealthy"

        readiness = await checker.check_readiness()
        assert readiness["ready"] is True

    @pytest.mark.asyncio
    async def test_critical_failure_is_unhealthy(self):
        checker = HealthChecker(ServiceConfig(service_name="test-service"))
        checker.add_dependency("cache_backend", lambda: False)

        health = await checker.check_health()
        assert health["healthy"] is False
        assert health["critical_failures"] == 1

        readiness = await checker.check_readiness()
        assert readiness["ready"] is False
