"""
Health check system for microservices.

Aggregates configuration, system and dependency checks into
health and readiness reports.
"""

import asyncio
import inspect
from typing import Dict, Any, List, Optional, Callable
from dataclasses import dataclass
from enum import Enum
import time

import structlog


logger = structlog.get_logger()


class HealthStatus(Enum):
    """Health status enumeration."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheck:
    """Individual health check definition."""
    name: str
    check_func: Callable[[], Any]
    timeout: float = 5.0
    critical: bool = True
    description: Optional[str] = None


class HealthChecker:
    """
    Health checker for microservices.

    A failing critical check makes the service unhealthy and not ready;
    a failing non-critical check only degrades it.
    """

    def __init__(self, config):
        self.config = config
        self.logger = structlog.get_logger("health-checker")
        self.checks: List[HealthCheck] = []
        self.last_check_time: Optional[float] = None
        self.last_status: Optional[HealthStatus] = None

        self.add_check(
            HealthCheck(
                name="config",
                check_func=self._check_config,
                description="Service configuration validation"
            )
        )

    def add_check(self, check: HealthCheck) -> None:
        """Add a health check."""
        self.checks.append(check)
        self.logger.debug("Added health check", name=check.name)

    def add_dependency(self, name: str, ping: Callable[[], Any], critical: bool = True) -> None:
        """Register a dependency whose ``ping`` returns a truthy value when reachable."""
        self.add_check(
            HealthCheck(
                name=name,
                check_func=ping,
                critical=critical,
                description=f"{name} connectivity"
            )
        )

    async def check_health(self) -> Dict[str, Any]:
        """Perform all health checks and return aggregated status."""
        results = {}
        overall_status = HealthStatus.HEALTHY
        critical_failures = 0

        for check in self.checks:
            started = time.perf_counter()
            error: Optional[str] = None
            try:
                healthy = bool(await asyncio.wait_for(self._run_check(check), timeout=check.timeout))
            except asyncio.TimeoutError:
                self.logger.warning("Health check timeout", name=check.name, timeout=check.timeout)
                healthy, error = False, "timeout"

            results[check.name] = {
                "status": "healthy" if healthy else "unhealthy",
                "description": check.description,
                "critical": check.critical,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            }
            if error:
                results[check.name]["error"] = error

            if not healthy and check.critical:
                critical_failures += 1
                overall_status = HealthStatus.UNHEALTHY
            elif not healthy and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        self.last_check_time = time.time()
        self.last_status = overall_status

        return {
            "healthy": overall_status != HealthStatus.UNHEALTHY,
            "status": overall_status.value,
            "checks": results,
            "critical_failures": critical_failures,
            "total_checks": len(self.checks),
            "timestamp": self.last_check_time,
        }

    async def check_readiness(self) -> Dict[str, Any]:
        """Check if service is ready to accept traffic."""
        health_result = await self.check_health()
        ready = health_result["critical_failures"] == 0

        return {
            "ready": ready,
            "status": "ready" if ready else "not_ready",
            "health": health_result,
            "timestamp": time.time(),
        }

    async def _run_check(self, check: HealthCheck) -> bool:
        """Run a single health check."""
        try:
            result = check.check_func()
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            self.logger.error("Health check execution error", name=check.name, error=str(e))
            return False

    def _check_config(self) -> bool:
        """Check service configuration."""
        return bool(self.config.service_name) and self.config.environment in ["local", "dev", "staging", "prod"]
