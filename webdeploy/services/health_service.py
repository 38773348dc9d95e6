"""
Health Service — HTTP probe used to verify an application after deployment.
"""

from __future__ import annotations

import logging
import time

import httpx

from webdeploy.config import settings
from webdeploy.schemas.deployments import HealthProbeResult

logger = logging.getLogger(__name__)


class HealthService:
    def check(self, url: str, timeout_seconds: int | None = None) -> HealthProbeResult:
        """GET ``url`` and report whether it answered with a 2xx status."""
        timeout = timeout_seconds or settings.health_check_timeout_seconds
        start = time.monotonic()
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.get(url)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            healthy = 200 <= resp.status_code < 300
            message = "Health check passed" if healthy else f"Health check failed with status code {resp.status_code}"
            logger.info("Health check for %s: %s (%dms)", url, resp.status_code, elapsed_ms)
            return HealthProbeResult(
                healthy=healthy,
                status_code=resp.status_code,
                message=message,
                elapsed_ms=elapsed_ms,
            )
        except httpx.TimeoutException:
            logger.warning("Health check for %s timed out", url)
            return HealthProbeResult(
                healthy=False,
                message=f"Health check timed out after {timeout} seconds",
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.error("Health check for %s failed: %s", url, e)
            return HealthProbeResult(
                healthy=False,
                message=f"Health check failed: {e}",
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
