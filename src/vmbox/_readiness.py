"""Readiness polling for a freshly booted sandbox's command service."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from vmbox._defaults import (
    DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
    DEFAULT_READY_POLL_INTERVAL_SECONDS,
    DEFAULT_READY_TIMEOUT_SECONDS,
)
from vmbox.exceptions import SandboxNotReadyError

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"


async def probe_health(
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float = DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
) -> bool:
    """Issue one health check.

    Returns:
        True on 200/204. Connection failures, 502 and any other status count
        as not ready.
    """
    try:
        response = await client.get(HEALTH_PATH, timeout=timeout_seconds)
    except httpx.TransportError as e:
        logger.debug("Health check failed: %s", e)
        return False

    match response.status_code:
        case 200 | 204:
            return True
        case 502:
            # The edge proxy answers before envd is listening
            logger.debug("Health check returned 502, not ready yet")
        case status:
            logger.debug("Health check returned %d: %s", status, response.text)
    return False


async def wait_for_ready(
    client: httpx.AsyncClient,
    *,
    sandbox_id: str | None = None,
    timeout_seconds: float = DEFAULT_READY_TIMEOUT_SECONDS,
    poll_interval_seconds: float = DEFAULT_READY_POLL_INTERVAL_SECONDS,
    probe_timeout_seconds: float = DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
) -> None:
    """Poll the health endpoint until it succeeds or the deadline passes.

    The first probe is sent immediately. Each probe is bounded by the
    time left before the deadline.

    Raises:
        SandboxNotReadyError: If the service is not ready within timeout_seconds
    """
    start_time = time.monotonic()
    attempts = 0

    while True:
        attempts += 1
        remaining = timeout_seconds - (time.monotonic() - start_time)
        probe_timeout = min(probe_timeout_seconds, max(remaining, 0.0))
        if await probe_health(client, timeout_seconds=probe_timeout):
            logger.info(
                "Sandbox %s ready after %.2fs (%d probes)",
                sandbox_id,
                time.monotonic() - start_time,
                attempts,
            )
            return

        remaining = timeout_seconds - (time.monotonic() - start_time)
        if remaining <= 0:
            raise SandboxNotReadyError(
                f"Sandbox {sandbox_id} did not become ready within {timeout_seconds}s",
                timeout_seconds=timeout_seconds,
            )
        await asyncio.sleep(min(poll_interval_seconds, remaining))
