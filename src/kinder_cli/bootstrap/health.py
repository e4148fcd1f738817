"""Readiness polling and endpoint checks.

The registry is the only service whose readiness gates the start
sequence; endpoint checks are used by diagnostics.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..shared.logging import get_logger

logger = get_logger(__name__)

REGISTRY_READY_URL = "http://localhost:5000/v2/"


@dataclass
class ReadinessResult:
    """Result of a readiness wait."""

    ready: bool
    attempts: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None


class ReadinessPoller:
    """Poll an HTTP endpoint at a fixed interval until it answers 200."""

    def __init__(
        self,
        interval_seconds: float = 0.5,
        timeout_seconds: float = 30.0,
        request_timeout: float = 2.0,
    ):
        """Initialize poller.

        Args:
            interval_seconds: Seconds between attempts.
            timeout_seconds: Overall deadline for the wait.
            request_timeout: Timeout for each HTTP request.
        """
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.request_timeout = request_timeout

    async def wait_until_ready(
        self,
        url: str = REGISTRY_READY_URL,
        on_attempt: callable | None = None,
    ) -> ReadinessResult:
        """Poll url until it returns HTTP 200 or the deadline passes.

        Args:
            url: Endpoint to poll.
            on_attempt: Optional callback called with (attempt, error).

        Returns:
            ReadinessResult with status information.
        """
        start = time.monotonic()
        deadline = start + self.timeout_seconds
        last_error: str | None = None
        attempt = 0

        async with httpx.AsyncClient(timeout=self.request_timeout) as client:
            while True:
                attempt += 1
                try:
                    response = await client.get(url)
                    if response.status_code == 200:
                        return ReadinessResult(
                            ready=True,
                            attempts=attempt,
                            elapsed_seconds=time.monotonic() - start,
                        )
                    last_error = f"HTTP {response.status_code}"
                except httpx.ConnectError:
                    last_error = "Connection refused"
                except httpx.TimeoutException:
                    last_error = "Request timeout"
                except httpx.HTTPError as e:
                    last_error = str(e)

                logger.debug("readiness attempt failed", url=url, attempt=attempt, error=last_error)
                if on_attempt:
                    on_attempt(attempt, last_error)

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(self.interval_seconds, remaining))

        return ReadinessResult(
            ready=False,
            attempts=attempt,
            elapsed_seconds=time.monotonic() - start,
            error=f"{url} not ready within {self.timeout_seconds:g}s. Last error: {last_error}",
        )

    def wait_until_ready_sync(
        self,
        url: str = REGISTRY_READY_URL,
        on_attempt: callable | None = None,
    ) -> ReadinessResult:
        """Synchronous wrapper for wait_until_ready."""
        return asyncio.run(self.wait_until_ready(url, on_attempt))


@dataclass
class EndpointCheck:
    """Result of a single HTTPS endpoint probe."""

    url: str
    ok: bool
    status_code: int | None = None
    error: str | None = None


def check_endpoint(url: str, ca_path: str | Path | None = None, timeout: float = 5.0) -> EndpointCheck:
    """GET url once, trusting ca_path, without following redirects.

    Any status below 400 counts as reachable.
    """
    try:
        verify: bool | ssl.SSLContext = ssl.create_default_context(cafile=str(ca_path)) if ca_path else True
        with httpx.Client(verify=verify, timeout=timeout, follow_redirects=False) as client:
            response = client.get(url)
    except (httpx.HTTPError, ssl.SSLError, OSError) as e:
        return EndpointCheck(url=url, ok=False, error=str(e))
    return EndpointCheck(url=url, ok=response.status_code < 400, status_code=response.status_code)
