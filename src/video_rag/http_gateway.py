"""Retrying HTTP executor shared by the transcript and knowledge store clients."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from src.utils.logging import get_logger

from .errors import NetworkExhausted
from .schemas import RetryPolicy

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(
    attempt: int, policy: RetryPolicy, rng: random.Random | None = None
) -> float:
    """Compute the delay to wait after a failed attempt.

    Exponential in the attempt number, capped at ``backoff_max_seconds``, plus
    up to ``jitter_ratio`` of the delay as non-negative random jitter.

    Args:
        attempt: 1-based number of the attempt that just failed.
        policy: Retry policy with the backoff parameters.
        rng: Random source for jitter (defaults to the module RNG).

    Returns:
        Delay in seconds.
    """
    delay = policy.backoff_base_seconds * policy.backoff_multiplier ** (attempt - 1)
    delay = min(delay, policy.backoff_max_seconds)
    if policy.jitter_ratio:
        delay += delay * policy.jitter_ratio * (rng or random).random()
    return delay


def is_transient_status(status_code: int) -> bool:
    """Return True for response codes worth retrying (server errors only)."""
    return status_code >= 500


class HttpGateway:
    """Executes HTTP requests with a per-attempt timeout and retry policy.

    Only transient failures are retried: transport errors (connection
    failures, read errors, timeouts) and 5xx responses. Any other response,
    including 4xx client errors, is returned to the caller on the first
    attempt. The gateway holds no per-request state and is safe to share.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        """Initialize the gateway.

        Args:
            client: HTTP client to send requests with. If None, the gateway
                creates one and closes it in ``aclose``.
            sleep: Coroutine used to wait between attempts.
            rng: Random source for backoff jitter.
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()
        self._sleep = sleep
        self._rng = rng

    async def __aenter__(self) -> "HttpGateway":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def build_request(
        self, method: str, url: str, policy: RetryPolicy, **kwargs: Any
    ) -> httpx.Request:
        """Build a request carrying the policy's per-attempt timeout."""
        return self.client.build_request(
            method, url, timeout=policy.timeout_seconds, **kwargs
        )

    async def execute(self, request: httpx.Request, policy: RetryPolicy) -> httpx.Response:
        """Send ``request``, retrying transient failures according to ``policy``.

        Args:
            request: Request to send (see ``build_request``).
            policy: Timeout, attempt count and backoff schedule.

        Returns:
            The first non-transient response (2xx, 3xx or 4xx).

        Raises:
            NetworkExhausted: If every attempt failed transiently.
        """
        url = request.url
        target = f"{request.method} {url.scheme}://{url.host}{url.path}"
        last_error: BaseException | str | None = None
        previous_delay = 0.0

        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = await self.client.send(request)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "http_transport_error",
                    target=target,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error_type=type(e).__name__,
                )
            else:
                if not is_transient_status(response.status_code):
                    logger.debug(
                        "http_response",
                        target=target,
                        status_code=response.status_code,
                        attempt=attempt,
                    )
                    return response

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "http_server_error",
                    target=target,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    status_code=response.status_code,
                )

            if attempt < policy.max_attempts:
                # Never shorten the wait between consecutive attempts.
                delay = max(previous_delay, backoff_delay(attempt, policy, self._rng))
                previous_delay = delay
                await self._sleep(delay)

        logger.error(
            "http_retries_exhausted",
            target=target,
            attempts=policy.max_attempts,
            last_error=str(last_error),
        )
        raise NetworkExhausted(
            f"{target} failed after {policy.max_attempts} attempt(s)",
            last_error=last_error,
        )
