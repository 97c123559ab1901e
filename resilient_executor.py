"""
Resilient Operation Executor
============================

Wraps every fallible external call (upload, text generation, image
generation, entity writes) in a classification-driven retry loop.

Policy per failure (RETRY_POLICIES):
    429                  retry, backoff 5s * 2^attempt; exhaustion -> RateLimited
    502/503/504, timeout retry, backoff 1s * 2^attempt + uniform(0, 1)s
    network down (write) no inline retry -> NetworkQueuedWrite
    401 / 403            no retry -> SessionExpired / AccessDenied
    anything else        logged and re-raised unchanged

Usage:
    executor = ResilientExecutor()
    data = await executor.execute(lambda: client.generate(prompt),
                                  max_retries=4, operation_name="extract_recipe")
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from errors import (
    AccessDenied,
    NetworkQueuedWrite,
    NetworkUnavailable,
    PipelineCancelled,
    RateLimited,
    RetryExhausted,
    SessionExpired,
)
from tools.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3


def rate_limit_backoff(attempt: int, jitter: Callable[[float, float], float]) -> float:
    return 5.0 * (2 ** attempt)


def server_error_backoff(attempt: int, jitter: Callable[[float, float], float]) -> float:
    return 1.0 * (2 ** attempt) + jitter(0.0, 1.0)


@dataclass(frozen=True)
class RetryPolicy:
    classification: str
    retryable: bool
    backoff: Optional[Callable[[int, Callable[[float, float], float]], float]] = None


RATE_LIMITED = RetryPolicy("rate_limited", True, rate_limit_backoff)
SERVER_UNAVAILABLE = RetryPolicy("server_unavailable", True, server_error_backoff)
TIMEOUT = RetryPolicy("timeout", True, server_error_backoff)
SESSION_EXPIRED = RetryPolicy("session_expired", False)
ACCESS_DENIED = RetryPolicy("access_denied", False)
NETWORK_WRITE = RetryPolicy("network_unreachable_write", False)
NETWORK_READ = RetryPolicy("network_unreachable", False)
UNCLASSIFIED = RetryPolicy("unclassified", False)

# HTTP status -> policy
RETRY_POLICIES: Dict[int, RetryPolicy] = {
    429: RATE_LIMITED,
    502: SERVER_UNAVAILABLE,
    503: SERVER_UNAVAILABLE,
    504: SERVER_UNAVAILABLE,
    401: SESSION_EXPIRED,
    403: ACCESS_DENIED,
}


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an exception (TransportError, aiohttp, requests)."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError))


def is_network_error(exc: BaseException) -> bool:
    return isinstance(exc, (NetworkUnavailable, aiohttp.ClientConnectionError, ConnectionError))


def classify_failure(exc: BaseException, is_write: bool = False) -> RetryPolicy:
    """Map one failure to its policy. Pure; no I/O."""
    if is_timeout(exc):
        return TIMEOUT
    status = status_code_of(exc)
    if status in RETRY_POLICIES:
        return RETRY_POLICIES[status]
    if status is None and is_network_error(exc):
        return NETWORK_WRITE if is_write else NETWORK_READ
    return UNCLASSIFIED


class ResilientExecutor:
    """
    Runs async operations under RETRY_POLICIES.

    ``sleep``, ``jitter`` and ``clock`` are injectable so tests can run the
    loop without waiting.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = None,
                 jitter: Callable[[float, float], float] = None,
                 clock: Callable[[], float] = None,
                 default_deadline: Optional[float] = None):
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter or random.uniform
        self._clock = clock or time.monotonic
        self.default_deadline = default_deadline

    async def execute(self, operation: Callable[[], Awaitable[Any]], *,
                      is_write: bool = False,
                      max_retries: int = DEFAULT_MAX_RETRIES,
                      operation_name: Optional[str] = None,
                      cancel_event: Optional[asyncio.Event] = None,
                      deadline: Optional[float] = None) -> Any:
        """
        Run ``operation`` until it succeeds or its failure budget is spent.

        Args:
            operation: Zero-argument callable returning an awaitable
            is_write: Network failures become NetworkQueuedWrite instead of surfacing
            max_retries: Total number of attempts (>= 1)
            operation_name: Name used in logs and errors
            cancel_event: When set, no further attempt is scheduled
            deadline: Wall-clock bound in seconds for all attempts and waits

        Returns:
            The operation's result

        Raises:
            RetryExhausted / RateLimited: Transient failures on every attempt
            SessionExpired / AccessDenied: 401 / 403
            NetworkQueuedWrite: Write attempted while the network is down
            PipelineCancelled: cancel_event was set between attempts
            Exception: Any unclassified failure, unchanged
        """
        name = operation_name or getattr(operation, "__name__", "operation")
        attempts = max(1, int(max_retries))
        budget = deadline if deadline is not None else self.default_deadline
        started = self._clock()
        last_error: Optional[BaseException] = None
        policy = UNCLASSIFIED

        for attempt in range(attempts):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"🛑 {name} cancelled before attempt {attempt + 1}/{attempts}")
                raise PipelineCancelled("Operation cancelled", name, {'attempt': attempt + 1})

            try:
                result = await operation()
                if attempt:
                    logger.info(f"✅ {name} succeeded on attempt {attempt + 1}/{attempts}")
                return result
            except (SessionExpired, AccessDenied, NetworkQueuedWrite, PipelineCancelled):
                raise
            except Exception as e:
                last_error = e
                policy = classify_failure(e, is_write)
                logger.warning(
                    f"⚠️ {name} failed (attempt {attempt + 1}/{attempts}, "
                    f"{policy.classification}): {e}"
                )

            if policy is SESSION_EXPIRED:
                raise SessionExpired(name) from last_error
            if policy is ACCESS_DENIED:
                raise AccessDenied(name) from last_error
            if policy is NETWORK_WRITE:
                raise NetworkQueuedWrite(name, last_error) from last_error
            if not policy.retryable:
                raise last_error

            if attempt == attempts - 1:
                break

            delay = policy.backoff(attempt, self._jitter)
            if budget is not None and (self._clock() - started) + delay > budget:
                logger.warning(f"⚠️ {name}: {budget}s deadline reached, giving up")
                break

            logger.info(f"🔄 {name}: retrying in {delay:.1f}s")
            await self._sleep(delay)

        logger.error(f"❌ {name} failed after {attempt + 1} attempt(s): {last_error}")
        if policy is RATE_LIMITED:
            raise RateLimited(name, attempt + 1, last_error) from last_error
        raise RetryExhausted(
            f"Failed after {attempt + 1} attempt(s): {last_error}",
            name, attempt + 1, last_error,
        ) from last_error
