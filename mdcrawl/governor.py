"""Concurrency ceiling, per-domain spacing and retry policy."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from .config import CrawlConfig, RETRYABLE_ERROR_CODES, RETRYABLE_STATUS_CODES
from .document import PageResult
from .errors import FetchError, FetchHttpError, RetryExhaustedError
from .urls import host_of

LOGGER = logging.getLogger(__name__)

FailureCode = Optional[Union[int, str]]
Work = Callable[[], Awaitable[PageResult]]


class RequestState(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


def classify_failure(exc: BaseException) -> FailureCode:
    """Status code or error code used to decide whether to retry."""
    if isinstance(exc, FetchHttpError):
        return exc.status_code
    if isinstance(exc, FetchError):
        return exc.code
    return None


@dataclass
class RetryPolicy:
    """Which failures to retry and how long to back off between attempts."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    jitter: float = 0.25
    retryable_statuses: FrozenSet[int] = RETRYABLE_STATUS_CODES
    retryable_codes: FrozenSet[str] = RETRYABLE_ERROR_CODES
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
        )

    def is_retryable(self, code: FailureCode) -> bool:
        if isinstance(code, int):
            return code in self.retryable_statuses
        if isinstance(code, str):
            return code.upper() in self.retryable_codes
        return False

    def backoff(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = min(self.backoff_max, self.backoff_base * (2 ** max(0, attempt - 1)))
        if self.jitter and delay:
            delay += self.rng.uniform(0, delay * self.jitter)
        return min(delay, self.backoff_max)


@dataclass
class RetryableRequest:
    """Attempt bookkeeping for one URL.

    ``PENDING -> IN_FLIGHT -> (SUCCEEDED | RETRYING -> IN_FLIGHT | EXHAUSTED)``
    """

    url: str
    max_attempts: int = 3
    attempts: int = 0
    state: RequestState = RequestState.PENDING
    last_failure: FailureCode = None
    last_error: Optional[BaseException] = None
    next_eligible_at: float = 0.0

    @property
    def retry_count(self) -> int:
        return max(0, self.attempts - 1)

    @property
    def done(self) -> bool:
        return self.state in (RequestState.SUCCEEDED, RequestState.EXHAUSTED)

    def start_attempt(self) -> None:
        if self.state not in (RequestState.PENDING, RequestState.RETRYING):
            raise RuntimeError(f"Cannot start an attempt from state {self.state.value}")
        if self.attempts >= self.max_attempts:
            raise RuntimeError("No attempts left")
        self.attempts += 1
        self.state = RequestState.IN_FLIGHT

    def succeed(self) -> None:
        if self.state is not RequestState.IN_FLIGHT:
            raise RuntimeError(f"Cannot succeed from state {self.state.value}")
        self.state = RequestState.SUCCEEDED

    def fail(self, exc: BaseException, policy: RetryPolicy, now: float) -> RequestState:
        """Record a failed attempt and move to ``RETRYING`` or ``EXHAUSTED``."""
        if self.state is not RequestState.IN_FLIGHT:
            raise RuntimeError(f"Cannot fail from state {self.state.value}")
        self.last_error = exc
        self.last_failure = classify_failure(exc)
        if self.attempts < self.max_attempts and policy.is_retryable(self.last_failure):
            self.state = RequestState.RETRYING
            self.next_eligible_at = now + policy.backoff(self.attempts)
        else:
            self.state = RequestState.EXHAUSTED
        return self.state


class DomainThrottle:
    """Enforce a minimum gap between dispatches to the same host.

    Waiters for one host are served in FIFO order by a per-host lock.
    """

    def __init__(
        self,
        wait: float = 0.5,
        jitter: float = 0.25,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.wait = wait
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_dispatch: Dict[str, float] = {}
        self.dispatch_log: List[Tuple[str, float]] = []

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = self._locks[host] = asyncio.Lock()
        return lock

    async def wait_turn(self, url: str) -> float:
        """Sleep until ``url``'s host may be contacted; returns dispatch time."""
        host = host_of(url)
        async with self._lock_for(host):
            last = self._last_dispatch.get(host)
            if last is not None and self.wait > 0:
                gap = self.wait + self._rng.uniform(0, self.wait * self.jitter)
                delay = last + gap - self._clock()
                if delay > 0:
                    await asyncio.sleep(delay)
            dispatched = self._clock()
            self._last_dispatch[host] = dispatched
            self.dispatch_log.append((host, dispatched))
            return dispatched


class RequestGovernor:
    """Run page work under the global concurrency ceiling with retries."""

    def __init__(
        self,
        *,
        concurrent_limit: int = 30,
        throttle: Optional[DomainThrottle] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        self.concurrent_limit = concurrent_limit
        self._slots = asyncio.Semaphore(concurrent_limit)
        self.throttle = throttle or DomainThrottle()
        self.policy = policy or RetryPolicy()
        self.in_flight = 0
        self.peak_in_flight = 0

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "RequestGovernor":
        return cls(
            concurrent_limit=config.concurrent_limit,
            throttle=DomainThrottle(config.wait_between_requests, config.request_jitter),
            policy=RetryPolicy.from_config(config),
        )

    async def _attempt(self, url: str, work: Work) -> PageResult:
        async with self._slots:
            await self.throttle.wait_turn(url)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await work()
            finally:
                self.in_flight -= 1

    async def submit(self, url: str, work: Work, *, depth: int = 0) -> PageResult:
        """Run ``work`` for ``url`` until it succeeds or retries run out.

        Never raises for fetch failures; exhausted requests come back as a
        failed :class:`PageResult`.
        """
        request = RetryableRequest(url=url, max_attempts=self.policy.max_attempts)
        loop = asyncio.get_running_loop()
        started = time.monotonic()

        while True:
            request.start_attempt()
            try:
                result = await self._attempt(url, work)
            except FetchError as exc:
                state = request.fail(exc, self.policy, loop.time())
                if state is RequestState.EXHAUSTED:
                    break
                delay = max(0.0, request.next_eligible_at - loop.time())
                LOGGER.info(
                    "Retrying %s in %.1fs (attempt %d/%d failed: %s)",
                    url,
                    delay,
                    request.attempts,
                    request.max_attempts,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            request.succeed()
            return result.with_updates(retry_count=request.retry_count)

        error = RetryExhaustedError(url, request.attempts, request.last_error)
        LOGGER.warning("%s", error)
        return PageResult.failed(
            url,
            str(error),
            error_code=request.last_failure,
            retry_count=request.retry_count,
            depth=depth,
            fetch_duration=time.monotonic() - started,
        )
