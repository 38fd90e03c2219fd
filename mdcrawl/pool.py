"""Bounded pool of reusable browser pages."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Deque, Literal, Optional, Set

from .browser import BrowserDriver, PageHandle
from .config import CrawlConfig
from .errors import (
    FetchHttpError,
    PoolCreationError,
    PoolExhaustedError,
    PoolShuttingDownError,
)

LOGGER = logging.getLogger(__name__)

SessionState = Literal["idle", "busy", "disposed"]

_SESSION_IDS = itertools.count(1)


@dataclass(eq=False)
class BrowserSession:
    """A leased page handle; at most one fetch uses it at a time."""

    page: PageHandle
    session_id: int = field(default_factory=lambda: next(_SESSION_IDS))
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    state: SessionState = "idle"
    uses: int = 0


class BrowserSessionPool:
    """Lease pages out to concurrent fetches without exceeding ``max_sessions``.

    Sessions are created lazily. Idle/busy bookkeeping is guarded by a single
    ``asyncio.Condition``; page creation and disposal happen outside of it.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        *,
        max_sessions: int = 8,
        acquire_timeout: float = 300.0,
        creation_attempts: int = 3,
        creation_backoff: float = 0.5,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._driver = driver
        self.max_sessions = max_sessions
        self.acquire_timeout = acquire_timeout
        self.creation_attempts = max(1, creation_attempts)
        self.creation_backoff = creation_backoff

        self._cond = asyncio.Condition()
        self._idle: Deque[BrowserSession] = deque()
        self._leased: Set[BrowserSession] = set()
        self._creating = 0
        self._closed = False
        self.peak_leased = 0
        self.created_count = 0
        self.disposed_count = 0

    @classmethod
    def from_config(cls, driver: BrowserDriver, config: CrawlConfig) -> "BrowserSessionPool":
        return cls(
            driver,
            max_sessions=config.max_sessions,
            acquire_timeout=config.acquire_timeout,
            creation_attempts=config.session_creation_attempts,
        )

    @property
    def leased_count(self) -> int:
        return len(self._leased)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    def _occupied(self) -> int:
        return len(self._leased) + len(self._idle) + self._creating

    def _lease(self, session: BrowserSession) -> BrowserSession:
        session.state = "busy"
        session.uses += 1
        session.last_used_at = time.monotonic()
        self._leased.add(session)
        self.peak_leased = max(self.peak_leased, len(self._leased))
        return session

    async def acquire(self) -> BrowserSession:
        """Wait for an idle session or free capacity, then lease a session."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.acquire_timeout

        async with self._cond:
            while True:
                if self._closed:
                    raise PoolShuttingDownError()
                if self._idle:
                    return self._lease(self._idle.popleft())
                if self._occupied() < self.max_sessions:
                    self._creating += 1
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise PoolExhaustedError(self.acquire_timeout)
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise PoolExhaustedError(self.acquire_timeout) from None

        try:
            page = await self._create_page()
        except BaseException:
            async with self._cond:
                self._creating -= 1
                self._cond.notify()
            raise

        session = BrowserSession(page=page)
        async with self._cond:
            self._creating -= 1
            if not self._closed:
                self.created_count += 1
                LOGGER.debug("Created browser session %d", session.session_id)
                return self._lease(session)
            self._cond.notify_all()

        await self._dispose(session)
        raise PoolShuttingDownError()

    async def _create_page(self) -> PageHandle:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.creation_attempts + 1):
            try:
                return await self._driver.new_page()
            except Exception as exc:
                last_error = exc
                LOGGER.warning(
                    "Browser session creation failed (attempt %d/%d): %s",
                    attempt,
                    self.creation_attempts,
                    exc,
                )
                if attempt < self.creation_attempts:
                    await asyncio.sleep(self.creation_backoff * attempt)
        raise PoolCreationError(self.creation_attempts, last_error)

    async def release(self, session: BrowserSession, healthy: bool = True) -> None:
        """Return a session; unhealthy ones are disposed and not re-leased."""
        dispose = False
        async with self._cond:
            if session not in self._leased:
                LOGGER.debug("Ignoring release of unknown session %d", session.session_id)
                return
            self._leased.discard(session)
            session.last_used_at = time.monotonic()
            if healthy and not self._closed and session.state == "busy":
                session.state = "idle"
                self._idle.append(session)
            else:
                dispose = True
            self._cond.notify()

        if dispose:
            await self._dispose(session)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[BrowserSession]:
        """Acquire a session for the duration of the block.

        The session goes back healthy unless the block raised something
        other than an HTTP status error.
        """
        session = await self.acquire()
        healthy = True
        try:
            yield session
        except FetchHttpError:
            raise
        except BaseException:
            healthy = False
            raise
        finally:
            await self.release(session, healthy=healthy)

    async def _dispose(self, session: BrowserSession) -> None:
        if session.state == "disposed":
            return
        session.state = "disposed"
        self.disposed_count += 1
        try:
            await session.page.close()
        except Exception as exc:
            LOGGER.debug("Error closing session %d: %s", session.session_id, exc)

    async def shutdown(self) -> None:
        """Dispose idle sessions and fail every pending or later acquire."""
        async with self._cond:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._cond.notify_all()
        for session in idle:
            await self._dispose(session)
        LOGGER.debug(
            "Session pool shut down (created=%d, peak_leased=%d)",
            self.created_count,
            self.peak_leased,
        )
