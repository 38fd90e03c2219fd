"""Exception taxonomy for the crawler.

Errors raised by the fetch layer are classified by the governor; pool
errors are reported against a single page; only
:class:`BrowserUnavailableError` aborts a whole run.
"""

from __future__ import annotations

from typing import Optional, Union


class MdcrawlError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Session pool
# ---------------------------------------------------------------------------


class PoolError(MdcrawlError):
    """Raised when a browser session cannot be leased."""


class PoolExhaustedError(PoolError):
    """No session became available before the acquire timeout elapsed."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No browser session available within {timeout:.1f}s")


class PoolCreationError(PoolError):
    """The driver failed to create a new page after repeated attempts."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to create browser session after {attempts} attempt(s){detail}"
        )


class PoolShuttingDownError(PoolError):
    """The pool was shut down while (or before) waiting for a session."""

    def __init__(self) -> None:
        super().__init__("Browser session pool is shutting down")


class BrowserUnavailableError(MdcrawlError):
    """The headless browser could not be started at all."""


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class FetchError(MdcrawlError):
    """Base class for navigation failures."""

    outcome = "network_error"

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)

    @property
    def code(self) -> Optional[Union[int, str]]:
        return None


class FetchTimeoutError(FetchError):
    """Navigation or HTML capture exceeded its timeout."""

    outcome = "timeout"

    def __init__(self, url: str, timeout: float, stage: str = "navigation"):
        self.timeout = timeout
        self.stage = stage
        super().__init__(url, f"{stage} timed out after {timeout:.1f}s for {url}")

    @property
    def code(self) -> str:
        return "ETIMEDOUT"


class FetchNetworkError(FetchError):
    """DNS resolution or connection failure."""

    outcome = "network_error"

    def __init__(self, url: str, error_code: Optional[str], message: str):
        self.error_code = error_code
        super().__init__(url, message)

    @property
    def code(self) -> Optional[str]:
        return self.error_code


class FetchHttpError(FetchError):
    """The navigation finished with a non-2xx status."""

    def __init__(self, url: str, status_code: int):
        self.status_code = status_code
        super().__init__(url, f"HTTP {status_code} for {url}")

    @property
    def outcome(self) -> str:  # type: ignore[override]
        return "server_error" if self.status_code >= 500 else "client_error"

    @property
    def code(self) -> int:
        return self.status_code


class RetryExhaustedError(MdcrawlError):
    """Wraps the last failure once a request may not be attempted again."""

    def __init__(self, url: str, attempts: int, last_error: BaseException):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Giving up on {url} after {attempts} attempt(s): {last_error}"
        )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class AssemblerWriteError(MdcrawlError):
    """Writing one page (or the index) to disk failed."""

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"disk write error for {path}: {cause}")
