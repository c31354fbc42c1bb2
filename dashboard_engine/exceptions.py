"""Errors raised by the coordination layer."""

from typing import Optional


class DashboardError(Exception):
    """Base class for everything this package raises on purpose."""


class LoadError(DashboardError):
    """A Data Loader request failed after its retries."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


class HTTPStatusLoadError(LoadError):
    def __init__(self, endpoint: str, status: int, reason: Optional[str] = None):
        super().__init__(endpoint, f"HTTP {status}" + (f": {reason}" if reason else ""))
        self.status = status

    @property
    def transient(self) -> bool:
        return self.status in (502, 503, 504)


class LoadTimeoutError(LoadError):
    def __init__(self, endpoint: str, timeout: float):
        super().__init__(endpoint, f"timed out after {timeout:g}s")
        self.timeout = timeout


class RequestDroppedError(LoadError):
    """Raised to callers whose queued request was removed by clear_queue()."""

    def __init__(self, endpoint: str):
        super().__init__(endpoint, "dropped from queue before it started")
