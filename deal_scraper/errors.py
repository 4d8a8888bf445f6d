"""Exceptions raised by the scraping engine.

Per-field extraction and per-candidate validation problems are not
exceptions; they are recorded as data on the candidate (see ``models``).
"""

from __future__ import annotations

from typing import Iterable, Optional


class FetchError(Exception):
    """Base class for failures to retrieve a source page."""

    kind = "FetchError"
    retryable = True

    def __init__(
        self, message: str, url: Optional[str] = None, retryable: Optional[bool] = None
    ) -> None:
        super().__init__(message)
        self.url = url
        if retryable is not None:
            self.retryable = retryable

    def describe(self) -> str:
        return f"FetchError.{self.kind}: {self}"


class FetchTimeout(FetchError):
    kind = "Timeout"


class NetworkError(FetchError):
    kind = "NetworkError"


class HTTPStatusError(FetchError):
    kind = "HTTPStatus"

    def __init__(self, status_code: int, url: Optional[str] = None) -> None:
        super().__init__(f"HTTP {status_code} from {url or 'source'}", url=url)
        self.status_code = status_code
        self.retryable = status_code >= 500


class SourceConfigError(ValueError):
    """Raised when a source configuration tree is incomplete or invalid."""

    def __init__(self, problems: Iterable[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid source configuration")

    def describe(self) -> str:
        return f"ConfigError: {self}"


class ConflictResolutionError(Exception):
    """Raised when a conflict cannot be resolved as requested."""
