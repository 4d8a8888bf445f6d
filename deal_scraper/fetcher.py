"""HTTP fetcher for source pages with bounded retry."""

from __future__ import annotations

import time
from typing import Callable, Optional

import httpx

from .errors import FetchError, FetchTimeout, HTTPStatusError, NetworkError
from .logging import get_logger
from .source_config import RunOptions

logger = get_logger(__name__)


class Fetcher:
    """Retrieves a page body, retrying timeouts, network errors and 5xx."""

    def __init__(
        self,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._transport = transport
        self._sleep = sleep

    def fetch(self, url: str, options: RunOptions) -> str:
        attempts = options.retry_attempts + 1
        attempt = 1
        while True:
            try:
                return self._get_once(url, options)
            except FetchError as exc:
                if not exc.retryable or attempt >= attempts:
                    logger.warning(
                        "fetch_failed",
                        url=url,
                        attempt=attempt,
                        attempts=attempts,
                        error=exc.describe(),
                    )
                    raise
                backoff = self.backoff_delay(attempt)
                logger.warning(
                    "http_retry",
                    url=url,
                    attempt=attempt,
                    attempts=attempts,
                    backoff=backoff,
                    error=exc.describe(),
                )
                self._sleep(backoff)
                attempt += 1

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * 2 ** (attempt - 1))

    def _get_once(self, url: str, options: RunOptions) -> str:
        # A fresh client per call.
        with httpx.Client(
            timeout=options.timeout_seconds,
            headers={"User-Agent": options.identity},
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            try:
                response = client.get(url)
            except httpx.TimeoutException as exc:
                raise FetchTimeout(f"timed out after {options.timeout_ms}ms: {exc}", url=url) from exc
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
                raise NetworkError(f"invalid url: {exc}", url=url, retryable=False) from exc
            except httpx.HTTPError as exc:
                raise NetworkError(str(exc) or exc.__class__.__name__, url=url) from exc

        if response.status_code >= 400:
            raise HTTPStatusError(response.status_code, url=url)
        logger.info("fetched", url=url, status=response.status_code, bytes=len(response.content))
        return response.text
