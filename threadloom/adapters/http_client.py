"""Remote fetch adapter: one JSON request per call, typed failures, no retries."""

import logging
import threading
import time
from typing import Any, Optional
from urllib.parse import urlparse

import requests

from threadloom.core.exceptions import (
    FetchError,
    ForbiddenError,
    NotFoundError,
    PayloadError,
    RateLimitError,
)
from threadloom.core.types import Credentials

logger = logging.getLogger("threadloom")

# App version for User-Agent
_APP_VERSION = "1.0.0"


class RateLimiter:
    """Minimum-interval rate limiter shared by concurrent fetches.

    Enforces a minimum time gap between request starts. An interval of 0
    disables waiting.
    """

    def __init__(self, interval_sec: float = 0.0):
        self._interval = interval_sec
        self._last_request_time: float = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Wait if needed to respect minimum interval, then mark the request."""
        if self._interval <= 0:
            return
        with self._lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._interval:
                sleep_time = self._interval - elapsed
                logger.debug(f"Rate limiter: sleeping {sleep_time:.1f}s")
                time.sleep(sleep_time)
            self._last_request_time = time.monotonic()


class JSONFetcher:
    """GET/POST a URL and decode its JSON body.

    Any status other than 200 is a failure. Failures are raised as
    NetworkError subclasses for the caller to turn into fallbacks or flags;
    nothing is retried here.
    """

    def __init__(
        self,
        timeout: float = 30,
        request_interval_sec: float = 0.0,
        user_agent: Optional[str] = None,
    ):
        self._timeout = timeout
        self._rate_limiter = RateLimiter(request_interval_sec)
        self._session = requests.Session()
        self._session.headers.update({
            "User-Agent": user_agent or f"threadloom/{_APP_VERSION}",
            "Accept": "application/json",
        })

    @staticmethod
    def auth_headers(url: str, credentials: Optional[Credentials]) -> dict:
        """Bearer header for credentials whose home host is the URL's host."""
        if credentials is None or not credentials.token:
            return {}
        host = (urlparse(url).hostname or "").lower()
        if host != credentials.instance.lower():
            return {}
        return {"Authorization": f"Bearer {credentials.token}"}

    def fetch_json(
        self,
        url: str,
        params: Optional[dict] = None,
        credentials: Optional[Credentials] = None,
        method: str = "GET",
    ) -> Any:
        """Fetch JSON from url.

        Raises:
            RateLimitError: 429
            NotFoundError: 404
            ForbiddenError: 401/403
            FetchError: any other non-200 status or transport failure
            PayloadError: body is not JSON
        """
        self._rate_limiter.wait()

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                headers=self.auth_headers(url, credentials),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise FetchError(f"Network error: {e}")

        status = response.status_code
        if status == 429:
            raise RateLimitError(f"Rate limited: {url}")
        if status == 404:
            raise NotFoundError(f"Not found: {url}")
        if status in (401, 403):
            raise ForbiddenError(f"Forbidden: {url}", status_code=status)
        if status != 200:
            raise FetchError(f"Server responded with status code {status}: {url}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            content_type = response.headers.get("Content-Type", "")
            raise PayloadError(f"Expected JSON from {url}, got {content_type or 'unknown content'}: {e}")
