"""HTTP session with retry logic, backoff, and rate-limit awareness.

Provides a requests.Session wrapper shared by the subtitle providers: a default
timeout on every call, urllib3 retries for 5xx responses, and translation of
429 / 401 / 403 into provider exceptions.
"""

import logging
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lampa_subtitles.providers.base import ProviderAuthError, ProviderRateLimitError

logger = logging.getLogger(__name__)

# 429 is left out on purpose: RetryingSession turns it into ProviderRateLimitError
_RETRY_STATUSES = [500, 502, 503, 504]


def create_session(
    max_retries: int = 2,
    backoff_factor: float = 1.0,
    timeout: int = 30,
    user_agent: str = "LAMPA v1.0",
) -> "RetryingSession":
    """Create a configured RetryingSession."""
    session = RetryingSession(timeout=timeout)
    session.headers["User-Agent"] = user_agent
    session.headers["Accept"] = "application/json"

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=_RETRY_STATUSES,
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


def _parse_retry_after(value: str | None, default: int = 60) -> int:
    if not value:
        return default
    try:
        return max(0, int(value))
    except ValueError:
        return default


class RetryingSession(requests.Session):
    """Session with default timeout and rate-limit awareness."""

    def __init__(self, timeout: int = 30):
        super().__init__()
        self.default_timeout = timeout
        self._rate_limit_until: float | None = None

    def request(self, method, url, **kwargs):
        if "timeout" not in kwargs:
            kwargs["timeout"] = self.default_timeout

        # Refuse instead of sleeping: the resolver moves on to the next provider.
        if self._rate_limit_until and time.time() < self._rate_limit_until:
            wait = self._rate_limit_until - time.time()
            raise ProviderRateLimitError(f"Rate limited, {wait:.0f}s left before {url} may be called")

        try:
            resp = super().request(method, url, **kwargs)
        except requests.ConnectionError as e:
            logger.warning("Connection error for %s %s: %s", method, url, e)
            raise
        except requests.Timeout:
            logger.warning("Timeout for %s %s", method, url)
            raise

        if resp.status_code == 429:
            wait_seconds = _parse_retry_after(resp.headers.get("Retry-After"))
            self._rate_limit_until = time.time() + wait_seconds
            resp.close()
            logger.warning("Rate limited by %s, backing off %ds", url, wait_seconds)
            raise ProviderRateLimitError(f"Rate limited by {url}, retry after {wait_seconds}s")

        if resp.status_code in (401, 403):
            resp.close()
            raise ProviderAuthError(f"Authentication failed for {url}: HTTP {resp.status_code}")

        return resp
