"""Abstract base class for subtitle providers and shared data models.

All providers implement the same three operations: is_enabled(), search() and
download(). Concrete providers implement the _search/_download hooks and may
raise ProviderError subclasses freely; the public methods on the base class
are the provider boundary and turn every failure into "no result", recording
what went wrong in ``last_failure``.
"""

import itertools
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterator, Optional
from urllib.parse import unquote, urlparse

import requests
from pysubs2.formats import autodetect_format

from lampa_subtitles.cache_store import (
    CachedSubtitleFile,
    CacheWriteError,
    DownloadCancelled,
    SubtitleCacheStore,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 20
_CHUNK_SIZE = 16 * 1024


class ProviderError(Exception):
    """Base exception for provider errors (auth, rate-limit, network, parsing)."""
    pass


class ProviderNotConfiguredError(ProviderError):
    """Required URL or credentials are missing."""
    pass


class ProviderAuthError(ProviderError):
    """Authentication or authorization failed (HTTP 401/403)."""
    pass


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""
    pass


class ProviderTimeoutError(ProviderError):
    """Provider request timed out or the connection dropped."""
    pass


class ProviderParseError(ProviderError):
    """The provider answered with a body we could not understand."""
    pass


class FailureKind(StrEnum):
    NOT_CONFIGURED = "not_configured"
    NO_RESULTS = "no_results"
    TRANSIENT = "transient"
    AUTH = "auth"
    PARSE = "parse"
    CACHE_WRITE = "cache_write"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SubtitleQuery:
    """What to search for. Built once per playback start."""

    video_filename: str
    preferred_language: str
    external_id: Optional[str] = None  # e.g. "tt1234567"
    media_type: str = "movie"  # addon protocol {type}: "movie" or "series"

    @classmethod
    def from_media_source(
        cls,
        media_source: str,
        preferred_language: str,
        external_id: Optional[str] = None,
        media_type: str = "movie",
    ) -> "SubtitleQuery":
        """Build a query from a media URL or path (last path segment, no query string)."""
        path = urlparse(media_source).path or media_source
        filename = unquote(path.rstrip("/").rsplit("/", 1)[-1])
        return cls(
            video_filename=filename,
            preferred_language=preferred_language,
            external_id=external_id or None,
            media_type=media_type,
        )

    @property
    def search_text(self) -> str:
        """Filename without extension, dots and underscores turned into spaces."""
        stem = os.path.splitext(self.video_filename)[0]
        return " ".join(stem.replace(".", " ").replace("_", " ").split())


@dataclass
class SubtitleCandidate:
    """A subtitle found by a provider. Discarded after the download attempt."""

    provider_name: str
    remote_id: str
    download_url: str
    language: str
    display_label: str = ""

    # Provider-private data (e.g. the REST file id)
    provider_data: dict = field(default_factory=dict)


# ─── Extension detection ─────────────────────────────────────────────────────

_KNOWN_EXTENSIONS = ("srt", "vtt", "ass", "ssa", "sub")

_SNIFFED_EXTENSIONS = {
    "srt": "srt",
    "ass": "ass",
    "ssa": "ssa",
    "vtt": "vtt",
    "microdvd": "sub",
}


def extension_from_url(url: str) -> Optional[str]:
    path = urlparse(url).path
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    return ext if ext in _KNOWN_EXTENSIONS else None


def extension_from_content_type(content_type: str) -> Optional[str]:
    ct = (content_type or "").lower()
    for ext in ("srt", "vtt", "ass", "ssa"):
        if ext in ct:
            return ext
    return None


def sniff_extension(head: bytes) -> Optional[str]:
    """Detect the subtitle format from the first bytes of the file."""
    text = head.lstrip(b"\xef\xbb\xbf").decode("utf-8", errors="replace")
    if not text.strip():
        return None
    try:
        fmt = autodetect_format(text)
    except Exception:
        return None
    return _SNIFFED_EXTENSIONS.get(fmt)


# ─── Provider base class ─────────────────────────────────────────────────────


class SubtitleProvider(ABC):
    """Abstract base class for subtitle providers.

    Class-level attributes:
        name: Display name, also used as the CachedSubtitleFile source.
        max_results: Cap on candidates returned from one search.
        filters_language_upstream: True if the provider's API filters by
            language itself; otherwise the resolver post-filters.
        uses_network: False for placeholders that never open a session.
    """

    name: str = "unknown"
    max_results: int = DEFAULT_MAX_RESULTS
    filters_language_upstream: bool = False
    uses_network: bool = True

    def __init__(self, cache_store: Optional[SubtitleCacheStore] = None, session=None, **config):
        self.cache_store = cache_store
        self.session = session
        self.config = config
        self.last_failure: Optional[FailureKind] = None
        self._disabled_reason: Optional[str] = None
        self._lock = threading.Lock()

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.terminate()
        return False

    def initialize(self):
        """Set up sessions. Override if needed."""

    def terminate(self):
        """Release the HTTP session, if any."""
        if self.session is not None:
            self.session.close()
            self.session = None

    # ─── Capability set ──────────────────────────────────────────────────

    @abstractmethod
    def is_configured(self) -> bool:
        """True iff the required URL or credentials are present."""
        ...

    def is_enabled(self) -> bool:
        return self._disabled_reason is None and self.is_configured()

    def disable(self, reason: str) -> None:
        """Take the provider out of rotation for the rest of the session."""
        if self._disabled_reason is None:
            logger.error("Provider %s disabled for this session: %s", self.name, reason)
        self._disabled_reason = reason

    @property
    def disabled_reason(self) -> Optional[str]:
        return self._disabled_reason

    def search(self, query: SubtitleQuery) -> list[SubtitleCandidate]:
        """Search for candidates. Never raises; returns [] on any failure."""
        self.last_failure = None
        if not self.is_enabled():
            self.last_failure = FailureKind.NOT_CONFIGURED
            return []
        try:
            candidates = list(itertools.islice(self._search(query), self.max_results))
        except Exception as e:
            self._record_failure("search", e)
            return []
        if not candidates:
            self.last_failure = FailureKind.NO_RESULTS
        logger.info("Provider %s: %d candidate(s) for %s", self.name, len(candidates), query.video_filename)
        return candidates

    def download(
        self,
        candidate: SubtitleCandidate,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[CachedSubtitleFile]:
        """Download a candidate into the cache. Never raises; None on failure."""
        self.last_failure = None
        if not self.is_enabled():
            self.last_failure = FailureKind.NOT_CONFIGURED
            return None
        try:
            cached = self._download(candidate, cancel_event)
        except Exception as e:
            self._record_failure("download", e)
            return None
        if cached is not None:
            logger.info(
                "Provider %s: downloaded %s (%d bytes)",
                self.name, cached.absolute_path, cached.size_bytes,
            )
        return cached

    def health_check(self) -> tuple[bool, str]:
        if not self.is_configured():
            return False, "Not configured"
        if self._disabled_reason:
            return False, self._disabled_reason
        return True, "OK"

    # ─── Hooks ───────────────────────────────────────────────────────────

    @abstractmethod
    def _search(self, query: SubtitleQuery) -> Iterator[SubtitleCandidate] | list[SubtitleCandidate]:
        ...

    @abstractmethod
    def _download(
        self,
        candidate: SubtitleCandidate,
        cancel_event: Optional[threading.Event],
    ) -> Optional[CachedSubtitleFile]:
        ...

    # ─── Shared helpers ──────────────────────────────────────────────────

    def _record_failure(self, operation: str, error: Exception) -> None:
        if isinstance(error, ProviderAuthError):
            self.last_failure = FailureKind.AUTH
            self.disable(f"authentication failed: {error}")
        elif isinstance(error, ProviderNotConfiguredError):
            self.last_failure = FailureKind.NOT_CONFIGURED
            logger.debug("Provider %s not configured: %s", self.name, error)
        elif isinstance(error, DownloadCancelled):
            self.last_failure = FailureKind.CANCELLED
            logger.info("Provider %s: %s cancelled", self.name, operation)
        elif isinstance(error, (ProviderTimeoutError, ProviderRateLimitError, requests.RequestException)):
            self.last_failure = FailureKind.TRANSIENT
            logger.warning("Provider %s %s failed (transient): %s", self.name, operation, error)
        elif isinstance(error, (CacheWriteError, OSError)):
            # after RequestException, which is an OSError subclass
            self.last_failure = FailureKind.CACHE_WRITE
            logger.error("Provider %s: cache write failed: %s", self.name, error)
        elif isinstance(error, (ProviderParseError, ValueError, KeyError, TypeError, AttributeError)):
            self.last_failure = FailureKind.PARSE
            logger.warning("Provider %s %s: malformed response: %s", self.name, operation, error)
        else:
            self.last_failure = FailureKind.TRANSIENT
            logger.error("Provider %s %s error: %s", self.name, operation, error, exc_info=True)

    def _get_json(self, url: str, **kwargs):
        """GET a JSON document; raise ProviderParseError on a non-JSON body."""
        try:
            resp = self.session.get(url, **kwargs)
        except requests.Timeout as e:
            raise ProviderTimeoutError(f"Timeout fetching {url}") from e
        except requests.ConnectionError as e:
            raise ProviderTimeoutError(f"Connection failed for {url}: {e}") from e
        if resp.status_code in (401, 403):
            raise ProviderAuthError(f"HTTP {resp.status_code} from {url}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise ProviderTimeoutError(f"HTTP {resp.status_code} from {url}")
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderParseError(f"Invalid JSON from {url}") from e

    def _fetch_to_cache(
        self,
        url: str,
        language: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> CachedSubtitleFile:
        """Stream a subtitle file into the cache store and verify it."""
        if self.cache_store is None:
            raise CacheWriteError("No cache store configured")
        try:
            resp = self.session.get(url, stream=True)
        except requests.Timeout as e:
            raise ProviderTimeoutError(f"Timeout downloading {url}") from e
        except requests.ConnectionError as e:
            raise ProviderTimeoutError(f"Connection failed for {url}: {e}") from e

        try:
            if resp.status_code in (401, 403):
                raise ProviderAuthError(f"HTTP {resp.status_code} downloading {url}")
            if resp.status_code != 200:
                raise ProviderTimeoutError(f"HTTP {resp.status_code} downloading {url}")

            # iter_content decodes Content-Encoding: gzip transparently
            chunks = resp.iter_content(chunk_size=_CHUNK_SIZE)
            first = next(chunks, b"")
            extension = (
                extension_from_content_type(resp.headers.get("Content-Type", ""))
                or extension_from_url(url)
                or sniff_extension(first)
                or "srt"
            )
            return self.cache_store.write_stream(
                itertools.chain([first], chunks),
                language=language,
                extension=extension,
                provider_name=self.name,
                cancel_event=cancel_event,
            )
        finally:
            resp.close()


class DisabledProvider(SubtitleProvider):
    """Placeholder for a source that is not implemented yet.

    Keeps the resolver's provider list homogeneous: it is always disabled, so
    the resolver skips it without special-casing.
    """

    uses_network = False

    def is_configured(self) -> bool:
        return False

    def _search(self, query: SubtitleQuery) -> list[SubtitleCandidate]:
        return []

    def _download(self, candidate, cancel_event) -> Optional[CachedSubtitleFile]:
        return None
