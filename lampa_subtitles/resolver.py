"""Subtitle resolver: sequential provider fan-out, first success wins.

The resolver owns an ordered provider list and walks it one provider at a
time: search, post-filter by language where the provider cannot, download the
first candidate, stop at the first verified file. Parallel fan-out would burn
API quota on results that are thrown away once one provider succeeds, and
subtitle search is not latency critical because playback is already running.

Resolution is guarded by a debounce window. The "media ready" event that
triggers it fires more than once per playback start on some devices (gap
observed around 150 ms); two overlapping resolutions would race into the
attachment adapter.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Optional, Sequence

import requests

from lampa_subtitles.cache_store import CachedSubtitleFile, SubtitleCacheStore
from lampa_subtitles.circuit_breaker import CircuitBreaker
from lampa_subtitles.config import language_matches
from lampa_subtitles.providers.base import (
    FailureKind,
    SubtitleCandidate,
    SubtitleProvider,
    SubtitleQuery,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 2000
DIRECT_SOURCE_NAME = "direct"

# Failures that count against a provider's circuit breaker
_TRANSIENT_FAILURES = {FailureKind.TRANSIENT, FailureKind.PARSE}


class ResolveOutcome(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    DEBOUNCED = "debounced"
    FAILED = "failed"  # every provider that was tried errored
    CANCELLED = "cancelled"


@dataclass
class Resolution:
    outcome: ResolveOutcome
    file: Optional[CachedSubtitleFile] = None
    failures: list[tuple[str, FailureKind]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "file": self.file.to_dict() if self.file else None,
            "failures": [{"provider": name, "kind": kind.value} for name, kind in self.failures],
        }


class Debouncer:
    """Rejects calls closer than `window_ms` to the last accepted one.

    The timestamp moves only when a call is accepted.
    """

    def __init__(self, window_ms: int = DEFAULT_DEBOUNCE_MS, clock: Callable[[], float] = time.monotonic):
        self.window_ms = window_ms
        self._clock = clock
        self._last_accepted: Optional[float] = None
        self._lock = threading.Lock()

    def admit(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_accepted is not None and (now - self._last_accepted) * 1000 < self.window_ms:
                return False
            self._last_accepted = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_accepted = None


class SubtitleResolver:
    """Per-session orchestrator over an ordered list of providers."""

    def __init__(
        self,
        providers: Sequence[SubtitleProvider],
        cache_store: Optional[SubtitleCacheStore] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300,
        http_session: Optional[requests.Session] = None,
    ):
        self.providers = list(providers)
        self.cache_store = cache_store
        self.debouncer = Debouncer(debounce_ms, clock)
        self._http_session = http_session
        self._breakers = {
            p.name: CircuitBreaker(p.name, failure_threshold, cooldown_seconds, clock)
            for p in self.providers
        }

    # ─── Entry points ────────────────────────────────────────────────────

    def admit(self) -> bool:
        """Debounce check on its own, for callers that schedule the work later."""
        accepted = self.debouncer.admit()
        if not accepted:
            logger.debug("Subtitle resolution debounced (window %dms)", self.debouncer.window_ms)
        return accepted

    def resolve(self, query: SubtitleQuery, cancel_event: Optional[threading.Event] = None) -> Optional[CachedSubtitleFile]:
        """Debounced resolve. Returns the cached file, or None."""
        return self.resolve_detailed(query, cancel_event).file

    def resolve_detailed(
        self,
        query: SubtitleQuery,
        cancel_event: Optional[threading.Event] = None,
    ) -> Resolution:
        if not self.admit():
            return Resolution(ResolveOutcome.DEBOUNCED)
        return self.search_and_download(query, cancel_event)

    def search_and_download(
        self,
        query: SubtitleQuery,
        cancel_event: Optional[threading.Event] = None,
    ) -> Resolution:
        """Fan out across providers without the debounce check."""
        logger.info(
            "Searching subtitles for %s (external id: %s, language: %s)",
            query.video_filename, query.external_id, query.preferred_language,
        )
        failures: list[tuple[str, FailureKind]] = []
        answered = 0

        for provider in self.providers:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Subtitle resolution cancelled")
                return Resolution(ResolveOutcome.CANCELLED, failures=failures)

            if not provider.is_enabled():
                logger.debug("Provider %s is disabled, skipping", provider.name)
                continue

            breaker = self._breakers.get(provider.name)
            if breaker is not None and not breaker.allow_request():
                logger.debug("Provider %s skipped, circuit breaker open", provider.name)
                continue

            logger.info("Trying provider %s", provider.name)
            candidates = provider.search(query)
            search_failure = provider.last_failure
            if search_failure in _TRANSIENT_FAILURES or search_failure == FailureKind.AUTH:
                failures.append((provider.name, search_failure))
                self._record(breaker, search_failure)
                continue
            answered += 1

            if not provider.filters_language_upstream:
                candidates = self.filter_language(candidates, query.preferred_language)
            if not candidates:
                logger.debug("No usable candidates from %s", provider.name)
                self._record(breaker, None)
                continue

            cached = provider.download(candidates[0], cancel_event)
            if cached is not None:
                self._record(breaker, None)
                logger.info("Subtitle found via %s: %s", provider.name, cached.absolute_path)
                return Resolution(ResolveOutcome.FOUND, cached, failures)

            download_failure = provider.last_failure
            if download_failure is not None:
                failures.append((provider.name, download_failure))
            if download_failure == FailureKind.CANCELLED:
                return Resolution(ResolveOutcome.CANCELLED, failures=failures)
            self._record(breaker, download_failure)
            logger.warning("Download from %s failed, trying next provider", provider.name)

        if failures and answered == 0:
            logger.warning("No subtitles: every provider failed (%s)", failures)
            return Resolution(ResolveOutcome.FAILED, failures=failures)
        logger.info("No subtitles found for %s from any provider", query.video_filename)
        return Resolution(ResolveOutcome.NOT_FOUND, failures=failures)

    def fetch_direct(
        self,
        url: str,
        language: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[CachedSubtitleFile]:
        """Download a subtitle from an explicit URL supplied with the media."""
        if self.cache_store is None or self._http_session is None:
            logger.error("Direct subtitle fetch needs a cache store and an HTTP session")
            return None
        fetcher = _DirectUrlFetcher(cache_store=self.cache_store, session=self._http_session)
        candidate = SubtitleCandidate(
            provider_name=DIRECT_SOURCE_NAME,
            remote_id=url,
            download_url=url,
            language=language,
        )
        return fetcher.download(candidate, cancel_event)

    # ─── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def filter_language(candidates: list[SubtitleCandidate], language: str) -> list[SubtitleCandidate]:
        return [c for c in candidates if language_matches(c.language, language)]

    @staticmethod
    def _record(breaker: Optional[CircuitBreaker], failure: Optional[FailureKind]) -> None:
        """One breaker verdict per provider per round: search and download together."""
        if breaker is None or failure == FailureKind.AUTH:
            return
        if failure in _TRANSIENT_FAILURES:
            breaker.record_failure()
        else:
            breaker.record_success()

    def get_provider_status(self) -> list[dict]:
        status = []
        for provider in self.providers:
            healthy, message = provider.health_check()
            breaker = self._breakers.get(provider.name)
            status.append({
                "name": provider.name,
                "enabled": provider.is_enabled(),
                "healthy": healthy,
                "message": message,
                "last_failure": provider.last_failure.value if provider.last_failure else None,
                "circuit_breaker": breaker.get_status() if breaker else None,
            })
        return status

    def shutdown(self) -> None:
        for provider in self.providers:
            try:
                provider.terminate()
            except Exception as e:
                logger.debug("Error terminating provider %s: %s", provider.name, e)


class _DirectUrlFetcher(SubtitleProvider):
    """Provider-shaped wrapper so direct downloads share the verified write path."""

    name = DIRECT_SOURCE_NAME

    def is_configured(self) -> bool:
        return self.session is not None and self.cache_store is not None

    def _search(self, query):
        return []

    def _download(self, candidate, cancel_event):
        return self._fetch_to_cache(candidate.download_url, candidate.language, cancel_event)
