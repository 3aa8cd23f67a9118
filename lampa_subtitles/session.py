"""Playback session controller: glue between the player, resolver and adapter.

The player layer reports two events: "media ready" (possibly several times
per start) and "now playing". Media ready triggers a debounced resolve on a
single background worker; the resolved file goes straight into the
attachment adapter. Only two outcomes reach the user through the notifier:
the subtitle was attached, or it could not be loaded.
"""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from lampa_subtitles.attachment import AttachmentAdapter, AttachmentResult, AttachmentState
from lampa_subtitles.error_handler import AttachmentExhaustedError, NoActiveSessionError
from lampa_subtitles.providers.base import SubtitleQuery
from lampa_subtitles.resolver import Resolution, ResolveOutcome, SubtitleResolver

logger = logging.getLogger(__name__)

NOTIFY_SUCCESS = "success"
NOTIFY_ERROR = "error"

Notifier = Callable[[str, str], None]


def _log_notifier(level: str, message: str) -> None:
    if level == NOTIFY_ERROR:
        logger.error("User notification: %s", message)
    else:
        logger.info("User notification: %s", message)


class PlaybackSessionController:
    """One playback session at a time, on top of a resolver and an adapter."""

    def __init__(
        self,
        resolver: SubtitleResolver,
        adapter: AttachmentAdapter,
        preferred_language: str = "en",
        notifier: Optional[Notifier] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.resolver = resolver
        self.adapter = adapter
        self.preferred_language = preferred_language
        self.notifier = notifier or _log_notifier
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="subtitles")
        self._lock = threading.Lock()
        self._cancel = threading.Event()

        self.media_source: Optional[str] = None
        self.subtitle_url: Optional[str] = None
        self.external_id: Optional[str] = None
        self.media_type = "movie"
        self.last_resolution: Optional[Resolution] = None
        self.last_attachment_result: Optional[AttachmentResult] = None

    @property
    def is_open(self) -> bool:
        return self.media_source is not None

    # ─── Player events ───────────────────────────────────────────────────

    def open(
        self,
        media_source: str,
        subtitle_url: Optional[str] = None,
        external_id: Optional[str] = None,
        media_type: str = "movie",
    ) -> None:
        """Start a session for a new media source. Cancels any previous one."""
        with self._lock:
            if self.media_source is not None:
                self._cancel.set()
            self._cancel = threading.Event()
            self.adapter.reset()
            self.resolver.debouncer.reset()

            self.media_source = media_source
            self.subtitle_url = subtitle_url or None
            self.external_id = external_id or None
            self.media_type = media_type or "movie"
            self.last_resolution = None
            self.last_attachment_result = None
        logger.info("Playback session opened: %s", media_source)

    def on_media_ready(self) -> Optional[Future]:
        """Media parsed. Schedules resolve and attach unless debounced.

        Returns the scheduled future, or None when there is nothing to do.
        """
        with self._lock:
            media_source = self.media_source
            subtitle_url = self.subtitle_url
            query = self._query_locked()
            cancel = self._cancel
        if media_source is None:
            logger.debug("Media ready without an open session, ignoring")
            return None
        # Debounce here, on the event thread: a queued duplicate could start
        # after the window has passed.
        if not self.resolver.admit():
            return None
        return self._executor.submit(self._resolve_and_attach, media_source, query, subtitle_url, cancel)

    def on_media_playing(self) -> None:
        self.adapter.notify_playing()

    def close(self) -> None:
        """End the session and cancel in-flight work cooperatively."""
        with self._lock:
            if self.media_source is None:
                return
            self._cancel.set()
            self.adapter.reset()
            logger.info("Playback session closed: %s", self.media_source)
            self.media_source = None
            self.subtitle_url = None
            self.external_id = None

    def shutdown(self) -> None:
        self.close()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.resolver.shutdown()

    # ─── Explicit requests ───────────────────────────────────────────────

    def attach_from_url(self, url: str, language: Optional[str] = None) -> AttachmentResult:
        """Download a subtitle from a URL and attach it, synchronously.

        Raises:
            NoActiveSessionError: no media is playing.
            AttachmentExhaustedError: every strategy failed.
        """
        with self._lock:
            media_source = self.media_source
            cancel = self._cancel
        if media_source is None:
            raise NoActiveSessionError()

        cached = self.resolver.fetch_direct(url, language or self.preferred_language, cancel)
        if cached is None:
            result = AttachmentResult(
                subtitle_path="", state=AttachmentState.FAILED, reason=f"Could not download {url}",
            )
            self._finish(result, media_source, cancel)
            raise AttachmentExhaustedError("", context={"url": url, "reason": result.reason})

        result = self.adapter.attach(cached.absolute_path, media_source, cancel)
        self._finish(result, media_source, cancel)
        if not result.succeeded:
            raise AttachmentExhaustedError(cached.absolute_path, context=result.to_dict())
        return result

    # ─── Worker ──────────────────────────────────────────────────────────

    def build_query(self) -> SubtitleQuery:
        with self._lock:
            return self._query_locked()

    def _query_locked(self) -> SubtitleQuery:
        return SubtitleQuery.from_media_source(
            self.media_source or "",
            self.preferred_language,
            external_id=self.external_id,
            media_type=self.media_type,
        )

    def _resolve_and_attach(
        self,
        media_source: str,
        query: SubtitleQuery,
        subtitle_url: Optional[str],
        cancel: threading.Event,
    ) -> Optional[AttachmentResult]:
        if subtitle_url:
            logger.info("Using subtitle URL supplied with the media: %s", subtitle_url)
            cached = self.resolver.fetch_direct(subtitle_url, query.preferred_language, cancel)
            resolution = Resolution(ResolveOutcome.FOUND if cached else ResolveOutcome.NOT_FOUND, cached)
        else:
            resolution = self.resolver.search_and_download(query, cancel)
        self.last_resolution = resolution

        if cancel.is_set():
            logger.info("Session ended during subtitle resolution, dropping result")
            return None
        if resolution.file is None:
            logger.info("No subtitle for %s (%s)", media_source, resolution.outcome.value)
            return None

        result = self.adapter.attach(resolution.file.absolute_path, media_source, cancel)
        self._finish(result, media_source, cancel)
        return result

    def _finish(self, result: AttachmentResult, media_source: str, cancel: threading.Event) -> None:
        if cancel.is_set():
            logger.info("Session ended during attachment, no notification")
            return
        self.last_attachment_result = result
        if result.succeeded:
            name = os.path.basename(result.subtitle_path)
            self.notifier(NOTIFY_SUCCESS, f"Subtitle loaded: {name}")
        else:
            self.notifier(NOTIFY_ERROR, "Subtitle could not be loaded")
            logger.error("Attachment exhausted for %s: %s", media_source, result.reason)

    # ─── Introspection ───────────────────────────────────────────────────

    def status(self) -> dict:
        return {
            "media_source": self.media_source,
            "external_id": self.external_id,
            "subtitle_url": self.subtitle_url,
            "attachment_state": self.adapter.state.value,
            "pending_seek_ms": self.adapter.pending_seek_ms,
            "last_resolution": self.last_resolution.to_dict() if self.last_resolution else None,
            "last_attachment_result": (
                self.last_attachment_result.to_dict() if self.last_attachment_result else None
            ),
        }
