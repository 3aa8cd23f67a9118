"""Attachment adapter: make a cached subtitle visible in the playing session.

The native "attach live subtitle" call is unreliable: on some decoder and OS
combinations it returns True without registering a track. The adapter checks
the track count instead of trusting the return value and falls back through
three strategies, cheapest first:

    1. DirectUriAttach   attach the file:// URI, wait, compare track count
    2. RawPathAttach     same with the bare filesystem path
    3. SessionRestartWithEmbeddedOption
                         save position, stop, restart the session with the
                         subtitle as a startup option, seek back on "playing"

Strategy 3 interrupts playback for a moment but has not been seen to fail,
because startup options are parsed before the first frame is decoded.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Optional

from lampa_subtitles.player import SUBTITLE_TRACK_TYPE, PlayerBackend

logger = logging.getLogger(__name__)

DEFAULT_REGISTRATION_DELAY_MS = 1500
DEFAULT_RESTART_PLAYING_TIMEOUT_MS = 10000
SUB_FILE_OPTION = ":sub-file={path}"


class AttachmentStrategy(StrEnum):
    DIRECT_URI = "DirectUriAttach"
    RAW_PATH = "RawPathAttach"
    SESSION_RESTART = "SessionRestartWithEmbeddedOption"


class AttachmentState(StrEnum):
    NOT_STARTED = "NotStarted"
    TRYING_DIRECT_URI = "TryingDirectUri"
    TRYING_RAW_PATH = "TryingRawPath"
    RESTARTING_SESSION = "RestartingSession"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


_STATE_FOR_STRATEGY = {
    AttachmentStrategy.DIRECT_URI: AttachmentState.TRYING_DIRECT_URI,
    AttachmentStrategy.RAW_PATH: AttachmentState.TRYING_RAW_PATH,
    AttachmentStrategy.SESSION_RESTART: AttachmentState.RESTARTING_SESSION,
}


@dataclass
class AttachmentAttempt:
    strategy: AttachmentStrategy
    succeeded: bool
    resulting_track_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "succeeded": self.succeeded,
            "resulting_track_id": self.resulting_track_id,
            "error": self.error,
        }


@dataclass
class AttachmentResult:
    """Outcome of one attachment request: the ordered attempts and final state."""

    subtitle_path: str
    state: AttachmentState
    attempts: list[AttachmentAttempt] = field(default_factory=list)
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state == AttachmentState.SUCCEEDED

    @property
    def winning_strategy(self) -> Optional[AttachmentStrategy]:
        for attempt in self.attempts:
            if attempt.succeeded:
                return attempt.strategy
        return None

    def to_dict(self) -> dict:
        winner = self.winning_strategy
        return {
            "subtitle_path": self.subtitle_path,
            "state": self.state.value,
            "succeeded": self.succeeded,
            "strategy": winner.value if winner else None,
            "attempts": [a.to_dict() for a in self.attempts],
            "reason": self.reason,
        }


class AttachmentAdapter:
    """Runs the three-strategy fallback against a PlayerBackend.

    Args:
        player: The live playback session.
        registration_delay_ms: How long to wait for the native layer to
            register a new track before counting. Tests pass 0.
        restart_playing_timeout_ms: How long strategy 3 waits for the
            "now playing" signal before returning.
        cancel_event: Default cancel event for attach() calls that do not
            pass their own. Once set, the adapter stops before the next
            strategy and wakes from its timed waits.
    """

    def __init__(
        self,
        player: PlayerBackend,
        registration_delay_ms: int = DEFAULT_REGISTRATION_DELAY_MS,
        restart_playing_timeout_ms: int = DEFAULT_RESTART_PLAYING_TIMEOUT_MS,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.player = player
        self.registration_delay_ms = registration_delay_ms
        self.restart_playing_timeout_ms = restart_playing_timeout_ms
        self.cancel_event = cancel_event or threading.Event()
        self.state = AttachmentState.NOT_STARTED

        # One attachment at a time; the native primitive is not known to be
        # safe for concurrent calls on one session.
        self._attach_lock = threading.Lock()
        # Guards the pending seek and the playing flag; notified on both
        # the playing signal and reset().
        self._signal = threading.Condition()
        self._pending_seek_ms: Optional[int] = None
        self._playing_seen = False

    @property
    def pending_seek_ms(self) -> Optional[int]:
        return self._pending_seek_ms

    def attach(
        self,
        subtitle_path: str,
        media_source: Optional[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> AttachmentResult:
        """Attach a subtitle file. Never raises; always returns a final state.

        The cancel event is bound once, on entry: a session opened later
        hands the adapter a new event, which must not revive this request.
        """
        cancel = cancel_event or self.cancel_event
        with self._attach_lock:
            self.state = AttachmentState.NOT_STARTED
            result = AttachmentResult(subtitle_path=subtitle_path, state=self.state)

            if not subtitle_path or not os.path.isfile(subtitle_path):
                return self._fail(result, f"Subtitle file does not exist: {subtitle_path}")
            if not media_source:
                return self._fail(result, "No media source for the current session")

            logger.info(
                "Attaching subtitle %s (%d bytes)",
                subtitle_path, os.path.getsize(subtitle_path),
            )
            strategies = (
                (AttachmentStrategy.DIRECT_URI, lambda: self._attach_live(Path(subtitle_path).as_uri(), cancel)),
                (AttachmentStrategy.RAW_PATH, lambda: self._attach_live(subtitle_path, cancel)),
                (AttachmentStrategy.SESSION_RESTART, lambda: self._restart_with_subtitle(subtitle_path, media_source, cancel)),
            )
            for strategy, run in strategies:
                if cancel.is_set():
                    return self._fail(result, "Playback session ended")
                self.state = _STATE_FOR_STRATEGY[strategy]
                attempt = self._run_strategy(strategy, run)
                result.attempts.append(attempt)
                if attempt.succeeded:
                    self.state = result.state = AttachmentState.SUCCEEDED
                    logger.info("Subtitle attached via %s", strategy.value)
                    return result
                logger.warning("Strategy %s did not register a track", strategy.value)

            if cancel.is_set():
                return self._fail(result, "Playback session ended")
            return self._fail(result, "All attachment strategies failed")

    def notify_playing(self) -> None:
        """Playing signal from the player. Applies a pending post-restart seek."""
        with self._signal:
            position = self._pending_seek_ms
            self._pending_seek_ms = None
            self._playing_seen = True
            self._signal.notify_all()
        if position is not None:
            logger.info("Restoring playback position to %dms", position)
            try:
                self.player.seek_to(position)
            except Exception as e:
                logger.error("Seek after restart failed: %s", e)

    def reset(self) -> None:
        """Forget a pending seek from the previous media.

        Called when the playback session ends or changes. Wakes a restart
        that is still waiting for its playing signal.
        """
        with self._signal:
            if self._pending_seek_ms is not None:
                logger.info("Dropping pending seek to %dms", self._pending_seek_ms)
            self._pending_seek_ms = None
            self._playing_seen = False
            self._signal.notify_all()

    # ─── Strategies ──────────────────────────────────────────────────────

    def _run_strategy(self, strategy: AttachmentStrategy, run) -> AttachmentAttempt:
        try:
            succeeded, track_id = run()
        except Exception as e:
            logger.error("Strategy %s raised: %s", strategy.value, e, exc_info=True)
            return AttachmentAttempt(strategy, succeeded=False, error=str(e))
        return AttachmentAttempt(strategy, succeeded=succeeded, resulting_track_id=track_id)

    def _attach_live(self, path_or_uri: str, cancel: threading.Event) -> tuple[bool, Optional[int]]:
        """Attach and verify by track count. Returns (registered, new track id)."""
        # Baseline first: read afterwards it may already include the new track.
        before = self.player.current_subtitle_track_count()
        reported = self.player.attach_live_subtitle(SUBTITLE_TRACK_TYPE, path_or_uri, True)
        logger.debug("attach_live_subtitle(%s) returned %s", path_or_uri, reported)

        if self._wait(self.registration_delay_ms, cancel):
            return False, None  # cancelled
        after = self.player.current_subtitle_track_count()
        logger.debug("Subtitle tracks before=%d after=%d", before, after)
        if after <= before:
            return False, None

        # auto_select is not reliable on its own
        track_id = after - 1
        self.player.select_subtitle_track(track_id)
        return True, track_id

    def _restart_with_subtitle(
        self,
        subtitle_path: str,
        media_source: str,
        cancel: threading.Event,
    ) -> tuple[bool, Optional[int]]:
        position = self.player.current_playback_position_millis()
        with self._signal:
            # reset() runs after the cancel event is set, so either it sees
            # this seek or this check sees the cancellation.
            if cancel.is_set():
                return False, None
            self._pending_seek_ms = position
            self._playing_seen = False
        logger.info("Restarting playback with embedded subtitle, resume at %dms", position)

        try:
            self.player.stop()
            self.player.restart_session_with_options(media_source, [SUB_FILE_OPTION.format(path=subtitle_path)])
        except Exception:
            self._drop_seek(position)
            raise

        with self._signal:
            played = self._signal.wait_for(
                lambda: self._playing_seen or cancel.is_set(),
                timeout=self.restart_playing_timeout_ms / 1000,
            )
        if cancel.is_set():
            self._drop_seek(position)
            logger.info("Playback session ended while restarting with subtitle")
            return False, None
        if not played:
            # The seek stays armed for the next playing signal.
            logger.warning(
                "No playing signal within %dms of restart; seek to %dms still pending",
                self.restart_playing_timeout_ms, position,
            )
        # The embedded track id is only known once the new session parses it
        return True, None

    def _drop_seek(self, position: int) -> None:
        with self._signal:
            if self._pending_seek_ms == position:
                self._pending_seek_ms = None

    @staticmethod
    def _wait(delay_ms: int, cancel: threading.Event) -> bool:
        """Timed wait that wakes early on cancellation. True if cancelled."""
        if delay_ms <= 0:
            return cancel.is_set()
        return cancel.wait(delay_ms / 1000)

    def _fail(self, result: AttachmentResult, reason: str) -> AttachmentResult:
        logger.error("Subtitle attachment failed: %s", reason)
        self.state = result.state = AttachmentState.FAILED
        result.reason = reason
        return result
