"""Filesystem cache for downloaded subtitle files.

Files are named ``subtitle_{language}_{epochMillis}.{ext}`` and are created
with exclusive-create, so concurrent downloads never target the same path and
no cross-writer locking is needed. A file only becomes a CachedSubtitleFile
after it has been verified present and non-empty on disk; partial writes are
removed.

The cache root has to be readable by the native player process, which may run
under a different user than this one, so the directory and every file are
made world-readable.
"""

import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

_FILENAME_PREFIX = "subtitle_"
_LANG_SAFE_RE = re.compile(r"[^a-z0-9-]")
_MAX_NAME_ATTEMPTS = 1000


class CacheWriteError(Exception):
    """Disk full, permission denied, uncreatable directory or an empty write."""


class DownloadCancelled(Exception):
    """The playback session ended while a download was being written."""


@dataclass(frozen=True)
class CachedSubtitleFile:
    """A verified subtitle file inside the cache root."""

    absolute_path: str
    size_bytes: int
    language: str
    source_provider_name: str

    def to_dict(self) -> dict:
        return {
            "absolute_path": self.absolute_path,
            "size_bytes": self.size_bytes,
            "language": self.language,
            "source_provider_name": self.source_provider_name,
        }


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def _safe_language(language: str) -> str:
    lang = _LANG_SAFE_RE.sub("", (language or "").strip().lower())
    return lang or "und"


class SubtitleCacheStore:
    """Shared cache directory for all providers and playback sessions."""

    def __init__(self, root: str, clock_ms: Callable[[], int] = _epoch_millis):
        self.root = os.path.abspath(root)
        self._clock_ms = clock_ms
        self._last_millis = 0
        self._name_lock = threading.Lock()

    def ensure_root(self) -> str:
        """Create the cache root if needed and return it."""
        try:
            os.makedirs(self.root, exist_ok=True)
            os.chmod(self.root, 0o755)
        except OSError as e:
            raise CacheWriteError(f"Cannot create cache directory {self.root}: {e}") from e
        return self.root

    def _next_millis(self) -> int:
        # Two downloads within one clock tick must not share a name.
        with self._name_lock:
            millis = max(self._clock_ms(), self._last_millis + 1)
            self._last_millis = millis
            return millis

    def _open_new_file(self, language: str, extension: str):
        lang = _safe_language(language)
        ext = (extension or "srt").lstrip(".").lower()
        millis = self._next_millis()
        for _ in range(_MAX_NAME_ATTEMPTS):
            path = os.path.join(self.root, f"{_FILENAME_PREFIX}{lang}_{millis}.{ext}")
            try:
                return path, open(path, "xb")
            except FileExistsError:
                # Another process wrote this millisecond; take the next one.
                with self._name_lock:
                    millis = max(millis + 1, self._last_millis + 1)
                    self._last_millis = millis
        raise CacheWriteError(f"Could not allocate a unique filename in {self.root}")

    def write_stream(
        self,
        chunks: Iterable[bytes],
        language: str,
        extension: str,
        provider_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> CachedSubtitleFile:
        """Write chunks to a fresh cache file and verify it.

        Raises:
            CacheWriteError: the file could not be written or ended up empty.
            DownloadCancelled: cancel_event was set mid-write.
        """
        self.ensure_root()
        # The directory can vanish between ensure_root and open (cache eviction).
        try:
            path, fh = self._open_new_file(language, extension)
        except FileNotFoundError:
            self.ensure_root()
            path, fh = self._open_new_file(language, extension)
        except OSError as e:
            raise CacheWriteError(f"Cannot create subtitle file in {self.root}: {e}") from e

        try:
            with fh:
                for chunk in chunks:
                    if cancel_event is not None and cancel_event.is_set():
                        raise DownloadCancelled(f"Download into {path} cancelled")
                    if chunk:
                        fh.write(chunk)
            os.chmod(path, 0o644)
        except DownloadCancelled:
            self._discard(path)
            raise
        except OSError as e:
            self._discard(path)
            raise CacheWriteError(f"Failed writing {path}: {e}") from e
        except BaseException:
            self._discard(path)
            raise

        size = os.path.getsize(path) if os.path.isfile(path) else 0
        if size <= 0:
            self._discard(path)
            raise CacheWriteError(f"Downloaded subtitle is empty: {path}")

        logger.debug("Cached subtitle %s (%d bytes) from %s", path, size, provider_name)
        return CachedSubtitleFile(
            absolute_path=path,
            size_bytes=size,
            language=language,
            source_provider_name=provider_name,
        )

    def write_bytes(self, content: bytes, language: str, extension: str, provider_name: str) -> CachedSubtitleFile:
        return self.write_stream([content], language, extension, provider_name)

    def is_usable(self, path: str) -> bool:
        """True if path is a non-empty regular file inside the cache root."""
        try:
            real = os.path.realpath(path)
            inside = os.path.commonpath([real, os.path.realpath(self.root)]) == os.path.realpath(self.root)
            return inside and os.path.isfile(real) and os.path.getsize(real) > 0
        except (OSError, ValueError):
            return False

    def entries(self) -> list[str]:
        """Absolute paths of the cached subtitle files, oldest name first."""
        if not os.path.isdir(self.root):
            return []
        return sorted(
            os.path.join(self.root, name)
            for name in os.listdir(self.root)
            if name.startswith(_FILENAME_PREFIX) and os.path.isfile(os.path.join(self.root, name))
        )

    def clear(self) -> int:
        """Delete every cached subtitle file. Returns the number removed."""
        removed = 0
        for path in self.entries():
            try:
                os.remove(path)
                removed += 1
                logger.debug("Deleted cached subtitle: %s", os.path.basename(path))
            except OSError as e:
                logger.warning("Could not delete cached subtitle %s: %s", path, e)
        return removed

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove partial subtitle file %s: %s", path, e)
