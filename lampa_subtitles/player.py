"""Boundary to the native media player.

The pipeline needs only these primitives from the player layer. Rendering,
track menus and the rest of the player UI live on the other side.
"""

from abc import ABC, abstractmethod
from typing import Sequence

# Track type passed to attach_live_subtitle for subtitle tracks
SUBTITLE_TRACK_TYPE = 0


class PlayerBackend(ABC):
    """Primitives of a live playback session."""

    @abstractmethod
    def attach_live_subtitle(self, track_type: int, path_or_uri: str, auto_select: bool) -> bool:
        """Add a subtitle track to the playing media.

        The return value is advisory: some decoders report success without
        registering a track.
        """
        ...

    @abstractmethod
    def current_subtitle_track_count(self) -> int:
        ...

    @abstractmethod
    def select_subtitle_track(self, track_id: int) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def restart_session_with_options(self, media_source: str, options: Sequence[str]) -> None:
        """Recreate the session for media_source with startup options and play."""
        ...

    @abstractmethod
    def current_playback_position_millis(self) -> int:
        ...

    @abstractmethod
    def seek_to(self, position_millis: int) -> None:
        ...
