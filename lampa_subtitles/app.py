"""Application factory for the subtitle pipeline's Flask API.

The player host reports playback events over HTTP (open, media ready, now
playing, close); create_app() wires them to a PlaybackSessionController
built from the current settings and the host's PlayerBackend.
"""

import os
import logging
from typing import Optional

from flask import Flask

from lampa_subtitles.player import PlayerBackend

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Key under app.extensions holding the pipeline objects
EXTENSION_KEY = "lampa_subtitles"


class StructuredJSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging (ELK, Loki, etc.)."""

    def format(self, record: logging.LogRecord) -> str:
        import json as _json
        from flask import g as _g

        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        request_id = getattr(_g, "request_id", None) if _has_app_context() else None
        if request_id:
            entry["request_id"] = request_id

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return _json.dumps(entry, default=str)


def _has_app_context() -> bool:
    from flask import has_app_context
    return has_app_context()


def _setup_logging(settings) -> None:
    """Configure the root logger: level, text or JSON format, optional log file."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)

    use_json = settings.log_format.lower() == "json"
    if use_json:
        formatter: logging.Formatter = StructuredJSONFormatter()
        for handler in root.handlers:
            handler.setFormatter(formatter)
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    log_file = settings.log_file
    if not log_file:
        return
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        from logging.handlers import RotatingFileHandler
        fh = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)
    except OSError as e:
        logging.getLogger(__name__).warning("Could not set up log file %s: %s", log_file, e)


def create_controller(settings, player: PlayerBackend, notifier=None):
    """Build cache store, providers, resolver and adapter into a controller."""
    from lampa_subtitles.attachment import AttachmentAdapter
    from lampa_subtitles.cache_store import SubtitleCacheStore
    from lampa_subtitles.providers import new_http_session, build_providers
    from lampa_subtitles.resolver import SubtitleResolver
    from lampa_subtitles.session import PlaybackSessionController

    cache_store = SubtitleCacheStore(settings.cache_dir)
    resolver = SubtitleResolver(
        build_providers(settings, cache_store),
        cache_store=cache_store,
        debounce_ms=settings.debounce_ms,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        cooldown_seconds=settings.circuit_breaker_cooldown_seconds,
        http_session=new_http_session(settings),
    )
    adapter = AttachmentAdapter(
        player,
        registration_delay_ms=settings.registration_delay_ms,
        restart_playing_timeout_ms=settings.restart_playing_timeout_ms,
    )
    return PlaybackSessionController(
        resolver,
        adapter,
        preferred_language=settings.preferred_subtitle_language,
        notifier=notifier,
    )


def create_app(player: Optional[PlayerBackend] = None, controller=None, testing=False):
    """Create and configure the Flask application.

    Args:
        player: The host's player backend. Ignored when a controller is given.
        controller: A ready PlaybackSessionController (tests inject one).
        testing: If True, leave logging configuration to the test runner.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    from lampa_subtitles.config import get_settings
    settings = get_settings()

    if not testing:
        _setup_logging(settings)

    logger = logging.getLogger(__name__)

    from lampa_subtitles.error_handler import register_error_handlers
    register_error_handlers(app)

    if controller is None and player is not None:
        controller = create_controller(settings, player)
    if controller is None:
        logger.warning("No player backend attached; playback endpoints will answer 503")

    app.extensions[EXTENSION_KEY] = controller

    from lampa_subtitles.routes import register_blueprints
    register_blueprints(app)

    if not settings.has_credentials():
        logger.warning("No subtitle source configured (addon URL or OpenSubtitles credentials)")

    return app
