"""System routes: /health, /config, /providers, /cache, /cache/clear."""

import logging

from flask import Blueprint, jsonify

from lampa_subtitles import __version__
from lampa_subtitles.routes import get_controller

bp = Blueprint("system", __name__, url_prefix="/api/v1")
logger = logging.getLogger(__name__)


@bp.route("/health", methods=["GET"])
def health():
    from flask import current_app
    from lampa_subtitles.app import EXTENSION_KEY
    from lampa_subtitles.config import get_settings

    player_attached = current_app.extensions.get(EXTENSION_KEY) is not None
    sources_configured = get_settings().has_credentials()
    healthy = player_attached and sources_configured
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "version": __version__,
        "services": {
            "player": player_attached,
            "subtitle_sources": sources_configured,
        },
    }), 200 if healthy else 503


@bp.route("/config", methods=["GET"])
def get_config():
    """Current settings with secrets masked."""
    from lampa_subtitles.config import get_settings
    return jsonify(get_settings().get_safe_config())


@bp.route("/providers", methods=["GET"])
def list_providers():
    """Status of every provider in resolver order, with circuit breaker state."""
    controller = get_controller()
    return jsonify({"providers": controller.resolver.get_provider_status()})


@bp.route("/cache", methods=["GET"])
def cache_info():
    store = get_controller().resolver.cache_store
    entries = store.entries() if store else []
    return jsonify({"root": store.root if store else None, "files": len(entries)})


@bp.route("/cache/clear", methods=["POST"])
def clear_cache():
    """Delete every cached subtitle file."""
    store = get_controller().resolver.cache_store
    removed = store.clear() if store else 0
    logger.info("Subtitle cache cleared: %d file(s) removed", removed)
    return jsonify({"status": "cleared", "removed": removed})
