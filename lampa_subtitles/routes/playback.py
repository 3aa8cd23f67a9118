"""Playback routes: /playback/open, /ready, /search, /playing, /close, /status, /attachment, /subtitles/attach."""

import logging

from flask import Blueprint, jsonify, request

from lampa_subtitles.error_handler import ConfigurationError
from lampa_subtitles.routes import get_controller

bp = Blueprint("playback", __name__, url_prefix="/api/v1/playback")
logger = logging.getLogger(__name__)


@bp.route("/open", methods=["POST"])
def open_session():
    """Start a playback session for a media source.
    ---
    post:
      tags:
        - Playback
      summary: Open a session
      requestBody:
        content:
          application/json:
            schema:
              type: object
              required: [media_source]
              properties:
                media_source:
                  type: string
                subtitle_url:
                  type: string
                  description: Subtitle supplied with the media; skips provider search
                external_id:
                  type: string
                  description: IMDB id, e.g. tt1234567
                media_type:
                  type: string
                  enum: [movie, series]
      responses:
        200:
          description: Session status
        400:
          description: media_source missing
    """
    data = request.get_json(silent=True) or {}
    media_source = (data.get("media_source") or "").strip()
    if not media_source:
        raise ConfigurationError("media_source is required")

    controller = get_controller()
    controller.open(
        media_source,
        subtitle_url=data.get("subtitle_url"),
        external_id=data.get("external_id"),
        media_type=data.get("media_type") or "movie",
    )
    return jsonify(controller.status())


@bp.route("/ready", methods=["POST"])
@bp.route("/search", methods=["POST"])
def media_ready():
    """Media parsed by the player, or a manual search. Debounced like the player event."""
    future = get_controller().on_media_ready()
    return jsonify({"scheduled": future is not None}), 202 if future is not None else 200


@bp.route("/playing", methods=["POST"])
def media_playing():
    """Player reports it is now playing (restores a pending seek)."""
    get_controller().on_media_playing()
    return jsonify({"status": "ok"})


@bp.route("/close", methods=["POST"])
def close_session():
    get_controller().close()
    return jsonify({"status": "closed"})


@bp.route("/status", methods=["GET"])
def session_status():
    return jsonify(get_controller().status())


@bp.route("/attachment", methods=["GET"])
def last_attachment():
    """Attempt sequence of the most recent attachment, for the track menu."""
    result = get_controller().last_attachment_result
    return jsonify({"attachment": result.to_dict() if result else None})


@bp.route("/subtitles/attach", methods=["POST"])
def attach_subtitle():
    """Download a subtitle from a URL and attach it to the playing media.
    ---
    post:
      tags:
        - Playback
      summary: Attach a subtitle by URL
      requestBody:
        content:
          application/json:
            schema:
              type: object
              required: [url]
              properties:
                url:
                  type: string
                language:
                  type: string
      responses:
        200:
          description: Attachment result
        409:
          description: No media is open
        502:
          description: Subtitle could not be loaded
    """
    data = request.get_json(silent=True) or {}
    url = (data.get("url") or "").strip()
    if not url:
        raise ConfigurationError("url is required")

    result = get_controller().attach_from_url(url, language=data.get("language"))
    return jsonify(result.to_dict())
