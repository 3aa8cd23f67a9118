"""Centralized error handling with structured JSON error responses.

Application-level exception hierarchy with error codes, HTTP status mapping
and troubleshooting hints. Provider failures live in providers.base and never
reach this layer; what does reach it is rendered as structured JSON by the
Flask handlers registered here.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from flask import g, jsonify

logger = logging.getLogger(__name__)


# ─── Exception Hierarchy ─────────────────────────────────────────────────────


class PipelineError(Exception):
    """Base exception for all subtitle pipeline errors.

    Attributes:
        code: Machine-readable error code (e.g. "ATTACH_001")
        http_status: HTTP status code to return
        context: Additional context data for debugging
        troubleshooting: Human-readable hint for resolving the issue
    """

    code: str = "PIPELINE_000"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        context: Optional[dict] = None,
        troubleshooting: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.context = context or {}
        self.troubleshooting = troubleshooting


class AttachmentExhaustedError(PipelineError):
    """All attachment strategies failed; the subtitle is not visible."""

    code = "ATTACH_001"
    http_status = 502

    def __init__(self, subtitle_path: str = "", **kwargs: object) -> None:
        super().__init__(
            f"Subtitle could not be loaded: {subtitle_path}" if subtitle_path else "Subtitle could not be loaded",
            troubleshooting="The player rejected the subtitle track. Try another subtitle or restart playback.",
            **kwargs,  # type: ignore[arg-type]
        )


class NoActiveSessionError(PipelineError):
    """No media is open on the playback session."""

    code = "SESSION_001"
    http_status = 409

    def __init__(self, message: str = "No media is currently open", **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ConfigurationError(PipelineError):
    """Configuration validation errors."""

    code = "CFG_001"
    http_status = 400


# ─── Structured Error Response Builder ───────────────────────────────────────


def _build_error_response(error: PipelineError) -> dict:
    """Build a structured JSON error response from a PipelineError."""
    response: dict = {
        "error": str(error),
        "code": error.code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    request_id = getattr(g, "request_id", None)
    if request_id:
        response["request_id"] = request_id

    if error.context:
        response["context"] = error.context

    if error.troubleshooting:
        response["troubleshooting"] = error.troubleshooting

    return response


# ─── Flask Error Handler Registration ────────────────────────────────────────


def register_error_handlers(app: object) -> None:
    """Register global error handlers on a Flask app.

    Installs:
    - PipelineError handler (structured JSON)
    - Generic Exception handler (500 with logging)
    - before_request hook for request IDs
    """
    from flask import Flask
    flask_app: Flask = app  # type: ignore[assignment]

    @flask_app.before_request
    def _set_request_id() -> None:
        g.request_id = str(uuid.uuid4())[:8]

    @flask_app.errorhandler(PipelineError)
    def _handle_pipeline_error(error: PipelineError):  # type: ignore[return]
        logger.warning(
            "[%s] %s: %s (request_id=%s)",
            error.code,
            error.__class__.__name__,
            error,
            getattr(g, "request_id", "?"),
        )
        return jsonify(_build_error_response(error)), error.http_status

    @flask_app.errorhandler(Exception)
    def _handle_generic_error(error: Exception):  # type: ignore[return]
        """Catch-all: log full traceback, return generic 500."""
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

        request_id = getattr(g, "request_id", "?")
        logger.exception("Unhandled exception (request_id=%s): %s", request_id, error)
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), 500
