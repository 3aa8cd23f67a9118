"""Routes package: Blueprint registration for the API endpoints.

Each blueprint module defines a `bp` variable.
"""

from flask import current_app

from lampa_subtitles.error_handler import ConfigurationError


def get_controller():
    """The app's PlaybackSessionController, or a 503 if no player is attached."""
    from lampa_subtitles.app import EXTENSION_KEY

    controller = current_app.extensions.get(EXTENSION_KEY)
    if controller is None:
        raise ConfigurationError(
            "No player backend attached",
            http_status=503,
            troubleshooting="Start the API from the player host with create_app(player=...).",
        )
    return controller


def register_blueprints(app):
    """Import and register all API blueprints on the Flask app."""
    from lampa_subtitles.routes.playback import bp as playback_bp
    from lampa_subtitles.routes.system import bp as system_bp

    for blueprint in [playback_bp, system_bp]:
        app.register_blueprint(blueprint)
