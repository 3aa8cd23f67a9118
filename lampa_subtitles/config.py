"""Centralized configuration using Pydantic Settings.

All settings can be overridden via environment variables with the LAMPA_SUBS_
prefix, or via a .env file. Example: LAMPA_SUBS_DEBOUNCE_MS=3000
"""

import os
import tempfile
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

# Separator used by the player settings screen when storing several addon URLs
ADDON_URL_SEPARATOR = "|"


class Settings(BaseSettings):
    """Subtitle pipeline settings."""

    # General
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    log_file: str = ""  # Empty = console only
    port: int = 5770
    user_agent: str = "LAMPA v1.0"

    # Cache root. Must be readable by the native player process, so the
    # default lives under the shared temp dir rather than a private app dir.
    cache_dir: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "lampa", "subtitle_cache")
    )

    # Language preferences (ISO 639-1)
    preferred_subtitle_language: str = "en"

    # Stremio-style addons, tried first and in configured order
    stremio_addon_urls: str = ""

    # OpenSubtitles.com (API v1). API key is preferred over username/password.
    opensubtitles_api_key: str = ""
    opensubtitles_username: str = ""
    opensubtitles_password: str = ""
    opensubtitles_api_base: str = "https://api.opensubtitles.com/api/v1"

    # HTTP
    http_timeout: int = 30
    http_max_retries: int = 2
    http_backoff_factor: float = 1.0

    # Resolver
    provider_max_results: int = 20
    debounce_ms: int = 2000
    circuit_breaker_failure_threshold: int = 3
    circuit_breaker_cooldown_seconds: int = 300

    # Attachment
    registration_delay_ms: int = 1500
    restart_playing_timeout_ms: int = 10000

    model_config = {
        "env_prefix": "LAMPA_SUBS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def get_addon_urls(self) -> list[str]:
        """Configured addon URLs in order, blanks and duplicates removed.

        Accepts both the player's "|" separator and commas.
        """
        raw = self.stremio_addon_urls.replace(",", ADDON_URL_SEPARATOR)
        urls: list[str] = []
        for part in raw.split(ADDON_URL_SEPARATOR):
            url = part.strip()
            if url and url not in urls:
                urls.append(url)
        return urls

    def has_opensubtitles_credentials(self) -> bool:
        return bool(self.opensubtitles_api_key) or bool(
            self.opensubtitles_username and self.opensubtitles_password
        )

    def has_credentials(self) -> bool:
        """True if any subtitle source is configured (API key, login or addon)."""
        return self.has_opensubtitles_credentials() or bool(self.get_addon_urls())

    def get_safe_config(self) -> dict:
        """Get config dict without sensitive values (API keys, passwords)."""
        data = self.model_dump()
        for key in list(data.keys()):
            parts = key.split("_")
            if "key" in parts or "password" in parts:
                data[key] = "***configured***" if data[key] else ""
        return data


# Language tag mapping (ISO 639-1 -> all variants)
_LANGUAGE_TAGS = {
    "de": {"de", "deu", "ger", "german"},
    "en": {"en", "eng", "english"},
    "fr": {"fr", "fra", "fre", "french"},
    "es": {"es", "spa", "spanish"},
    "it": {"it", "ita", "italian"},
    "pt": {"pt", "por", "portuguese"},
    "ru": {"ru", "rus", "russian"},
    "uk": {"uk", "ukr", "ukrainian"},
    "ja": {"ja", "jpn", "japanese"},
    "zh": {"zh", "zho", "chi", "chinese"},
    "ko": {"ko", "kor", "korean"},
    "ar": {"ar", "ara", "arabic"},
    "nl": {"nl", "nld", "dut", "dutch"},
    "pl": {"pl", "pol", "polish"},
    "sv": {"sv", "swe", "swedish"},
    "cs": {"cs", "ces", "cze", "czech"},
    "tr": {"tr", "tur", "turkish"},
    "vi": {"vi", "vie", "vietnamese"},
    "id": {"id", "ind", "indonesian"},
    "hi": {"hi", "hin", "hindi"},
}


def _get_language_tags(lang_code: str) -> set[str]:
    """Get all known tags for a language code, given any of its tags."""
    code = lang_code.strip().lower()
    if code in _LANGUAGE_TAGS:
        return _LANGUAGE_TAGS[code]
    for tags in _LANGUAGE_TAGS.values():
        if code in tags:
            return tags
    return {code}


def language_matches(candidate_lang: str, preferred: str) -> bool:
    """True if two language tags name the same language ("en" == "eng")."""
    if not candidate_lang or not preferred:
        return False
    return candidate_lang.strip().lower() in _get_language_tags(preferred)


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(overrides: dict = None) -> Settings:
    """Force reload settings from environment/file, with optional overrides.

    Args:
        overrides: Dict of key-value pairs to apply on top of the env/file
                   settings. String values are coerced to the field type.
    """
    global _settings
    base = Settings()

    if overrides:
        base_data = base.model_dump()
        update = {}
        for key, value in overrides.items():
            if key not in base_data:
                continue
            expected_type = type(base_data[key])
            try:
                if expected_type is bool:
                    update[key] = value.lower() in ("true", "1", "yes") if isinstance(value, str) else bool(value)
                elif expected_type is int:
                    update[key] = int(value)
                elif expected_type is float:
                    update[key] = float(value)
                else:
                    update[key] = str(value)
            except (ValueError, TypeError):
                continue  # Skip invalid values

        _settings = base.model_copy(update=update) if update else base
    else:
        _settings = base

    return _settings
