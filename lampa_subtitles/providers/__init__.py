"""Subtitle provider system: search and download subtitles from several sources.

Providers are built once per playback session, in the order the resolver
should try them: one addon provider per configured addon URL (in configured
order), then the registered built-in providers in BUILTIN_ORDER.

Usage:
    from lampa_subtitles.providers import build_providers

    providers = build_providers(settings, cache_store)
"""

import logging

from lampa_subtitles.providers.base import (
    DisabledProvider,
    FailureKind,
    ProviderAuthError,
    ProviderError,
    SubtitleCandidate,
    SubtitleProvider,
    SubtitleQuery,
)

logger = logging.getLogger(__name__)

# Provider registry: name -> class
_PROVIDER_CLASSES: dict[str, type[SubtitleProvider]] = {}

# Built-ins after the addons. Stubs stay in the list so new sources slot in
# without touching the resolver.
BUILTIN_ORDER = ["opensubtitles", "subsource", "subdl", "subhero"]


def register_provider(cls: type[SubtitleProvider]) -> type[SubtitleProvider]:
    """Decorator to register a built-in provider class by name.

    On a name collision the first registration wins and a warning is logged.
    """
    if cls.name in _PROVIDER_CLASSES:
        logger.warning(
            "Provider name collision: '%s' already registered by %s, skipping %s",
            cls.name,
            _PROVIDER_CLASSES[cls.name].__name__,
            cls.__name__,
        )
        return cls
    _PROVIDER_CLASSES[cls.name] = cls
    return cls


def get_provider_class(name: str) -> type[SubtitleProvider] | None:
    _load_builtin_providers()
    return _PROVIDER_CLASSES.get(name)


def _load_builtin_providers() -> None:
    # Import for the @register_provider side effect
    from lampa_subtitles.providers import opensubtitles, placeholders  # noqa: F401


def _get_provider_config(name: str, settings) -> dict:
    """Collect `<name>_*` settings and strip the prefix for the constructor.

    e.g. "opensubtitles_api_key" -> "api_key". Values are whitespace-stripped
    to guard against paste artifacts.
    """
    prefix = f"{name}_"
    config = {}
    for key, value in settings.model_dump().items():
        if key.startswith(prefix):
            config[key[len(prefix):]] = value.strip() if isinstance(value, str) else value
    return config


def new_http_session(settings):
    from lampa_subtitles.providers.http_session import create_session

    return create_session(
        max_retries=settings.http_max_retries,
        backoff_factor=settings.http_backoff_factor,
        timeout=settings.http_timeout,
        user_agent=settings.user_agent,
    )


def build_providers(settings, cache_store) -> list[SubtitleProvider]:
    """Instantiate every provider in resolver order.

    Disabled or unconfigured providers are included; the resolver skips them
    via is_enabled().
    """
    from lampa_subtitles.providers.addon import AddonCatalogProvider

    _load_builtin_providers()
    providers: list[SubtitleProvider] = []

    for url in settings.get_addon_urls():
        provider = AddonCatalogProvider(
            base_url=url,
            cache_store=cache_store,
            session=new_http_session(settings),
            max_results=settings.provider_max_results,
        )
        providers.append(provider)

    for name in BUILTIN_ORDER:
        cls = _PROVIDER_CLASSES.get(name)
        if cls is None:
            logger.debug("Provider %s not found in registry", name)
            continue
        config = _get_provider_config(name, settings)
        try:
            session = new_http_session(settings) if cls.uses_network else None
            provider = cls(cache_store=cache_store, session=session, **config)
            provider.max_results = settings.provider_max_results
            provider.initialize()
        except Exception as e:
            logger.error("Failed to initialize provider %s: %s", name, e, exc_info=True)
            continue
        providers.append(provider)

    enabled = [p.name for p in providers if p.is_enabled()]
    if enabled:
        logger.info("Active subtitle providers (%d): %s", len(enabled), enabled)
    else:
        logger.warning("No subtitle provider is configured. Set an addon URL or an OpenSubtitles API key.")
    return providers


__all__ = [
    "BUILTIN_ORDER",
    "DisabledProvider",
    "FailureKind",
    "ProviderAuthError",
    "ProviderError",
    "SubtitleCandidate",
    "SubtitleProvider",
    "SubtitleQuery",
    "build_providers",
    "get_provider_class",
    "register_provider",
]
