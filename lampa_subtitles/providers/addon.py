"""Stremio-style addon catalog provider.

Speaks the manifest-based addon protocol:

    GET {base}/manifest.json                       -> {"resources": [...]}
    GET {base}/subtitles/{type}/{id}.json          -> {"subtitles": [{id, url, lang, label}]}
    GET {base}/subtitles/search/{query}.json       (when no external id is known)
    GET {url}                                      -> subtitle file

One instance is built per configured addon URL. Addons return every language
they have, so the resolver post-filters by the preferred language.

Popular subtitle addons:
    https://opensubtitles-v3.strem.io
"""

import logging
import threading
from typing import Optional
from urllib.parse import quote, urlparse

from lampa_subtitles.cache_store import CachedSubtitleFile
from lampa_subtitles.providers.base import (
    ProviderNotConfiguredError,
    ProviderParseError,
    SubtitleCandidate,
    SubtitleProvider,
    SubtitleQuery,
)

logger = logging.getLogger(__name__)

_MANIFEST_SUFFIX = "/manifest.json"
_SUBTITLES_RESOURCE = "subtitles"


def normalize_addon_url(url: str) -> str:
    """Accept either the addon base URL or its manifest URL; return the base."""
    base = (url or "").strip().rstrip("/")
    if base.lower().endswith(_MANIFEST_SUFFIX):
        base = base[: -len(_MANIFEST_SUFFIX)]
    return base.rstrip("/")


def manifest_supports_subtitles(manifest: dict) -> bool:
    """True if the manifest lists the subtitles resource.

    Resources are either plain strings or objects with a "name" key.
    """
    resources = manifest.get("resources") if isinstance(manifest, dict) else None
    if not isinstance(resources, list):
        return False
    for resource in resources:
        if isinstance(resource, str) and resource.startswith(_SUBTITLES_RESOURCE):
            return True
        if isinstance(resource, dict) and resource.get("name") == _SUBTITLES_RESOURCE:
            return True
    return False


class AddonCatalogProvider(SubtitleProvider):
    """Subtitles from one Stremio-compatible addon."""

    filters_language_upstream = False

    def __init__(self, base_url: str = "", max_results: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.base_url = normalize_addon_url(base_url)
        if max_results is not None:
            self.max_results = max_results
        host = urlparse(self.base_url).netloc or self.base_url
        self.name = f"addon ({host})"
        self._supports_subtitles: Optional[bool] = None
        self._manifest_lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(self.base_url) and self.session is not None

    def _verify_manifest(self) -> bool:
        """Fetch the manifest once per instance and remember the answer."""
        with self._manifest_lock:
            if self._supports_subtitles is None:
                manifest_url = f"{self.base_url}{_MANIFEST_SUFFIX}"
                logger.debug("Addon %s: verifying manifest at %s", self.name, manifest_url)
                manifest = self._get_json(manifest_url)
                if manifest is None:
                    raise ProviderNotConfiguredError(f"No manifest at {manifest_url}")
                self._supports_subtitles = manifest_supports_subtitles(manifest)
                if not self._supports_subtitles:
                    logger.warning("Addon %s does not provide the subtitles resource", self.name)
            return self._supports_subtitles

    def _subtitles_url(self, query: SubtitleQuery) -> str:
        if query.external_id:
            return f"{self.base_url}/subtitles/{query.media_type}/{quote(query.external_id, safe=':')}.json"
        return f"{self.base_url}/subtitles/search/{quote(query.video_filename, safe='')}.json"

    def _search(self, query: SubtitleQuery) -> list[SubtitleCandidate]:
        if not self._verify_manifest():
            return []

        url = self._subtitles_url(query)
        logger.debug("Addon %s: GET %s", self.name, url)
        data = self._get_json(url)
        if data is None:
            return []
        if not isinstance(data, dict):
            raise ProviderParseError(f"Expected an object from {url}, got {type(data).__name__}")

        entries = data.get("subtitles", [])
        if not isinstance(entries, list):
            raise ProviderParseError(f"'subtitles' is not a list in {url}")

        results = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("url"):
                continue
            lang = str(entry.get("lang") or query.preferred_language)
            results.append(SubtitleCandidate(
                provider_name=self.name,
                remote_id=str(entry.get("id") or index),
                download_url=entry["url"],
                language=lang,
                display_label=str(entry.get("label") or query.video_filename),
            ))
        return results

    def _download(
        self,
        candidate: SubtitleCandidate,
        cancel_event: Optional[threading.Event],
    ) -> Optional[CachedSubtitleFile]:
        logger.debug("Addon %s: downloading %s", self.name, candidate.download_url)
        return self._fetch_to_cache(candidate.download_url, candidate.language, cancel_event)
