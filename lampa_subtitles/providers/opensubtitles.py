"""OpenSubtitles.com REST API v1 provider.

Search and download go through the REST API:

    GET  {api}/subtitles?query=...&languages=...[&imdb_id=...]
    POST {api}/download {"file_id": ...}  -> {"link": "<signed url>"}
    GET  <signed url>                     -> subtitle bytes

Authentication: the API key header is the supported path. A username and
password login is kept for installs that only have an account; the bearer
token it returns is cached for 23 hours.

API docs: https://opensubtitles.stoplight.io/docs/opensubtitles-api/
"""

import logging
import threading
import time
from typing import Optional

import requests

from lampa_subtitles.cache_store import CachedSubtitleFile
from lampa_subtitles.providers import register_provider
from lampa_subtitles.providers.base import (
    ProviderAuthError,
    ProviderNotConfiguredError,
    ProviderParseError,
    ProviderTimeoutError,
    SubtitleCandidate,
    SubtitleProvider,
    SubtitleQuery,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.opensubtitles.com/api/v1"
TOKEN_TTL_SECONDS = 23 * 60 * 60


@register_provider
class RestApiProvider(SubtitleProvider):
    """OpenSubtitles.com REST provider (API key preferred)."""

    name = "opensubtitles"
    filters_language_upstream = True

    def __init__(
        self,
        api_key: str = "",
        username: str = "",
        password: str = "",
        api_base: str = API_BASE,
        clock=time.monotonic,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.username = username
        self.password = password
        self.api_base = (api_base or API_BASE).rstrip("/")
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_lock = threading.Lock()

    def is_configured(self) -> bool:
        if self.session is None:
            return False
        return bool(self.api_key) or bool(self.username and self.password)

    def initialize(self):
        if not self.is_configured():
            logger.info("OpenSubtitles: no API key or login configured, provider disabled")
            return
        if self.api_key:
            logger.debug("OpenSubtitles: using API key authentication (length: %d)", len(self.api_key))
        else:
            logger.warning("OpenSubtitles: no API key, falling back to username/password login")

    def terminate(self):
        self._token = None
        super().terminate()

    def health_check(self) -> tuple[bool, str]:
        ok, message = super().health_check()
        if not ok:
            return ok, message
        try:
            resp = self.session.get(f"{self.api_base}/infos/user", headers=self._auth_headers())
            if resp.status_code == 200:
                remaining = resp.json().get("data", {}).get("remaining_downloads", "?")
                return True, f"OK (downloads remaining: {remaining})"
            return False, f"HTTP {resp.status_code}"
        except Exception as e:
            return False, str(e)

    # ─── Authentication ──────────────────────────────────────────────────

    def _login_token(self) -> str:
        """Bearer token from username/password, cached until it expires."""
        with self._token_lock:
            if self._token and self._clock() < self._token_expires:
                return self._token

            logger.debug("OpenSubtitles: logging in as %s", self.username)
            resp = self.session.post(
                f"{self.api_base}/login",
                json={"username": self.username, "password": self.password},
            )
            if resp.status_code in (400, 401, 403):
                raise ProviderAuthError(f"OpenSubtitles login failed: HTTP {resp.status_code}")
            if resp.status_code != 200:
                raise ProviderTimeoutError(f"OpenSubtitles login failed: HTTP {resp.status_code}")
            try:
                token = resp.json().get("token")
            except ValueError as e:
                raise ProviderParseError("Login response is not JSON") from e
            if not token:
                raise ProviderAuthError("No token in OpenSubtitles login response")

            self._token = token
            self._token_expires = self._clock() + TOKEN_TTL_SECONDS
            logger.info("OpenSubtitles: logged in as %s", self.username)
            return token

    def _auth_headers(self) -> dict:
        if self.api_key:
            return {"Api-Key": self.api_key}
        if self.username and self.password:
            return {"Authorization": f"Bearer {self._login_token()}"}
        raise ProviderNotConfiguredError("OpenSubtitles credentials missing")

    # ─── Search / download ───────────────────────────────────────────────

    def _search(self, query: SubtitleQuery) -> list[SubtitleCandidate]:
        params = {"query": query.video_filename, "languages": query.preferred_language}
        if query.external_id:
            params["imdb_id"] = query.external_id.replace("tt", "")

        logger.debug("OpenSubtitles: search params %s", params)
        data = self._get_json(f"{self.api_base}/subtitles", params=params, headers=self._auth_headers())
        if not data:
            return []
        items = data.get("data")
        if not isinstance(items, list):
            raise ProviderParseError("OpenSubtitles response has no 'data' list")

        results = []
        for item in items[: self.max_results]:
            attrs = item.get("attributes") or {}
            files = attrs.get("files") or []
            if not files:
                continue
            file_id = files[0].get("file_id")
            if not file_id:
                continue
            release = attrs.get("release") or files[0].get("file_name") or "Unknown"
            results.append(SubtitleCandidate(
                provider_name=self.name,
                remote_id=str(file_id),
                download_url=f"{self.api_base}/download",
                language=attrs.get("language") or query.preferred_language,
                display_label=release,
                provider_data={
                    "file_id": file_id,
                    "download_count": attrs.get("download_count", 0),
                },
            ))
        return results

    def _request_link(self, candidate: SubtitleCandidate) -> str:
        file_id = candidate.provider_data.get("file_id") or candidate.remote_id
        try:
            resp = self.session.post(
                candidate.download_url,
                json={"file_id": int(file_id)},
                headers=self._auth_headers(),
            )
        except requests.Timeout as e:
            raise ProviderTimeoutError("Timeout requesting download link") from e
        except requests.ConnectionError as e:
            raise ProviderTimeoutError(f"Connection failed requesting download link: {e}") from e

        if resp.status_code in (401, 403):
            raise ProviderAuthError(f"OpenSubtitles download request refused: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise ProviderTimeoutError(f"OpenSubtitles download request failed: HTTP {resp.status_code}")
        try:
            link = resp.json().get("link")
        except ValueError as e:
            raise ProviderParseError("Download response is not JSON") from e
        if not link:
            raise ProviderParseError("No download link in response")
        return link

    def _download(
        self,
        candidate: SubtitleCandidate,
        cancel_event: Optional[threading.Event],
    ) -> Optional[CachedSubtitleFile]:
        link = self._request_link(candidate)
        logger.debug("OpenSubtitles: got signed link for file_id=%s", candidate.remote_id)
        return self._fetch_to_cache(link, candidate.language, cancel_event)

