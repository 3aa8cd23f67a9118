"""Resolver tests: first match wins, debounce, language post-filter, outcomes."""

import threading
from unittest.mock import MagicMock

import pytest

from lampa_subtitles.providers.addon import AddonCatalogProvider
from lampa_subtitles.providers.base import FailureKind, ProviderTimeoutError, SubtitleQuery
from lampa_subtitles.resolver import Debouncer, ResolveOutcome, SubtitleResolver
from tests.fixtures.doubles import StubProvider, make_candidate
from tests.fixtures.provider_responses import (
    ADDON_MANIFEST,
    SRT_CONTENT,
    FakeResponse,
    addon_response_with,
)

QUERY = SubtitleQuery(video_filename="Movie.2023.1080p.mkv", preferred_language="en")


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000


def _addon(cache_store, subtitles_payload, host="subs.example.com"):
    base = f"https://{host}"
    session = MagicMock()
    requested = []

    def get(url, **kwargs):
        requested.append(url)
        if url == f"{base}/manifest.json":
            return FakeResponse(json_data=ADDON_MANIFEST)
        if url.startswith(f"{base}/subtitles/"):
            return FakeResponse(json_data=subtitles_payload)
        return FakeResponse(content=SRT_CONTENT)

    session.get.side_effect = get
    provider = AddonCatalogProvider(base_url=base, session=session, cache_store=cache_store)
    provider.requested = requested
    return provider


class TestDebouncer:
    def test_window(self):
        clock = FakeClock()
        d = Debouncer(2000, clock)
        assert d.admit() is True
        clock.advance_ms(1999)
        assert d.admit() is False
        clock.advance_ms(1)
        assert d.admit() is True

    def test_rejection_does_not_move_window(self):
        clock = FakeClock()
        d = Debouncer(2000, clock)
        assert d.admit() is True
        clock.advance_ms(1500)
        assert d.admit() is False
        clock.advance_ms(600)  # 2100ms after the accepted call
        assert d.admit() is True

    def test_reset(self):
        d = Debouncer(2000, FakeClock())
        d.admit()
        d.reset()
        assert d.admit() is True


class TestFirstMatchWins:
    @pytest.mark.parametrize("winner_index", [0, 1, 2])
    def test_first_enabled_provider_with_results_wins(self, cache_store, winner_index):
        providers = []
        for i in range(3):
            candidates = [make_candidate(f"p{i}")] if i >= winner_index else []
            providers.append(StubProvider(f"p{i}", candidates=candidates, cache_store=cache_store))
        resolver = SubtitleResolver(providers, cache_store)

        cached = resolver.resolve(QUERY)

        assert cached.source_provider_name == f"p{winner_index}"
        for later in providers[winner_index + 1:]:
            assert later.search_calls == 0
            assert later.download_calls == 0

    def test_disabled_providers_skipped(self, cache_store):
        off = StubProvider("off", candidates=[make_candidate("off")], configured=False, cache_store=cache_store)
        on = StubProvider("on", candidates=[make_candidate("on")], cache_store=cache_store)

        cached = SubtitleResolver([off, on], cache_store).resolve(QUERY)

        assert cached.source_provider_name == "on"
        assert off.search_calls == 0

    def test_failed_download_moves_to_next_provider(self, cache_store):
        broken = StubProvider("broken", candidates=[make_candidate("broken")], download_ok=False,
                              cache_store=cache_store)
        good = StubProvider("good", candidates=[make_candidate("good")], cache_store=cache_store)

        cached = SubtitleResolver([broken, good], cache_store).resolve(QUERY)

        assert cached.source_provider_name == "good"
        assert broken.download_calls == 1

    def test_only_first_candidate_downloaded(self, cache_store):
        p = StubProvider("p", candidates=[make_candidate("p", remote_id=str(i)) for i in range(5)],
                         cache_store=cache_store)
        SubtitleResolver([p], cache_store).resolve(QUERY)
        assert p.download_calls == 1
        assert len(cache_store.entries()) == 1

    def test_scenario_disabled_then_addon(self, cache_store):
        """Provider 1 has no credentials, provider 2 has one English candidate."""
        disabled = StubProvider("opensubtitles", configured=False, cache_store=cache_store)
        addon = _addon(cache_store, {"subtitles": [
            {"id": "1", "url": "https://example/sub.srt", "lang": "en", "label": "English"},
        ]})
        resolver = SubtitleResolver([disabled, addon], cache_store)

        cached = resolver.resolve(QUERY)

        assert cached is not None
        assert cached.source_provider_name == addon.name
        assert cached.size_bytes > 0
        assert "https://example/sub.srt" in addon.requested


class TestLanguageFilter:
    def test_post_filter_for_non_filtering_provider(self, cache_store):
        french_only = StubProvider("fr", candidates=[make_candidate("fr", lang="fre")], cache_store=cache_store)
        english = StubProvider("en", candidates=[make_candidate("en", lang="eng")], cache_store=cache_store)

        cached = SubtitleResolver([french_only, english], cache_store).resolve(QUERY)

        assert cached.source_provider_name == "en"
        assert french_only.download_calls == 0

    def test_upstream_filtering_provider_trusted(self, cache_store):
        p = StubProvider("rest", candidates=[make_candidate("rest", lang="pob")], upstream_filter=True,
                         cache_store=cache_store)
        assert SubtitleResolver([p], cache_store).resolve(QUERY) is not None

    def test_cap_then_filter(self, cache_store):
        """25 raw entries: at most 20 considered, only English ones kept."""
        addon = _addon(cache_store, addon_response_with(25, english_every=5))

        candidates = addon.search(QUERY)
        assert len(candidates) == 20

        kept = SubtitleResolver.filter_language(candidates, "en")
        assert [c.remote_id for c in kept] == ["sub-0", "sub-5", "sub-10", "sub-15"]

        cached = SubtitleResolver([addon], cache_store).resolve(QUERY)
        assert cached is not None
        assert "https://subs.example.com/files/sub-0.srt" in addon.requested
        assert "https://subs.example.com/files/sub-20.srt" not in addon.requested


class TestDebouncedResolve:
    def test_second_call_within_window_is_dropped(self, cache_store):
        clock = FakeClock()
        p = StubProvider("p", candidates=[make_candidate("p")], cache_store=cache_store)
        resolver = SubtitleResolver([p], cache_store, clock=clock)

        assert resolver.resolve(QUERY) is not None
        clock.advance_ms(500)
        assert resolver.resolve(QUERY) is None

        assert p.search_calls == 1
        assert len(cache_store.entries()) == 1

    def test_debounced_outcome(self, cache_store):
        clock = FakeClock()
        resolver = SubtitleResolver([], cache_store, clock=clock)
        assert resolver.resolve_detailed(QUERY).outcome == ResolveOutcome.NOT_FOUND
        clock.advance_ms(1999)
        assert resolver.resolve_detailed(QUERY).outcome == ResolveOutcome.DEBOUNCED
        clock.advance_ms(1)
        assert resolver.resolve_detailed(QUERY).outcome == ResolveOutcome.NOT_FOUND

    def test_search_and_download_skips_debounce(self, cache_store):
        p = StubProvider("p", candidates=[make_candidate("p")], cache_store=cache_store)
        resolver = SubtitleResolver([p], cache_store, clock=FakeClock())
        resolver.search_and_download(QUERY)
        resolver.search_and_download(QUERY)
        assert p.search_calls == 2


class TestOutcomes:
    def test_found(self, cache_store):
        p = StubProvider("p", candidates=[make_candidate("p")], cache_store=cache_store)
        resolution = SubtitleResolver([p], cache_store).resolve_detailed(QUERY)
        assert resolution.outcome == ResolveOutcome.FOUND
        assert resolution.to_dict()["file"]["source_provider_name"] == "p"

    def test_not_found_when_a_provider_answered(self, cache_store):
        flaky = StubProvider("flaky", search_error=ProviderTimeoutError("slow"), cache_store=cache_store)
        empty = StubProvider("empty", cache_store=cache_store)
        resolution = SubtitleResolver([flaky, empty], cache_store).resolve_detailed(QUERY)
        assert resolution.outcome == ResolveOutcome.NOT_FOUND
        assert resolution.failures == [("flaky", FailureKind.TRANSIENT)]

    def test_failed_when_every_provider_errored(self, cache_store):
        a = StubProvider("a", search_error=ProviderTimeoutError("slow"), cache_store=cache_store)
        b = StubProvider("b", search_error=ValueError("garbage"), cache_store=cache_store)
        resolution = SubtitleResolver([a, b], cache_store).resolve_detailed(QUERY)
        assert resolution.outcome == ResolveOutcome.FAILED
        assert resolution.to_dict()["failures"] == [
            {"provider": "a", "kind": "transient"},
            {"provider": "b", "kind": "parse"},
        ]

    def test_no_enabled_providers_is_not_found(self, cache_store):
        off = StubProvider("off", configured=False, cache_store=cache_store)
        assert SubtitleResolver([off], cache_store).resolve_detailed(QUERY).outcome == ResolveOutcome.NOT_FOUND

    def test_cancelled_before_fan_out(self, cache_store):
        p = StubProvider("p", candidates=[make_candidate("p")], cache_store=cache_store)
        cancel = threading.Event()
        cancel.set()
        resolution = SubtitleResolver([p], cache_store).search_and_download(QUERY, cancel)
        assert resolution.outcome == ResolveOutcome.CANCELLED
        assert p.search_calls == 0


class TestCircuitBreaker:
    def test_repeatedly_failing_provider_skipped(self, cache_store):
        clock = FakeClock()
        flaky = StubProvider("flaky", search_error=ProviderTimeoutError("slow"), cache_store=cache_store)
        resolver = SubtitleResolver([flaky], cache_store, clock=clock, failure_threshold=2, cooldown_seconds=60)

        for _ in range(3):
            resolver.search_and_download(QUERY)
        assert flaky.search_calls == 2

        clock.now += 60
        resolver.search_and_download(QUERY)
        assert flaky.search_calls == 3

    def test_download_failures_open_the_breaker(self, cache_store):
        clock = FakeClock()
        broken = StubProvider(
            "broken", candidates=[make_candidate("broken")],
            download_error=ProviderTimeoutError("reset by peer"), cache_store=cache_store,
        )
        resolver = SubtitleResolver([broken], cache_store, clock=clock, failure_threshold=2, cooldown_seconds=60)

        for _ in range(3):
            resolution = resolver.search_and_download(QUERY)
            clock.advance_ms(10)

        assert resolution.failures == []  # skipped, breaker open
        assert broken.search_calls == 2
        assert broken.download_calls == 2
        assert resolver.get_provider_status()[0]["circuit_breaker"]["state"] == "open"

    def test_clean_round_keeps_breaker_closed(self, cache_store):
        p = StubProvider("p", candidates=[make_candidate("p")], cache_store=cache_store)
        resolver = SubtitleResolver([p], cache_store, failure_threshold=1)

        for _ in range(3):
            assert resolver.search_and_download(QUERY).outcome == ResolveOutcome.FOUND
        assert p.search_calls == 3

    def test_provider_status(self, cache_store):
        p = StubProvider("p", cache_store=cache_store)
        off = StubProvider("off", configured=False, cache_store=cache_store)
        status = SubtitleResolver([p, off], cache_store).get_provider_status()
        assert [s["name"] for s in status] == ["p", "off"]
        assert status[0]["enabled"] is True
        assert status[0]["circuit_breaker"]["state"] == "closed"
        assert status[1]["healthy"] is False


class TestFetchDirect:
    def test_downloads_into_cache(self, cache_store):
        session = MagicMock()
        session.get.return_value = FakeResponse(content=SRT_CONTENT)
        resolver = SubtitleResolver([], cache_store, http_session=session)

        cached = resolver.fetch_direct("https://host.example/subs/movie.srt", "en")

        assert cached.source_provider_name == "direct"
        assert cached.language == "en"
        assert cache_store.is_usable(cached.absolute_path)
        session.get.assert_called_once_with("https://host.example/subs/movie.srt", stream=True)

    def test_failure_returns_none(self, cache_store):
        session = MagicMock()
        session.get.return_value = FakeResponse(status_code=404)
        resolver = SubtitleResolver([], cache_store, http_session=session)
        assert resolver.fetch_direct("https://host.example/missing.srt", "en") is None

    def test_needs_session(self, cache_store):
        assert SubtitleResolver([], cache_store).fetch_direct("https://x.example/a.srt", "en") is None
