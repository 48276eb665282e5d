"""
Tests for the multi-language caption manager.
"""

import threading

import pytest
from captions.errors import (
    CaptionError,
    LanguageNotAvailableError,
    NoCuesError,
    SwitchError,
)
from captions.language_manager import (
    LANGUAGE_PRIORITY_PRESETS,
    LanguageManager,
    resolve_priority,
)
from captions.sources import StaticSource
from config import AppConfig


def make_vtt(label):
    return (
        "WEBVTT\n\n"
        f"00:00:01.000 --> 00:00:03.000\n{label} one\n\n"
        f"00:00:05.500 --> 00:00:08.200\n{label} two\n"
    )


CATALOG = {
    "eng": [{"id": "eng-1", "file_name": "movie.eng.vtt", "download_count": 5000, "rating": 8}],
    "spa": [{"id": "spa-1", "file_name": "movie.spa.vtt", "download_count": 4000, "rating": 7}],
    "fre": [{"id": "fre-1", "fileName": "movie.fre.vtt", "downloadCount": 6000, "rating": 9}],
}

CONTENT = {
    "eng-1": make_vtt("English"),
    "spa-1": make_vtt("Spanish"),
    "fre-1": make_vtt("French"),
}


@pytest.fixture
def config():
    cfg = AppConfig()
    cfg.languages.cleanup_interval = 0
    cfg.languages.preload_next = False
    return cfg


@pytest.fixture
def source():
    return StaticSource(CONTENT)


@pytest.fixture
def manager(source, config):
    m = LanguageManager(source, config)
    yield m
    m.destroy()


def eng_spa():
    return {code: CATALOG[code] for code in ("eng", "spa")}


class BlockingSource(StaticSource):
    """Holds the fetch of one candidate until released."""

    def __init__(self, contents, block_id):
        super().__init__(contents)
        self.block_id = block_id
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch(self, candidate):
        if candidate.id == self.block_id:
            self.started.set()
            self.release.wait(5.0)
        return super().fetch(candidate)


class TestCatalog:
    """Test loading and automatic selection."""

    def test_auto_selects_priority_language(self, manager):
        changes = []
        manager.language_changed.register(changes.append)
        assert manager.load_languages(eng_spa())
        assert manager.active_language == "eng"
        assert changes[0].previous is None
        assert changes[0].current == "eng"
        assert changes[0].reason == "auto_select"

    def test_priority_order_wins(self, source, config):
        config.languages.priority = ["fre", "eng"]
        with LanguageManager(source, config) as manager:
            manager.load_languages({"eng": CATALOG["eng"], "fre": CATALOG["fre"]})
            assert manager.get_best_available_language() == "fre"
            assert manager.active_language == "fre"

    def test_falls_back_to_highest_score(self, source, config):
        config.languages.priority = ["jpn"]
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            assert manager.active_language == "eng"

    def test_quality_threshold_filters(self, manager):
        manager.load_languages(CATALOG, quality_threshold=0.4)
        assert set(manager.languages) == {"eng", "fre"}

    def test_scores_recorded(self, manager):
        manager.load_languages(eng_spa())
        scores = {info["language_code"]: info["quality_score"]
                  for info in manager.get_available_languages()}
        assert scores["eng"] == pytest.approx(0.44)
        assert scores["spa"] == pytest.approx(0.37)

    def test_no_auto_select(self, manager):
        manager.load_languages(eng_spa(), auto_select=False)
        assert manager.active_language is None
        assert set(manager.languages) == {"eng", "spa"}

    def test_languages_without_candidates_skipped(self, manager):
        manager.load_languages({"eng": CATALOG["eng"], "ger": []})
        assert set(manager.languages) == {"eng"}

    def test_invalid_metadata(self, manager):
        errors = []
        manager.error.register(errors.append)
        with pytest.raises(CaptionError):
            manager.load_languages({"eng": [{"id": "x", "download_count": "lots"}]})
        assert errors[0].operation == "load_languages"

    def test_non_mapping_candidate(self, manager):
        errors = []
        manager.error.register(errors.append)
        with pytest.raises(CaptionError):
            manager.load_languages({"eng": [None]})
        assert errors[0].operation == "load_languages"
        assert manager.languages == {}

    def test_failed_load_keeps_previous_catalog(self, manager):
        manager.load_languages(eng_spa())
        with pytest.raises(SwitchError):
            manager.load_languages({"ger": [{"id": "missing", "download_count": 9000, "rating": 9}]})
        assert manager.active_language == "eng"
        assert set(manager.languages) == {"eng", "spa"}

    def test_reload_replaces_catalog(self, manager):
        manager.load_languages(eng_spa())
        manager.load_languages({"fre": CATALOG["fre"]})
        assert manager.active_language == "fre"
        assert set(manager.languages) == {"fre"}
        assert manager.handles.live_count == 1


class TestSwitching:
    """Test language switches."""

    def test_switch(self, manager):
        manager.load_languages(eng_spa())
        changes = []
        manager.language_changed.register(changes.append)
        assert manager.switch_language("spa")
        assert manager.active_language == "spa"
        assert (changes[0].previous, changes[0].current, changes[0].reason) == ("eng", "spa", "manual")
        assert not manager.synchronizer_for("eng").is_started

    def test_switch_to_active_is_noop(self, manager):
        manager.load_languages(eng_spa())
        changes = []
        manager.language_changed.register(changes.append)
        assert manager.switch_language("eng")
        assert changes == []

    def test_unknown_language(self, manager):
        manager.load_languages(eng_spa())
        errors = []
        manager.error.register(errors.append)
        with pytest.raises(LanguageNotAvailableError):
            manager.switch_language("xyz")
        assert manager.active_language == "eng"
        assert errors[0].language == "xyz"
        assert manager.metrics.failed_switches == 1

    def test_no_cues_leaves_state_untouched(self, config):
        source = StaticSource({"eng-1": CONTENT["eng-1"], "spa-1": "WEBVTT\n\nNOTE nothing here\n"})
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            with pytest.raises(NoCuesError):
                manager.switch_language("spa")
            assert manager.active_language == "eng"
            assert manager.synchronizer_for("eng").is_started
            assert manager.synchronizer_for("spa") is None

    def test_fetch_failure(self, config):
        source = StaticSource({"eng-1": CONTENT["eng-1"]})
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            with pytest.raises(SwitchError):
                manager.switch_language("spa")
            assert manager.active_language == "eng"

    def test_position_preserved(self, manager):
        manager.load_languages(eng_spa())
        manager.update_time(2.0)
        assert manager.get_current_subtitle().text == "English one"
        changes = []
        manager.language_changed.register(changes.append)
        manager.switch_language("spa")
        assert changes[0].position == 2.0
        assert manager.get_current_subtitle().text == "Spanish one"

    def test_position_reset(self, manager):
        manager.load_languages(eng_spa())
        manager.update_time(2.0)
        manager.switch_language("spa", preserve_time=False)
        assert manager.get_current_subtitle() is None

    def test_subtitle_events_forwarded(self, manager):
        manager.load_languages(eng_spa())
        events = []
        manager.subtitle_changed.register(events.append)
        manager.update_time(1.5)
        assert events[-1].language == "eng"
        assert events[-1].direction == "enter"

        manager.switch_language("spa")
        assert events[-1].language == "spa"
        assert events[-1].changed.text == "Spanish one"

    def test_invalid_time_ignored(self, manager):
        manager.load_languages(eng_spa())
        manager.update_time(2.0)
        manager.update_time(float("nan"))
        assert manager.position == 2.0
        assert manager.get_current_subtitle().text == "English one"

    def test_superseded_switch_discarded(self, config):
        class ReentrantSource(StaticSource):
            hook = None

            def fetch(self, candidate):
                if candidate.id == "spa-1" and self.hook is not None:
                    hook, self.hook = self.hook, None
                    hook()
                return super().fetch(candidate)

        source = ReentrantSource(CONTENT)
        with LanguageManager(source, config) as manager:
            manager.load_languages(CATALOG)
            source.hook = lambda: manager.switch_language("fre")
            assert not manager.switch_language("spa")
            assert manager.active_language == "fre"
            assert manager.synchronizer_for("spa") is None
            assert manager.metrics.superseded_requests == 1


class TestPriority:

    def test_set_priority_switches(self, manager):
        manager.load_languages(eng_spa())
        changes = []
        manager.language_changed.register(changes.append)
        manager.set_language_priority(["spa", "eng"])
        assert manager.active_language == "spa"
        assert changes[-1].reason == "priority_change"

    def test_set_priority_preset(self, manager):
        manager.load_languages(eng_spa())
        manager.set_language_priority("spanish_first")
        assert manager.language_priority == LANGUAGE_PRIORITY_PRESETS["spanish_first"]
        assert manager.active_language == "spa"

    def test_failed_priority_switch_keeps_priority(self, config):
        source = StaticSource({"eng-1": CONTENT["eng-1"]})
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            manager.set_language_priority(["spa"])
            assert manager.language_priority == ["spa"]
            assert manager.active_language == "eng"

    def test_resolve_priority(self):
        assert resolve_priority(None) == LANGUAGE_PRIORITY_PRESETS["english_first"]
        assert resolve_priority("fre, eng") == ["fre", "eng"]
        assert resolve_priority(("ger",)) == ["ger"]


class TestCaching:
    """Test content caching and background preload."""

    def test_cache_key(self, manager):
        manager.load_languages(eng_spa())
        assert LanguageManager.cache_key(manager.languages["eng"]) == "eng_eng-1_5000"

    def test_cached_content_reused(self, manager, source):
        manager.load_languages(eng_spa())
        manager.switch_language("spa")
        assert source.fetch_count == 2

        assert manager.perform_periodic_cleanup() == 1
        manager.switch_language("eng")
        assert source.fetch_count == 2
        assert manager.get_cache_stats()["cache_hits"] >= 1

    def test_force_reload(self, manager, source):
        manager.load_languages(eng_spa())
        manager.switch_language("spa")
        manager.switch_language("eng", force_reload=True)
        assert source.fetch_count == 3

    def test_cache_updated_event(self, manager):
        events = []
        manager.cache_updated.register(events.append)
        manager.load_languages(eng_spa())
        assert events[0].language == "eng"
        assert events[0].cached

    def test_cache_bounded(self, source, config):
        config.cache.max_cached_languages = 2
        with LanguageManager(source, config) as manager:
            manager.load_languages(CATALOG, preload_all=True)
            assert manager.wait_for_background(timeout=5.0)
            assert len(manager.cache) <= 2

    def test_preload_next(self, source, config):
        config.languages.preload_next = True
        config.languages.priority = ["eng", "spa", "fre"]
        with LanguageManager(source, config) as manager:
            manager.load_languages(CATALOG)
            assert manager.wait_for_background(timeout=5.0)
            cached = {info["language_code"]: info["cached"]
                      for info in manager.get_available_languages()}
            assert cached == {"eng": True, "spa": True, "fre": False}
            assert manager.metrics.preloads == 1

    def test_preload_failure_not_raised(self, config):
        config.languages.preload_next = True
        source = StaticSource({"eng-1": CONTENT["eng-1"]})
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            assert manager.wait_for_background(timeout=5.0)
            assert manager.metrics.preload_failures == 1
            assert manager.active_language == "eng"

    def test_preload_discarded_after_clear(self, config):
        config.languages.preload_next = True
        config.languages.priority = ["eng", "spa"]
        source = BlockingSource(CONTENT, block_id="spa-1")
        with LanguageManager(source, config) as manager:
            events = []
            manager.load_languages(eng_spa())
            assert source.started.wait(5.0)
            manager.clear()
            manager.cache_updated.register(events.append)
            source.release.set()
            assert manager.wait_for_background(timeout=5.0)
            assert manager.cache.keys() == []
            assert manager.metrics.preloads == 0
            assert events == []

    def test_preload_discarded_after_reload(self, config):
        config.languages.preload_next = True
        config.languages.priority = ["eng", "spa"]
        source = BlockingSource(CONTENT, block_id="spa-1")
        with LanguageManager(source, config) as manager:
            manager.load_languages(eng_spa())
            assert source.started.wait(5.0)
            manager.load_languages({"eng": CATALOG["eng"]})
            source.release.set()
            assert manager.wait_for_background(timeout=5.0)
            assert "spa_spa-1_4000" not in manager.cache.keys()
            assert manager.metrics.preloads == 0


class TestLifecycle:
    """Test cleanup, handles and teardown."""

    def test_handles_follow_synchronizers(self, manager):
        manager.load_languages(eng_spa())
        assert manager.handles.live_count == 1
        manager.switch_language("spa")
        assert manager.handles.live_count == 2
        manager.perform_periodic_cleanup()
        assert manager.handles.live_count == 1
        assert manager.get_cache_stats()["handles_released"] == 1

    def test_cleanup_keeps_active(self, manager):
        manager.load_languages(eng_spa())
        assert manager.perform_periodic_cleanup() == 0
        assert manager.active_synchronizer is not None

    def test_clear(self, manager):
        manager.load_languages(eng_spa())
        manager.clear()
        manager.clear()
        assert manager.active_language is None
        assert manager.languages == {}
        assert manager.handles.live_count == 0
        assert len(manager.cache) == 0

    def test_destroy_idempotent(self, source, config):
        manager = LanguageManager(source, config)
        manager.load_languages(eng_spa())
        manager.destroy()
        manager.destroy()
        assert manager.destroyed
        assert manager.handles.live_count == 0
        with pytest.raises(CaptionError):
            manager.switch_language("eng")

    def test_cleanup_thread_stopped(self, source, config):
        config.languages.cleanup_interval = 60
        manager = LanguageManager(source, config)
        assert manager._cleanup_thread.is_alive()
        manager.destroy()
        assert not manager._cleanup_thread.is_alive()

    def test_cache_stats(self, manager):
        manager.load_languages(eng_spa())
        stats = manager.get_cache_stats()
        assert stats["cached_languages"] == 1
        assert stats["available_languages"] == 2
        assert stats["language_switches"] == 1
        assert stats["handles_live"] == 1

    def test_export_diagnostics(self, manager):
        manager.load_languages(eng_spa())
        manager.update_time(1.5)
        snapshot = manager.export_diagnostics(include_process=False)
        assert snapshot.active_language == "eng"
        assert "eng" in snapshot.parse
        assert snapshot.sync["language"] == "eng"
        data = snapshot.to_dict()
        assert data["summary"]["parse_errors"] == 0
        assert data["process"] == {}
