"""
Tests for the caption synchronizer.
"""

import math
import pytest
from captions.cue_parser import Cue
from captions.resources import HandleRegistry
from captions.synchronizer import SyncStatus, Synchronizer
from config import SyncConfig


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def cue(cue_id, start, end, text=None):
    return Cue(cue_id, start, end, text or f"Cue {cue_id}")


TWO_CUES = [cue("1", 1.0, 3.0, "First"), cue("2", 5.5, 8.2, "Second")]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync(clock):
    s = Synchronizer(language="eng", clock=clock)
    s.load_cues(TWO_CUES)
    yield s
    s.destroy()


@pytest.fixture
def events(sync):
    received = []
    sync.subtitle_changed.register(received.append)
    return received


class TestLookup:
    """Test half-open interval lookup."""

    @pytest.mark.parametrize("t, expected", [
        (0.0, None),
        (0.95, None),
        (1.0, "First"),
        (2.999, "First"),
        (3.0, None),
        (5.5, "Second"),
        (8.2, None),
        (100.0, None),
    ])
    def test_boundaries(self, sync, t, expected):
        sync.start()
        sync.update_current_time(t)
        current = sync.get_current_subtitle()
        assert (current.text if current else None) == expected

    def test_overlapping_cues(self, clock):
        sync = Synchronizer(clock=clock)
        sync.load_cues([cue("a", 1.0, 4.0), cue("b", 2.0, 5.0)])
        sync.start()
        sync.update_current_time(2.5)
        assert [c.id for c in sync.get_active_subtitles()] == ["a", "b"]
        assert sync.get_current_subtitle().id == "b"

    def test_lookup_while_stopped(self, sync, events):
        sync.update_current_time(2.0)
        assert sync.get_current_subtitle().text == "First"
        assert events == []

    def test_unsorted_input(self, clock):
        sync = Synchronizer(clock=clock)
        sync.load_cues([cue("late", 10.0, 12.0), cue("early", 1.0, 2.0)])
        assert [c.id for c in sync.cues] == ["early", "late"]

    def test_many_cues(self, clock):
        cues = [cue(str(i), i * 2.0, i * 2.0 + 1.5) for i in range(5000)]
        sync = Synchronizer(clock=clock)
        sync.load_cues(cues)
        sync.start()
        for i in (0, 1, 777, 2500, 4999):
            sync.update_current_time(i * 2.0 + 0.5)
            assert sync.get_current_subtitle().id == str(i)
            sync.update_current_time(i * 2.0 + 1.75)
            assert sync.get_current_subtitle() is None

    def test_long_cue_spans_buckets(self, clock):
        sync = Synchronizer(bucket_size=0.25, clock=clock)
        sync.load_cues([cue("long", 1.0, 30.0)])
        sync.start()
        for t in (1.0, 7.3, 29.99):
            sync.update_current_time(t)
            assert sync.get_current_subtitle().id == "long"

    def test_invalid_cues_dropped(self, clock):
        sync = Synchronizer(clock=clock)
        kept = sync.load_cues([
            cue("ok", 1.0, 2.0),
            cue("reversed", 3.0, 2.0),
            cue("zero", 4.0, 4.0),
            cue("negative", -1.0, 2.0),
            cue("nan", math.nan, 2.0),
            cue("inf", 1.0, math.inf),
        ])
        assert kept == 1
        assert [c.id for c in sync.cues] == ["ok"]

    def test_empty(self, clock):
        sync = Synchronizer(clock=clock)
        assert sync.load_cues([]) == 0
        sync.start()
        sync.update_current_time(1.0)
        assert sync.get_current_subtitle() is None
        assert sync.get_next_cue() is None


class TestTransitions:
    """Test change publication."""

    def test_only_changes_published(self, sync, events):
        sync.start()
        for t in (0.5, 1.0, 1.5, 2.0, 2.5):
            sync.update_current_time(t)
        assert len(events) == 1
        assert events[0].direction == "enter"
        assert events[0].changed.text == "First"
        assert events[0].language == "eng"

        sync.update_current_time(3.0)
        assert len(events) == 2
        assert events[1].direction == "exit"
        assert events[1].cue is None

    def test_seek_backwards(self, sync, events):
        sync.start()
        sync.update_current_time(6.0)
        sync.update_current_time(1.5)
        assert [(e.direction, e.changed.id) for e in events] == [
            ("enter", "2"), ("exit", "2"), ("enter", "1"),
        ]
        assert events[-1].cue.id == "1"

    def test_start_at_position(self, sync, events):
        sync.start(2.0)
        assert events[0].changed.text == "First"
        assert sync.status is SyncStatus.STARTED

    def test_stop_hides_visible_cues(self, sync, events):
        sync.start(2.0)
        sync.stop()
        assert events[-1].direction == "exit"
        assert sync.status is SyncStatus.STOPPED

    def test_invalid_times_ignored(self, sync, events):
        sync.start()
        sync.update_current_time(2.0)
        for bad in (math.nan, math.inf, -1.0, None, "2.0"):
            sync.update_current_time(bad)
        assert sync.get_current_subtitle().text == "First"
        assert len(events) == 1
        assert sync.metrics()["ignored_updates"] == 5

    def test_failing_handler_does_not_break_updates(self, sync):
        def broken(event):
            raise RuntimeError("boom")

        sync.subtitle_changed.register(broken)
        sync.start()
        sync.update_current_time(2.0)
        assert sync.get_current_subtitle().text == "First"


class TestTimeline:
    """Test drift correction, seeks, rate and offsets."""

    def test_drift_corrected_in_bounded_steps(self, clock):
        sync = Synchronizer(drift_window=5, max_correction_step=0.03, clock=clock)
        sync.start(0.0)
        previous = 0.0
        for i in range(1, 31):
            clock.now = i * 0.1
            sync.update_current_time(i * 0.1 + 0.2)
            assert abs(sync.drift_correction - previous) <= 0.03 + 1e-9
            previous = sync.drift_correction

        assert 0.14 <= sync.drift_correction <= 0.2 + 1e-9
        assert abs(sync.predicted_time() - (3.0 + 0.2)) <= 0.06

    def test_single_step_capped(self, clock):
        sync = Synchronizer(max_correction_step=0.1, clock=clock)
        sync.start(0.0)
        clock.now = 1.0
        sync.update_current_time(1.5)
        assert sync.drift_correction == pytest.approx(0.1)

    def test_no_overshoot(self, clock):
        sync = Synchronizer(max_correction_step=1.0, seek_threshold=2.0, clock=clock)
        sync.start(0.0)
        clock.now = 1.0
        sync.update_current_time(1.3)
        assert sync.drift_correction == pytest.approx(0.3)

    def test_small_deviation_not_corrected(self, clock):
        sync = Synchronizer(clock=clock)
        sync.start(0.0)
        clock.now = 1.0
        sync.update_current_time(1.02)
        assert sync.drift_correction == 0.0
        assert sync.drift_estimate == pytest.approx(0.02)

    def test_seek_reanchors(self, clock):
        sync = Synchronizer(clock=clock)
        sync.start(0.0)
        clock.now = 1.0
        sync.update_current_time(1.5)
        clock.now = 2.0
        sync.update_current_time(60.0)
        assert sync.metrics()["seeks"] == 1
        assert sync.drift_correction == 0.0
        assert sync.predicted_time() == pytest.approx(60.0)

    def test_tick_follows_clock(self, sync, clock):
        assert sync.tick() is None
        sync.start(10.0)
        clock.now = 1.0
        assert sync.tick() == pytest.approx(11.0)

    def test_playback_rate(self, sync, clock):
        sync.start(10.0)
        clock.now = 1.0
        sync.set_playback_rate(2.0)
        clock.now = 2.0
        assert sync.tick() == pytest.approx(13.0)
        assert sync.playback_rate == 2.0

    @pytest.mark.parametrize("rate", [0, -1.0, math.nan, math.inf])
    def test_invalid_rate(self, sync, rate):
        with pytest.raises(ValueError):
            sync.set_playback_rate(rate)

    def test_timing_offset_delays_cues(self, sync):
        sync.start()
        sync.apply_timing_offset(1.0)
        sync.update_current_time(1.5)
        assert sync.get_current_subtitle() is None
        sync.update_current_time(2.0)
        assert sync.get_current_subtitle().text == "First"
        sync.update_current_time(3.5)
        assert sync.get_current_subtitle().text == "First"
        sync.update_current_time(4.0)
        assert sync.get_current_subtitle() is None

    def test_timing_offset_cumulative(self, sync):
        sync.apply_timing_offset(0.5)
        sync.apply_timing_offset(0.5)
        assert sync.timing_offset == pytest.approx(1.0)

    def test_timing_offset_reevaluates(self, sync, events):
        sync.start()
        sync.update_current_time(1.5)
        sync.apply_timing_offset(1.0)
        assert sync.get_current_subtitle() is None
        assert events[-1].direction == "exit"

    def test_invalid_offset(self, sync):
        with pytest.raises(ValueError):
            sync.apply_timing_offset(math.nan)


class TestQueries:

    def test_next_cue(self, sync):
        assert sync.get_next_cue(0.0).text == "First"
        assert sync.get_next_cue(2.0).text == "Second"
        assert sync.get_next_cue(6.0) is None

    def test_transition_hints(self, sync):
        sync.start()
        sync.update_current_time(1.1)
        fade_in = sync.transition()
        assert fade_in.kind == "fade_in"
        assert fade_in.progress == pytest.approx(0.5)

        sync.update_current_time(2.0)
        assert sync.transition().kind == "stable"

        sync.update_current_time(2.9)
        fade_out = sync.transition()
        assert fade_out.kind == "fade_out"
        assert fade_out.progress == pytest.approx(0.5)

        sync.update_current_time(4.0)
        assert sync.transition().kind == "none"

    def test_state_snapshot(self, sync):
        sync.start()
        sync.update_current_time(2.0)
        state = sync.state
        assert state.active_cue_ids == ("1",)
        assert state.last_update_time == 2.0
        assert state.active_language == "eng"

    def test_metrics(self, sync):
        sync.start()
        sync.update_current_time(1.05)
        metrics = sync.metrics()
        assert metrics["cue_count"] == 2
        assert metrics["update_count"] == 1
        assert metrics["transitions"] == 1
        assert metrics["accuracy_max_ms"] == pytest.approx(50.0)
        assert metrics["status"] == "started"

    def test_performance_warning(self, clock):
        sync = Synchronizer(update_budget_ms=-1.0, clock=clock)
        sync.load_cues(TWO_CUES)
        warnings = []
        sync.performance_warning.register(warnings.append)
        sync.update_current_time(1.0)
        assert len(warnings) == 1
        assert sync.metrics()["slow_updates"] == 1

    def test_from_config(self, clock):
        sync = Synchronizer.from_config(SyncConfig(bucket_size=2.0), language="spa", clock=clock)
        assert sync.bucket_size == 2.0
        assert sync.language == "spa"


class TestLifecycle:
    """Test handle ownership and teardown."""

    def test_destroy_detaches_handle(self, clock):
        registry = HandleRegistry()
        handle = registry.create("WEBVTT")
        sync = Synchronizer(clock=clock)
        sync.load_cues(TWO_CUES, handle=handle)
        assert handle.consumers == 1
        sync.destroy()
        sync.destroy()
        assert handle.released
        assert sync.destroyed
        assert sync.cues == []

    def test_reload_swaps_handle(self, clock):
        registry = HandleRegistry()
        first = registry.create("a")
        second = registry.create("b")
        sync = Synchronizer(clock=clock)
        sync.load_cues(TWO_CUES, handle=first)
        sync.load_cues(TWO_CUES, handle=second)
        assert first.released
        assert not second.released

    def test_start_after_destroy_ignored(self, sync):
        sync.destroy()
        sync.start()
        assert sync.status is SyncStatus.STOPPED

    def test_destroy_clears_handlers(self, sync, events):
        sync.destroy()
        assert len(sync.subtitle_changed) == 0
