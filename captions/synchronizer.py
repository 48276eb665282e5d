"""
Synchronizer — Keeps the visible caption in step with a playback clock.

Lookup:
    Cues are filtered and sorted once in load_cues(), then indexed into
    fixed-width time buckets. A time update only inspects the cues of one
    bucket, so cost stays flat for thousands of cues. Intervals are
    half-open: a cue is visible exactly at its start and hidden exactly
    at its end.

Drift:
    An internal timeline is anchored to the player clock (at start, seek
    or rate change) and extrapolated with a monotonic clock:
        predicted = anchor_time + elapsed * rate + correction
    Each external update measures its deviation from the prediction. Small
    deviations feed a sliding window whose median is the drift estimate;
    once it passes drift_threshold a bounded correction step is applied.
    Jumps above seek_threshold are treated as seeks and re-anchor.
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .cue_parser import Cue
from .events import Signal, SubtitleChangeEvent
from .resources import ResourceHandle

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    STOPPED = "stopped"
    STARTED = "started"


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the synchronizer's mutable state."""
    active_language: Optional[str]
    active_cue_ids: Tuple[str, ...]
    last_update_time: Optional[float]
    drift_estimate: float
    drift_correction: float
    status: SyncStatus


@dataclass(frozen=True)
class Transition:
    """Fade hint for the current cue ("none", "fade_in", "stable", "fade_out")."""
    kind: str
    progress: float


class Synchronizer:
    """
    Maps playback time to active cues and publishes visibility changes.

    Calls on one instance are expected to come from a single owner.
    Nothing here raises during steady-state updates.
    """

    def __init__(self, language: Optional[str] = None,
                 bucket_size: float = 1.0,
                 drift_threshold: float = 0.05,
                 drift_window: int = 20,
                 max_correction_step: float = 0.1,
                 seek_threshold: float = 1.0,
                 update_budget_ms: float = 5.0,
                 transition_duration: float = 0.2,
                 clock: Callable[[], float] = time.monotonic):
        self.language = language
        self.bucket_size = bucket_size if bucket_size > 0 else 1.0
        self.drift_threshold = drift_threshold
        self.max_correction_step = max_correction_step
        self.seek_threshold = seek_threshold
        self.update_budget_ms = update_budget_ms
        self.transition_duration = transition_duration
        self._clock = clock

        self.subtitle_changed = Signal("subtitle_changed")
        self.performance_warning = Signal("performance_warning")

        self._cues: List[Cue] = []
        self._starts = np.empty(0)
        self._buckets: Dict[int, List[int]] = {}
        self._active: List[int] = []
        self._status = SyncStatus.STOPPED
        self._handle: Optional[ResourceHandle] = None
        self._destroyed = False

        # Timeline
        self._rate = 1.0
        self._offset = 0.0
        self._anchor_time: Optional[float] = None
        self._anchor_clock = 0.0
        self._correction = 0.0
        self._drift_estimate = 0.0
        self._deviations: Deque[float] = deque(maxlen=max(1, drift_window))
        self._last_time: Optional[float] = None

        # Metrics
        self._update_count = 0
        self._total_update_ms = 0.0
        self._max_update_ms = 0.0
        self._slow_updates = 0
        self._transitions = 0
        self._seeks = 0
        self._corrections = 0
        self._ignored_updates = 0
        self._accuracy_ms: Deque[float] = deque(maxlen=1000)

    @classmethod
    def from_config(cls, config, language: Optional[str] = None,
                    clock: Callable[[], float] = time.monotonic) -> "Synchronizer":
        """Build a synchronizer from a SyncConfig-like object."""
        return cls(
            language=language,
            bucket_size=getattr(config, "bucket_size", 1.0),
            drift_threshold=getattr(config, "drift_threshold", 0.05),
            drift_window=getattr(config, "drift_window", 20),
            max_correction_step=getattr(config, "max_correction_step", 0.1),
            seek_threshold=getattr(config, "seek_threshold", 1.0),
            update_budget_ms=getattr(config, "update_budget_ms", 5.0),
            transition_duration=getattr(config, "transition_duration", 0.2),
            clock=clock,
        )

    # ═══════════════════════════════════════════════════════
    # Loading
    # ═══════════════════════════════════════════════════════

    def load_cues(self, cues: Iterable[Cue], handle: Optional[ResourceHandle] = None) -> int:
        """
        Load cues and build the bucket index.

        Cues with non-finite times, a negative start, or end <= start are
        dropped here and never looked at again.

        Args:
            cues: Cue list (any order).
            handle: Optional content handle this synchronizer consumes.
                It is attached now and detached on destroy().

        Returns:
            Number of cues kept.
        """
        cues = list(cues)
        valid = [
            c for c in cues
            if math.isfinite(c.start) and math.isfinite(c.end)
            and c.start >= 0 and c.end > c.start
        ]
        dropped = len(cues) - len(valid)
        valid.sort(key=lambda c: (c.start, c.end))

        buckets: Dict[int, List[int]] = {}
        for idx, cue in enumerate(valid):
            first = int(cue.start // self.bucket_size)
            last = max(first, int(math.ceil(cue.end / self.bucket_size)) - 1)
            for bucket in range(first, last + 1):
                buckets.setdefault(bucket, []).append(idx)

        self._cues = valid
        self._starts = np.array([c.start for c in valid], dtype=float)
        self._buckets = buckets
        self._active = []

        if handle is not None and handle is not self._handle:
            handle.attach()
            self._release_handle()
            self._handle = handle

        if dropped:
            logger.warning(f"Dropped {dropped} invalid cues ({len(valid)} kept)")
        logger.info(
            f"Loaded {len(valid)} cues into synchronizer"
            f"{f' [{self.language}]' if self.language else ''} "
            f"({len(buckets)} buckets of {self.bucket_size:g}s)"
        )

        if self._status is SyncStatus.STARTED and self._last_time is not None:
            self._evaluate(self._last_time)
        return len(valid)

    @property
    def cues(self) -> List[Cue]:
        return list(self._cues)

    @property
    def handle(self) -> Optional[ResourceHandle]:
        return self._handle

    # ═══════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_started(self) -> bool:
        return self._status is SyncStatus.STARTED

    def start(self, position: Optional[float] = None):
        """Start publishing transitions, optionally resuming at a position."""
        if self._destroyed:
            logger.warning("start() on a destroyed synchronizer ignored")
            return
        self._status = SyncStatus.STARTED
        self._active = []
        if position is not None and math.isfinite(position) and position >= 0:
            self._reanchor(position, self._clock())
            self._last_time = float(position)
            self._evaluate(position)
        elif self._last_time is not None:
            self._reanchor(self._last_time, self._clock())
            self._evaluate(self._last_time)
        logger.debug(f"Synchronizer started{f' [{self.language}]' if self.language else ''}")

    def stop(self):
        """Stop publishing. Visible cues are hidden with exit transitions."""
        if self._status is SyncStatus.STOPPED:
            return
        timestamp = self._last_time if self._last_time is not None else 0.0
        self._set_active([], timestamp)
        self._status = SyncStatus.STOPPED
        logger.debug(f"Synchronizer stopped{f' [{self.language}]' if self.language else ''}")

    def destroy(self):
        """Stop, detach the content handle and drop all handlers. Idempotent."""
        if self._destroyed:
            return
        self.stop()
        self._release_handle()
        self.subtitle_changed.clear()
        self.performance_warning.clear()
        self._cues = []
        self._starts = np.empty(0)
        self._buckets = {}
        self._active = []
        self._destroyed = True

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def _release_handle(self):
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.detach()

    # ═══════════════════════════════════════════════════════
    # Clock input
    # ═══════════════════════════════════════════════════════

    def update_current_time(self, t: float):
        """
        Feed the external playback clock (seconds).

        Non-finite or negative values are ignored.
        """
        if t is None or not isinstance(t, (int, float)) or not math.isfinite(t) or t < 0:
            self._ignored_updates += 1
            logger.debug(f"Ignoring invalid playback time: {t!r}")
            return

        began = time.perf_counter()
        self._observe_clock(float(t), self._clock())
        self._last_time = float(t)
        self._evaluate(float(t))
        self._record_update((time.perf_counter() - began) * 1000)

    def tick(self) -> Optional[float]:
        """
        Evaluate at the internal timeline's predicted position.

        Returns:
            The predicted playback time, or None if no timeline is anchored.
        """
        if self._anchor_time is None or self._status is not SyncStatus.STARTED:
            return None
        began = time.perf_counter()
        predicted = max(0.0, self.predicted_time())
        self._last_time = predicted
        self._evaluate(predicted)
        self._record_update((time.perf_counter() - began) * 1000)
        return predicted

    def predicted_time(self, now: Optional[float] = None) -> float:
        if self._anchor_time is None:
            return self._last_time or 0.0
        now = self._clock() if now is None else now
        return self._anchor_time + (now - self._anchor_clock) * self._rate + self._correction

    def set_playback_rate(self, rate: float):
        """Change the playback rate; the timeline re-anchors at the current position."""
        if not isinstance(rate, (int, float)) or not math.isfinite(rate) or rate <= 0:
            raise ValueError(f"Playback rate must be a positive number, got {rate!r}")
        now = self._clock()
        if self._anchor_time is not None:
            self._reanchor(self.predicted_time(now), now)
        self._rate = float(rate)
        logger.debug(f"Playback rate set to {rate:g}x")

    @property
    def playback_rate(self) -> float:
        return self._rate

    def apply_timing_offset(self, delta: float):
        """
        Shift all cues by delta seconds (positive delays captions). Cumulative.
        """
        if not isinstance(delta, (int, float)) or not math.isfinite(delta):
            raise ValueError(f"Timing offset must be a finite number, got {delta!r}")
        self._offset += float(delta)
        logger.info(f"Timing offset now {self._offset:+.3f}s")
        if self._status is SyncStatus.STARTED and self._last_time is not None:
            self._evaluate(self._last_time)

    @property
    def timing_offset(self) -> float:
        return self._offset

    @property
    def drift_estimate(self) -> float:
        return self._drift_estimate

    @property
    def drift_correction(self) -> float:
        return self._correction

    def _reanchor(self, position: float, now: float):
        self._anchor_time = position
        self._anchor_clock = now
        self._correction = 0.0
        self._drift_estimate = 0.0
        self._deviations.clear()

    def _observe_clock(self, t: float, now: float):
        """Compare an external time against the internal timeline."""
        if self._anchor_time is None or self._status is not SyncStatus.STARTED:
            self._reanchor(t, now)
            return

        deviation = t - self.predicted_time(now)
        if abs(deviation) > self.seek_threshold:
            self._seeks += 1
            logger.debug(f"Seek detected ({deviation:+.3f}s), re-anchoring at {t:.3f}s")
            self._reanchor(t, now)
            return

        self._deviations.append(deviation)
        estimate = float(np.median(self._deviations))
        self._drift_estimate = estimate
        if abs(estimate) > self.drift_threshold:
            step = max(-self.max_correction_step, min(self.max_correction_step, estimate))
            self._correction += step
            self._corrections += 1
            self._deviations.clear()
            logger.debug(
                f"Drift {estimate * 1000:+.1f}ms, correcting by {step * 1000:+.1f}ms "
                f"(total {self._correction * 1000:+.1f}ms)"
            )

    # ═══════════════════════════════════════════════════════
    # Lookup
    # ═══════════════════════════════════════════════════════

    def _lookup(self, t: float) -> List[int]:
        local = t - self._offset
        if local < 0:
            return []
        candidates = self._buckets.get(int(local // self.bucket_size), ())
        return [i for i in candidates if self._cues[i].start <= local < self._cues[i].end]

    def _evaluate(self, t: float):
        self._set_active(self._lookup(t), t)

    def _set_active(self, indices: List[int], t: float):
        previous = set(self._active)
        current = set(indices)
        if previous == current:
            return

        exited = [i for i in self._active if i not in current]
        entered = [i for i in indices if i not in previous]
        self._active = sorted(indices)

        if self._status is not SyncStatus.STARTED:
            return

        active = tuple(self._cues[i] for i in self._active)
        shown = active[-1] if active else None
        for i in exited:
            self._publish(shown, self._cues[i], t, "exit", active)
        for i in entered:
            cue = self._cues[i]
            self._accuracy_ms.append(abs(t - (cue.start + self._offset)) * 1000)
            self._publish(shown, cue, t, "enter", active)

    def _publish(self, shown, changed, t, direction, active):
        self._transitions += 1
        logger.debug(f"Cue {changed.id} {direction} at {t:.3f}s")
        self.subtitle_changed.emit(SubtitleChangeEvent(
            cue=shown, changed=changed, timestamp=t, direction=direction,
            active=active, language=self.language,
        ))

    def get_current_subtitle(self) -> Optional[Cue]:
        """Most recently started visible cue, or None."""
        return self._cues[self._active[-1]] if self._active else None

    def get_active_subtitles(self) -> List[Cue]:
        """All visible cues, earliest start first."""
        return [self._cues[i] for i in self._active]

    def get_next_cue(self, t: Optional[float] = None) -> Optional[Cue]:
        """First cue starting after t (defaults to the last known time)."""
        t = self._last_time if t is None else t
        if t is None:
            return self._cues[0] if self._cues else None
        local = t - self._offset
        idx = int(np.searchsorted(self._starts, local, side="right"))
        return self._cues[idx] if idx < len(self._cues) else None

    def transition(self, t: Optional[float] = None) -> Transition:
        """Fade hint for the current cue at time t."""
        cue = self.get_current_subtitle()
        t = self._last_time if t is None else t
        if cue is None or t is None:
            return Transition("none", 0.0)

        elapsed = t - self._offset - cue.start
        remaining = cue.end - (t - self._offset)
        fade = min(self.transition_duration, cue.duration / 2)
        if fade <= 0:
            return Transition("stable", 1.0)
        if elapsed < fade:
            return Transition("fade_in", max(0.0, elapsed / fade))
        if remaining < fade:
            return Transition("fade_out", min(1.0, 1.0 - remaining / fade))
        return Transition("stable", 1.0)

    # ═══════════════════════════════════════════════════════
    # Diagnostics
    # ═══════════════════════════════════════════════════════

    def _record_update(self, elapsed_ms: float):
        self._update_count += 1
        self._total_update_ms += elapsed_ms
        self._max_update_ms = max(self._max_update_ms, elapsed_ms)
        if elapsed_ms > self.update_budget_ms:
            self._slow_updates += 1
            self.performance_warning.emit({
                "update_ms": elapsed_ms,
                "budget_ms": self.update_budget_ms,
                "language": self.language,
            })

    @property
    def state(self) -> SyncState:
        return SyncState(
            active_language=self.language,
            active_cue_ids=tuple(self._cues[i].id for i in self._active),
            last_update_time=self._last_time,
            drift_estimate=self._drift_estimate,
            drift_correction=self._correction,
            status=self._status,
        )

    def metrics(self) -> dict:
        accuracy = np.array(self._accuracy_ms, dtype=float)
        return {
            "language": self.language,
            "cue_count": len(self._cues),
            "bucket_count": len(self._buckets),
            "status": self._status.value,
            "update_count": self._update_count,
            "average_update_ms": (
                self._total_update_ms / self._update_count if self._update_count else 0.0
            ),
            "max_update_ms": self._max_update_ms,
            "slow_updates": self._slow_updates,
            "ignored_updates": self._ignored_updates,
            "transitions": self._transitions,
            "seeks": self._seeks,
            "drift_corrections": self._corrections,
            "drift_estimate_ms": self._drift_estimate * 1000,
            "drift_correction_ms": self._correction * 1000,
            "timing_offset": self._offset,
            "playback_rate": self._rate,
            "accuracy_mean_ms": float(accuracy.mean()) if accuracy.size else 0.0,
            "accuracy_p95_ms": float(np.percentile(accuracy, 95)) if accuracy.size else 0.0,
            "accuracy_max_ms": float(accuracy.max()) if accuracy.size else 0.0,
        }

    def __repr__(self):
        return (
            f"Synchronizer({self.language or '-'}, {len(self._cues)} cues, "
            f"{self._status.value})"
        )
