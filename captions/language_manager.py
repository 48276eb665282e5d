"""
Language Manager — Multi-language caption selection, caching and switching.

One manager is created per playback session and destroyed explicitly.
It owns:
  - the language catalog (best candidate per language, above a quality threshold)
  - a bounded content cache (TTL, then LRU)
  - a registry of content handles, one per materialized synchronizer
  - one synchronizer per materialized language, exactly one of them active

Manager operations are all-or-nothing: new synchronizers are built before
any state changes, and a failure leaves the previous catalog and active
language untouched. A newer load or switch supersedes older in-flight
ones; their results are discarded.

Usage:
    manager = LanguageManager(LocalFileSource("subs/"), config)
    manager.load_languages({"eng": [...], "spa": [...]})
    manager.update_time(12.3)
    manager.switch_language("spa")
    manager.destroy()
"""

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .content_cache import ContentCache
from .cue_parser import CueParser, ParseDiagnostics, ParseOptions
from .diagnostics import DiagnosticsSnapshot
from .errors import (
    CaptionError,
    FatalParseError,
    LanguageNotAvailableError,
    NoCuesError,
    SwitchError,
)
from .events import CacheUpdateEvent, ErrorEvent, LanguageChangeEvent, Signal
from .quality_scorer import Candidate, QualityScorer
from .resources import HandleRegistry
from .sources import SubtitleSource
from .synchronizer import Synchronizer

logger = logging.getLogger(__name__)

LANGUAGE_PRIORITY_PRESETS: Dict[str, List[str]] = {
    "english_first": ["eng", "spa", "fre", "ger", "ita", "por", "rus", "ara"],
    "spanish_first": ["spa", "eng", "por", "fre", "ita", "ger", "rus", "ara"],
    "european": ["eng", "fre", "ger", "ita", "spa", "por", "rus", "ara"],
    "global": ["eng", "spa", "fre", "ger", "ita", "por", "rus", "ara", "chi", "jpn"],
}

DEFAULT_QUALITY_THRESHOLD = 0.3


@dataclass
class LanguageEntry:
    """One registered language and its chosen candidate."""
    language_code: str
    candidates: List[Candidate]
    best_candidate: Candidate
    quality_score: float
    loaded_at: float = field(default_factory=time.time)


@dataclass
class ManagerMetrics:
    language_switches: int = 0
    failed_switches: int = 0
    superseded_requests: int = 0
    source_fetches: int = 0
    preloads: int = 0
    preload_failures: int = 0
    synchronizers_created: int = 0
    synchronizers_destroyed: int = 0


def resolve_priority(priority: Union[str, Sequence[str], None]) -> List[str]:
    """Accept a preset name or an explicit list of language codes."""
    if priority is None:
        return list(LANGUAGE_PRIORITY_PRESETS["english_first"])
    if isinstance(priority, str):
        preset = LANGUAGE_PRIORITY_PRESETS.get(priority)
        if preset is None:
            return [code.strip() for code in priority.split(",") if code.strip()]
        return list(preset)
    return [str(code) for code in priority]


class LanguageManager:
    """
    Orchestrates caption languages for one playback session.

    Args:
        source: Subtitle source used to fetch candidate content.
        config: AppConfig-like object (sections: parser, scoring, cache,
            languages, sync). Missing sections fall back to defaults.
        parser: Optional CueParser override.
        scorer: Optional QualityScorer override.
        clock: Monotonic clock shared with the cache and synchronizers.
    """

    def __init__(self, source: SubtitleSource, config=None,
                 parser: Optional[CueParser] = None,
                 scorer: Optional[QualityScorer] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.source = source
        self.config = config
        lang_cfg = getattr(config, "languages", None)
        cache_cfg = getattr(config, "cache", None)
        self._sync_cfg = getattr(config, "sync", None)
        self._clock = clock

        self.parser = parser or CueParser(ParseOptions.from_config(getattr(config, "parser", None)))
        self.scorer = scorer or QualityScorer.from_config(getattr(config, "scoring", None))

        self.quality_threshold = getattr(lang_cfg, "quality_threshold", DEFAULT_QUALITY_THRESHOLD)
        self.auto_select = getattr(lang_cfg, "auto_select", True)
        self.preload_next = getattr(lang_cfg, "preload_next", True)
        self.cleanup_interval = getattr(lang_cfg, "cleanup_interval", 0.0)
        self._priority = resolve_priority(getattr(lang_cfg, "priority", None))

        self.cache = ContentCache(
            max_entries=getattr(cache_cfg, "max_cached_languages", 5),
            max_bytes=int(getattr(cache_cfg, "max_cache_size_mb", 50) * 1024 * 1024),
            ttl=getattr(cache_cfg, "ttl_seconds", 30 * 60),
            clock=clock,
        )
        self.handles = HandleRegistry()
        self.metrics = ManagerMetrics()

        # Observer signals
        self.language_changed = Signal("language_changed")
        self.subtitle_changed = Signal("subtitle_changed")
        self.cache_updated = Signal("cache_updated")
        self.error = Signal("error")

        # Session state (guarded by _lock)
        self._lock = threading.RLock()
        self._languages: Dict[str, LanguageEntry] = {}
        self._synchronizers: Dict[str, Synchronizer] = {}
        self._parse_reports: Dict[str, ParseDiagnostics] = {}
        self._active_language: Optional[str] = None
        self._position = 0.0
        self._request_seq = 0
        self._catalog_generation = 0
        self._destroyed = False

        # Background work
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="caption-preload")
        self._pending: List[Future] = []
        self._cleanup_stop = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        if self.cleanup_interval and self.cleanup_interval > 0:
            self._start_cleanup_thread()

        logger.info(
            f"Language manager ready: priority={','.join(self._priority)}, "
            f"cache={self.cache.max_entries} languages / "
            f"{self.cache.max_bytes / 1024 / 1024:.0f}MB, "
            f"threshold={self.quality_threshold:.2f}"
        )

    # ═══════════════════════════════════════════════════════
    # Read-only views
    # ═══════════════════════════════════════════════════════

    @property
    def active_language(self) -> Optional[str]:
        return self._active_language

    @property
    def active_synchronizer(self) -> Optional[Synchronizer]:
        with self._lock:
            return self._synchronizers.get(self._active_language)

    @property
    def language_priority(self) -> List[str]:
        return list(self._priority)

    @property
    def languages(self) -> Dict[str, LanguageEntry]:
        with self._lock:
            return dict(self._languages)

    @property
    def position(self) -> float:
        return self._position

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def synchronizer_for(self, language_code: str) -> Optional[Synchronizer]:
        with self._lock:
            return self._synchronizers.get(language_code)

    @staticmethod
    def cache_key(entry: LanguageEntry) -> str:
        """Cache key from language, candidate identity and popularity snapshot."""
        best = entry.best_candidate
        return f"{entry.language_code}_{best.id or best.file_name}_{best.download_count}"

    # ═══════════════════════════════════════════════════════
    # Loading
    # ═══════════════════════════════════════════════════════

    def load_languages(self, mapping: Mapping[str, Iterable[Any]],
                       auto_select: Optional[bool] = None,
                       preload_all: bool = False,
                       quality_threshold: Optional[float] = None) -> bool:
        """
        Replace the language catalog.

        Args:
            mapping: language code -> candidates (Candidate objects or dicts).
            auto_select: Activate the best language (default from config).
            preload_all: Fetch every language's content in the background.
            quality_threshold: Minimum best-candidate score to register a
                language (default from config).

        Returns:
            True if the catalog was committed, False if a newer request
            superseded this one.

        Raises:
            SwitchError: If the auto-selected language cannot be materialized.
                The previous catalog stays in place.
        """
        self._check_alive()
        threshold = self.quality_threshold if quality_threshold is None else quality_threshold
        auto = self.auto_select if auto_select is None else auto_select

        try:
            entries = self._build_catalog(mapping, threshold)
        except (AttributeError, TypeError, ValueError) as e:
            error = CaptionError(f"Invalid candidate metadata: {e}")
            self.error.emit(ErrorEvent("load_languages", error))
            raise error from e

        with self._lock:
            self._request_seq += 1
            seq = self._request_seq

        best_code = self._best_of(entries) if auto else None
        sync = None
        if best_code is not None:
            try:
                sync = self._build_synchronizer(best_code, entries[best_code])
            except SwitchError as e:
                logger.error(f"Failed to load languages: {e}")
                self.error.emit(ErrorEvent("load_languages", e, best_code))
                raise

        with self._lock:
            if seq != self._request_seq or self._destroyed:
                self.metrics.superseded_requests += 1
                logger.info("Language load superseded by a newer request, discarding")
                if sync is not None:
                    self._destroy_synchronizer(sync)
                return False

            previous = self._active_language
            self._teardown_synchronizers()
            self._languages = entries
            self._parse_reports = {
                code: report for code, report in self._parse_reports.items() if code in entries
            }
            self._catalog_generation += 1
            self._active_language = None
            if sync is not None:
                self._activate(best_code, sync, True, "auto_select", previous)

        logger.info(
            f"Loaded {len(entries)} languages ({', '.join(entries) or 'none'}), "
            f"active={self._active_language}"
        )

        if preload_all:
            self.preload_all_languages()
        elif sync is not None and self.preload_next:
            self._schedule_preload_next(best_code)
        return True

    def _build_catalog(self, mapping: Mapping[str, Iterable[Any]],
                       threshold: float) -> Dict[str, LanguageEntry]:
        entries: Dict[str, LanguageEntry] = {}
        for code, raw_candidates in mapping.items():
            candidates = []
            for c in raw_candidates or []:
                if isinstance(c, Candidate):
                    candidates.append(c)
                elif isinstance(c, Mapping):
                    candidates.append(Candidate.from_dict(c, code))
                else:
                    raise TypeError(f"candidate for {code} must be a mapping, got {type(c).__name__}")
            if not candidates:
                logger.debug(f"Skipping {code}: no candidates")
                continue

            best = self.scorer.select_best(candidates)
            if best.quality_score < threshold:
                logger.debug(
                    f"Skipping {code}: best quality {best.quality_score:.2f} "
                    f"below threshold {threshold:.2f}"
                )
                continue

            entries[code] = LanguageEntry(code, candidates, best, best.quality_score)
            logger.debug(
                f"Registered {code}: {len(candidates)} candidates, "
                f"best={best.file_name or best.id} ({best.quality_score:.2f})"
            )
        return entries

    # ═══════════════════════════════════════════════════════
    # Switching
    # ═══════════════════════════════════════════════════════

    def switch_language(self, language_code: str, preserve_time: bool = True,
                        reason: str = "manual", force_reload: bool = False) -> bool:
        """
        Activate a registered language.

        Returns:
            True once the language is active, False if a newer request
            superseded this switch before it could commit.

        Raises:
            LanguageNotAvailableError: Unknown language code.
            NoCuesError: The language's content has no usable cues.
            SwitchError: The content could not be fetched.
        """
        self._check_alive()
        with self._lock:
            entry = self._languages.get(language_code)
            if entry is None:
                self.metrics.failed_switches += 1
                error = LanguageNotAvailableError(
                    f"Language {language_code} is not available "
                    f"(registered: {', '.join(self._languages) or 'none'})",
                    language_code,
                )
                logger.error(f"Error switching language: {error}")
                self.error.emit(ErrorEvent("switch_language", error, language_code))
                raise error

            existing = None if force_reload else self._synchronizers.get(language_code)
            if (existing is not None and language_code == self._active_language
                    and existing.is_started):
                logger.debug(f"{language_code} already active")
                return True

            self._request_seq += 1
            seq = self._request_seq
            generation = self._catalog_generation

        logger.info(
            f"Switching language: {self._active_language} -> {language_code} ({reason})"
        )

        sync = existing
        if sync is None:
            try:
                sync = self._build_synchronizer(language_code, entry, force_reload)
            except SwitchError as e:
                with self._lock:
                    self.metrics.failed_switches += 1
                logger.error(f"Error switching language: {e}")
                self.error.emit(ErrorEvent("switch_language", e, language_code))
                raise

        retry = False
        with self._lock:
            stale = (seq != self._request_seq
                     or generation != self._catalog_generation
                     or self._destroyed)
            if stale:
                self.metrics.superseded_requests += 1
                logger.info(f"Switch to {language_code} superseded, discarding")
                if existing is None:
                    self._destroy_synchronizer(sync)
                return False

            if sync.destroyed:
                # Cleaned up while idle; rebuild from the cache
                self._synchronizers.pop(language_code, None)
                retry = True
            else:
                replaced = self._synchronizers.get(language_code)
                if replaced is not None and replaced is not sync:
                    self._destroy_synchronizer(replaced)
                    self._synchronizers.pop(language_code, None)
                self._activate(language_code, sync, preserve_time, reason, self._active_language)

        if retry:
            return self.switch_language(language_code, preserve_time, reason)

        if self.preload_next:
            self._schedule_preload_next(language_code)
        return True

    def _activate(self, code: str, sync: Synchronizer, preserve_time: bool,
                  reason: str, previous: Optional[str]):
        """Stop the old synchronizer, start the new one, announce. Caller holds the lock."""
        position = self._position if preserve_time else 0.0
        old = self._synchronizers.get(self._active_language)
        if old is not None and old is not sync:
            old.stop()

        self._synchronizers[code] = sync
        self._active_language = code
        sync.start(position)
        self.metrics.language_switches += 1

        logger.info(f"Language switch completed: {code} (resumed at {position:.2f}s)")
        self.language_changed.emit(LanguageChangeEvent(previous, code, reason, position))

    def _build_synchronizer(self, code: str, entry: LanguageEntry,
                            force_reload: bool = False) -> Synchronizer:
        """Fetch (cached), parse and load a synchronizer. Touches no session state."""
        content = self._get_content(code, entry, force_reload)
        try:
            result = self.parser.parse(content)
        except FatalParseError as e:
            raise NoCuesError(f"No valid cues found for language {code}: {e}", code) from e

        with self._lock:
            self._parse_reports[code] = result.diagnostics
        if not result.cues:
            raise NoCuesError(f"No valid cues found for language {code}", code)

        best = entry.best_candidate
        handle = self.handles.create(content, label=f"{code}:{best.file_name or best.id}")
        sync = Synchronizer.from_config(self._sync_cfg, language=code, clock=self._clock)
        sync.load_cues(result.cues, handle=handle)
        sync.subtitle_changed.register(self._forward_subtitle)

        with self._lock:
            self.metrics.synchronizers_created += 1
        logger.info(
            f"Synchronizer created for {code}: {len(result.cues)} cues, "
            f"{len(result.warnings)} warnings ({type(result).__name__})"
        )
        return sync

    def _forward_subtitle(self, event):
        if event.language == self._active_language:
            self.subtitle_changed.emit(event)

    def _get_content(self, code: str, entry: LanguageEntry, force_reload: bool = False) -> str:
        """Cached content for a language, downloading on a miss."""
        key = self.cache_key(entry)
        if not force_reload:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Using cached caption content for {code}")
                return cached

        content = self._fetch_content(code, entry)
        self._commit_content(key, code, content)
        return content

    def _fetch_content(self, code: str, entry: LanguageEntry) -> str:
        """Download and decode a language's best candidate. Touches no cache state."""
        best = entry.best_candidate
        logger.info(f"Downloading captions for {code}: {best.file_name or best.id}")
        with self._lock:
            self.metrics.source_fetches += 1
        try:
            raw = self.source.fetch(best)
        except Exception as e:
            raise SwitchError(f"Failed to fetch captions for {code}: {e}", code) from e

        content = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        if not isinstance(content, str):
            raise SwitchError(
                f"Source returned {type(content).__name__} for {code}, expected text", code
            )
        return content

    def _commit_content(self, key: str, code: str, content: str):
        cached = self.cache.put(key, content)
        self.cache_updated.emit(
            CacheUpdateEvent(key, code, cached, len(content.encode("utf-8")))
        )

    # ═══════════════════════════════════════════════════════
    # Priority
    # ═══════════════════════════════════════════════════════

    def get_best_available_language(self) -> Optional[str]:
        """First priority language available, else the highest-scoring one."""
        with self._lock:
            return self._best_of(self._languages)

    def _best_of(self, entries: Mapping[str, LanguageEntry]) -> Optional[str]:
        for code in self._priority:
            if code in entries:
                return code
        if not entries:
            return None
        return max(entries.values(), key=lambda e: e.quality_score).language_code

    def set_language_priority(self, codes: Union[str, Sequence[str]]):
        """
        Replace the priority list (codes or a preset name).

        Switches automatically when a higher-priority language is available.
        A failed automatic switch is logged; the new priority still applies.
        """
        self._check_alive()
        with self._lock:
            self._priority = resolve_priority(codes)
            best = self._best_of(self._languages) if self._languages else None
            current = self._active_language
        logger.info(f"Language priority set: {', '.join(self._priority)}")

        if best is not None and best != current:
            logger.info(f"Priority change suggests new best language: {best}")
            try:
                self.switch_language(best, reason="priority_change")
            except SwitchError as e:
                logger.warning(f"Automatic switch to {best} failed: {e}")

    # ═══════════════════════════════════════════════════════
    # Playback
    # ═══════════════════════════════════════════════════════

    def update_time(self, t: float):
        """Forward the player clock to the active synchronizer."""
        if isinstance(t, (int, float)) and math.isfinite(t) and t >= 0:
            self._position = float(t)
        sync = self.active_synchronizer
        if sync is not None:
            sync.update_current_time(t)

    def tick(self) -> Optional[float]:
        sync = self.active_synchronizer
        return sync.tick() if sync is not None else None

    def get_current_subtitle(self):
        sync = self.active_synchronizer
        return sync.get_current_subtitle() if sync is not None else None

    def get_active_subtitles(self) -> list:
        sync = self.active_synchronizer
        return sync.get_active_subtitles() if sync is not None else []

    # ═══════════════════════════════════════════════════════
    # Background preload
    # ═══════════════════════════════════════════════════════

    def preload_all_languages(self) -> List[Future]:
        """Fetch every registered language's content in the background."""
        with self._lock:
            codes = list(self._languages)
        logger.info(f"Preloading {len(codes)} languages...")
        return [f for f in (self._submit_preload(code) for code in codes) if f is not None]

    def _schedule_preload_next(self, current: str) -> Optional[Future]:
        with self._lock:
            if current not in self._priority:
                return None
            following = self._priority[self._priority.index(current) + 1:]
            next_code = next((c for c in following if c in self._languages), None)
        if next_code is None:
            return None
        return self._submit_preload(next_code)

    def _submit_preload(self, code: str) -> Optional[Future]:
        with self._lock:
            if self._destroyed:
                return None
            generation = self._catalog_generation
            self._pending = [f for f in self._pending if not f.done()]
            try:
                future = self._executor.submit(self._preload, code, generation)
            except RuntimeError:
                return None
            self._pending.append(future)
            return future

    def _preload(self, code: str, generation: int) -> bool:
        """
        Worker: warm the cache for one language. Never raises.

        The catalog generation is checked again after the download; a
        result that lands after clear(), a reload or destroy() is dropped.
        """
        try:
            with self._lock:
                entry = self._languages.get(code)
                if not self._preload_current(generation) or entry is None:
                    logger.debug(f"Preload of {code} discarded (catalog changed)")
                    return False
            key = self.cache_key(entry)
            if self.cache.has(key):
                logger.debug(f"Preload of {code} skipped, already cached")
                return True

            content = self._fetch_content(code, entry)
            with self._lock:
                if not self._preload_current(generation):
                    logger.debug(f"Preload of {code} discarded after download (catalog changed)")
                    return False
                cached = self.cache.put(key, content)
                self.metrics.preloads += 1
            self.cache_updated.emit(
                CacheUpdateEvent(key, code, cached, len(content.encode("utf-8")))
            )
            logger.info(f"Preloaded {code}")
            return True
        except Exception as e:
            with self._lock:
                self.metrics.preload_failures += 1
            logger.warning(f"Failed to preload {code}: {e}")
            return False

    def _preload_current(self, generation: int) -> bool:
        """Caller holds the lock."""
        return generation == self._catalog_generation and not self._destroyed

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """Block until queued background work finishes. True if all finished."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ═══════════════════════════════════════════════════════
    # Introspection & maintenance
    # ═══════════════════════════════════════════════════════

    def get_available_languages(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "language_code": code,
                    "quality_score": entry.quality_score,
                    "candidate_count": len(entry.candidates),
                    "best_file_name": entry.best_candidate.file_name,
                    "cached": self.cache.has(self.cache_key(entry)),
                    "active": code == self._active_language,
                }
                for code, entry in self._languages.items()
            ]

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self.cache.stats
        with self._lock:
            return {
                "cache_hits": stats.hits,
                "cache_misses": stats.misses,
                "cache_evictions": stats.evictions,
                "cache_expirations": stats.expirations,
                "cache_rejected": stats.rejected,
                "cached_languages": len(self.cache),
                "cache_size_bytes": self.cache.total_bytes,
                "available_languages": len(self._languages),
                "synchronizers": len(self._synchronizers),
                **self.handles.stats(),
                **asdict(self.metrics),
            }

    def perform_periodic_cleanup(self) -> int:
        """
        Enforce cache limits and destroy idle synchronizers.

        Returns:
            Number of synchronizers destroyed.
        """
        removed_entries = self.cache.enforce_limits()
        with self._lock:
            idle = [
                code for code, sync in self._synchronizers.items()
                if code != self._active_language and not sync.is_started
            ]
            for code in idle:
                self._destroy_synchronizer(self._synchronizers.pop(code))
        if idle or removed_entries:
            logger.info(
                f"Periodic cleanup: {len(idle)} idle synchronizers, "
                f"{removed_entries} cache entries removed"
            )
        return len(idle)

    def _start_cleanup_thread(self):
        def _loop():
            while not self._cleanup_stop.wait(self.cleanup_interval):
                try:
                    self.perform_periodic_cleanup()
                except Exception as e:
                    logger.error(f"Periodic cleanup failed: {e}", exc_info=True)

        self._cleanup_thread = threading.Thread(
            target=_loop, daemon=True, name="caption-cleanup"
        )
        self._cleanup_thread.start()

    def export_diagnostics(self, include_process: bool = True) -> DiagnosticsSnapshot:
        """Structured snapshot for a telemetry collaborator."""
        sync = self.active_synchronizer
        with self._lock:
            parse = {code: report.to_dict() for code, report in self._parse_reports.items()}
            active = self._active_language
        return DiagnosticsSnapshot.capture(
            include_process=include_process,
            active_language=active,
            languages=self.get_available_languages(),
            parse=parse,
            cache=self.get_cache_stats(),
            handles=self.handles.stats(),
            sync=sync.metrics() if sync is not None else {},
        )

    # ═══════════════════════════════════════════════════════
    # Teardown
    # ═══════════════════════════════════════════════════════

    def _destroy_synchronizer(self, sync: Synchronizer):
        if not sync.destroyed:
            sync.destroy()
            self.metrics.synchronizers_destroyed += 1

    def _teardown_synchronizers(self):
        for sync in self._synchronizers.values():
            self._destroy_synchronizer(sync)
        self._synchronizers.clear()

    def clear(self):
        """Drop every language, synchronizer, cached document and handle."""
        with self._lock:
            self._request_seq += 1
            self._catalog_generation += 1
            self._teardown_synchronizers()
            self._languages.clear()
            self._parse_reports.clear()
            self._active_language = None
            self.cache.clear()
        released = self.handles.release_all()
        logger.info(f"Cleared all languages ({released} leftover handles released)")

    def destroy(self):
        """Tear the session down. Idempotent."""
        if self._destroyed:
            return
        logger.info("Destroying language manager")
        self.clear()
        with self._lock:
            self._destroyed = True
        self._cleanup_stop.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=2.0)
        self._executor.shutdown(wait=False, cancel_futures=True)
        for signal in (self.language_changed, self.subtitle_changed,
                       self.cache_updated, self.error):
            signal.clear()

    def _check_alive(self):
        if self._destroyed:
            raise CaptionError("Language manager has been destroyed")

    def __enter__(self) -> "LanguageManager":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.destroy()
        return False
