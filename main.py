"""
Caption Sync — CLI Entry Point

Usage:
    python main.py captions.vtt
    python main.py captions.srt --export captions.vtt
    python main.py captions.vtt --simulate --offset 0.5 --rate 1.25
    python main.py --languages manifest.yaml --priority fre,eng --diagnostics
"""

import sys
import argparse
import logging
from pathlib import Path

import yaml

from config import load_config
from captions.cue_parser import CueParser, ParseOptions
from captions.cue_writer import CueWriter
from captions.diagnostics import DiagnosticsSnapshot
from captions.errors import CaptionError
from captions.language_manager import LanguageManager
from captions.sources import LocalFileSource
from captions.synchronizer import Synchronizer


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers
    )


class VirtualClock:
    """Manually advanced monotonic clock for replaying playback."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def simulate(update_time, clock: VirtualClock, duration: float,
             step: float, rate: float = 1.0):
    """Replay a virtual playback clock from 0 to duration."""
    position = 0.0
    while position <= duration:
        update_time(position)
        clock.now += step
        position = round(position + step * rate, 6)


def print_transition(event):
    arrow = "+" if event.direction == "enter" else "-"
    lang = f"[{event.language}] " if event.language else ""
    text = event.changed.text.replace("\n", " / ")[:60]
    print(f"  {event.timestamp:8.3f}s  {arrow} {lang}{event.changed.id}: {text}")


def load_manifest(path: Path):
    """
    Read a candidate manifest.

    Either a mapping of language code -> candidate list, or
    {directory: ..., languages: {code: [...]}}.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise CaptionError(f"Manifest {path} must be a mapping")

    directory = path.parent
    languages = raw
    if "languages" in raw:
        languages = raw.get("languages") or {}
        directory = path.parent / raw.get("directory", ".")
    return directory, languages


def run_file(args, config) -> int:
    if not args.file.exists():
        print(f"\n  [ERROR] Caption file not found: {args.file}")
        return 1

    parser = CueParser(ParseOptions.from_config(config.parser))
    result = parser.try_parse(args.file.read_bytes())
    stats = result.diagnostics.stats
    writer = CueWriter()

    if not result.ok:
        print(f"\n  [ERROR] {result.diagnostics.errors[0]}")
        return 1

    if not args.quiet:
        print(f"\n  [OK] {type(result).__name__}: {len(result.cues)} cues "
              f"({stats.format}, {stats.skipped_cues} skipped, "
              f"{stats.recovered_timestamps} recovered, {stats.processing_time_ms:.1f}ms)")
        for warning in result.warnings[:10]:
            print(f"  [WARN] {warning}")
        if len(result.warnings) > 10:
            print(f"  [WARN] ... and {len(result.warnings) - 10} more warnings")
        print(writer.write_preview(result.cues))

    if args.export:
        writer.write(result.cues, args.export)
        if not args.quiet:
            print(f"\n  [OK] Exported to: {args.export}")

    sync_metrics = {}
    if args.simulate:
        clock = VirtualClock()
        sync = Synchronizer.from_config(config.sync, clock=clock)
        sync.load_cues(result.cues)
        if args.offset:
            sync.apply_timing_offset(args.offset)
        sync.set_playback_rate(args.rate)
        sync.subtitle_changed.register(print_transition)
        sync.start(0.0)
        duration = max((c.end for c in result.cues), default=0.0) + args.offset + 1.0
        simulate(sync.update_current_time, clock, duration,
                 config.sync.update_interval, args.rate)
        sync_metrics = sync.metrics()
        sync.destroy()
        if not args.quiet:
            print(f"\n  [INFO] {sync_metrics['transitions']} transitions, "
                  f"accuracy p95 {sync_metrics['accuracy_p95_ms']:.1f}ms "
                  f"(target {config.sync.accuracy_target_ms:g}ms)")

    if args.diagnostics:
        snapshot = DiagnosticsSnapshot.capture(
            parse={args.file.name: result.diagnostics.to_dict()},
            sync=sync_metrics,
        )
        print(snapshot.to_json())
    return 0


def run_languages(args, config) -> int:
    if not args.languages.exists():
        print(f"\n  [ERROR] Manifest not found: {args.languages}")
        return 1

    directory, mapping = load_manifest(args.languages)
    clock = VirtualClock() if args.simulate else None
    extra = {"clock": clock} if clock else {}

    with LanguageManager(LocalFileSource(directory), config, **extra) as manager:
        manager.load_languages(mapping)
        manager.wait_for_background(timeout=10.0)

        if not args.quiet:
            print()
            for info in manager.get_available_languages():
                marker = "*" if info["active"] else " "
                print(f"  {marker} {info['language_code']:<5} score={info['quality_score']:.2f}  "
                      f"candidates={info['candidate_count']}  {info['best_file_name']}")
            print(f"\n  [OK] Active language: {manager.active_language or 'none'}")

        if args.simulate and manager.active_synchronizer is not None:
            sync = manager.active_synchronizer
            if args.offset:
                sync.apply_timing_offset(args.offset)
            sync.set_playback_rate(args.rate)
            manager.subtitle_changed.register(print_transition)
            duration = max((c.end for c in sync.cues), default=0.0) + args.offset + 1.0
            simulate(manager.update_time, clock, duration,
                     config.sync.update_interval, args.rate)

        if args.diagnostics:
            print(manager.export_diagnostics().to_json())
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Caption Sync — Parse, select and synchronize timed-text captions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py movie.vtt                          # Parse and preview
  python main.py movie.srt --export movie.vtt       # Convert SRT to WebVTT
  python main.py movie.vtt --strict                 # Fail on any malformation
  python main.py movie.vtt --simulate --rate 1.5    # Replay a virtual clock
  python main.py --languages manifest.yaml          # Pick the best language
  python main.py --languages manifest.yaml --priority fre,eng
        """
    )

    parser.add_argument(
        "file",
        type=Path,
        nargs="?",
        help="Caption file to parse (.vtt, .srt)"
    )
    parser.add_argument(
        "--languages",
        type=Path,
        default=None,
        help="Candidate manifest (YAML) to load through the language manager"
    )
    parser.add_argument(
        "--priority",
        default=None,
        help="Comma-separated language priority (e.g., 'fre,eng')"
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum quality score for a language (default: 0.3)"
    )
    parser.add_argument(
        "--preset",
        default=None,
        choices=["download_focused", "rating_focused", "balanced"],
        help="Quality scoring weight preset"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Raise on any structural problem instead of skipping cues"
    )
    parser.add_argument(
        "--no-recovery",
        action="store_true",
        help="Disable malformed timestamp recovery and fallback parsing"
    )
    parser.add_argument(
        "--export",
        type=Path,
        default=None,
        help="Write parsed cues to a .vtt or .srt file"
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Replay a virtual playback clock and print cue transitions"
    )
    parser.add_argument(
        "--offset",
        type=float,
        default=0.0,
        help="Timing offset in seconds applied during simulation (positive delays)"
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=1.0,
        help="Playback rate used during simulation (default: 1.0)"
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Print a JSON diagnostics snapshot"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only print errors and requested output"
    )

    args = parser.parse_args()

    if args.file is None and args.languages is None:
        parser.error("a caption file or --languages manifest is required")
    if args.rate <= 0:
        parser.error("--rate must be positive")

    # ── Load config ──
    try:
        config = load_config(args.config)
        config.update_from_args(args)
        config.validate()
    except CaptionError as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(2)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    try:
        if args.languages:
            code = run_languages(args, config)
        else:
            code = run_file(args, config)
    except KeyboardInterrupt:
        print("\n\n  [WARN] Interrupted by user.")
        sys.exit(130)
    except CaptionError as e:
        print(f"\n  [ERROR] {e}")
        sys.exit(1)
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
