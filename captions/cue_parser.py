"""
Cue Parser — Converts timed-text documents into validated cues.

Accepts WebVTT and SRT-like documents, including badly broken ones.
Structural problems in a single cue are recorded as warnings and the cue
is skipped; the parse only fails outright for empty input, or for any
problem at all when strict mode is requested.

Scanning runs as a small state machine:
    HEADER   → skip the WEBVTT header block
    SEEK_CUE → skip NOTE/STYLE/REGION blocks, take an optional cue
               identifier, wait for a timing line
    TEXT     → collect contiguous non-blank text lines, then emit the cue

If structured scanning finds nothing in a document that clearly has a
body, a fallback pass rescans raw lines for any range-like time pattern.
"""

import logging
import re
import time
from dataclasses import dataclass, field, replace, asdict
from enum import Enum
from typing import List, Optional, Union

from .errors import EmptyContentError, FatalParseError, StrictModeError, TimestampError
from .sanitizer import DEFAULT_MAX_TEXT_LENGTH, TextSanitizer
from .timestamps import (
    STRICT_TIMING_LINE_RE,
    TIMING_ARROW,
    TIMING_LINE_RE,
    find_time_range,
    is_timing_line,
    parse_timing_line,
)

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "Used fallback parsing due to malformed content"
MAX_REPORTED_TIMING_WARNINGS = 20

_BLOCK_KEYWORDS = ("NOTE", "STYLE", "REGION")
_SRT_BLOCK_RE = re.compile(r"^\d+[ \t]*\n\d+:\d{2}:\d{2},\d{3}[ \t]*-->", re.MULTILINE)


# ═══════════════════════════════════════════════════════════════
#  Data structures
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Cue:
    """A single timed caption unit. Immutable once parsed."""
    id: str
    start: float
    end: float
    text: str
    original_text: str = ""

    @property
    def duration(self) -> float:
        return self.end - self.start

    def __repr__(self):
        return (f"Cue({self.id!r}, {self.start:.3f}–{self.end:.3f}s, "
                f"'{self.text[:40]}')")


@dataclass
class ParseOptions:
    """Knobs for a single parse call."""
    strict_mode: bool = False
    max_cues: int = 10000
    enable_error_recovery: bool = True
    sanitize_html: bool = True
    validate_timing: bool = True
    max_cue_duration: float = 300.0
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH

    @classmethod
    def from_config(cls, config) -> "ParseOptions":
        """Build options from a ParserConfig-like object."""
        defaults = cls()
        return cls(**{
            name: getattr(config, name, getattr(defaults, name))
            for name in defaults.__dataclass_fields__
        })


@dataclass
class ParseStats:
    total_lines: int = 0
    processed_cues: int = 0
    skipped_cues: int = 0
    recovered_timestamps: int = 0
    format: str = "unknown"
    has_header: bool = False
    processing_time_ms: float = 0.0


@dataclass
class ParseDiagnostics:
    """Errors, warnings and counters collected during a parse."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ParseResult:
    """Base of the tagged parse result variants."""
    cues: List[Cue]
    diagnostics: ParseDiagnostics

    @property
    def warnings(self) -> List[str]:
        return self.diagnostics.warnings

    @property
    def ok(self) -> bool:
        return not isinstance(self, Failure)


class Success(ParseResult):
    """Every cue in the document parsed cleanly."""


class PartialSuccess(ParseResult):
    """Cues were parsed, with warnings or skipped cues along the way."""


class Fallback(ParseResult):
    """Structured scanning failed; cues come from the fallback scan."""


@dataclass
class Failure(ParseResult):
    """The document could not be parsed at all."""
    error: Optional[Exception] = None


@dataclass
class FormatInfo:
    format: str = "unknown"
    has_header: bool = False
    is_valid: bool = True
    issues: List[str] = field(default_factory=list)


class _State(Enum):
    HEADER = "header"
    SEEK_CUE = "seek_cue"
    TEXT = "text"


# ═══════════════════════════════════════════════════════════════
#  Content helpers
# ═══════════════════════════════════════════════════════════════

def normalize_content(text: str) -> str:
    """Normalize line endings, strip a leading BOM and trailing whitespace."""
    text = text.lstrip("\ufeff").replace("\x00", "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n"))


def detect_format(content: str) -> FormatInfo:
    """Detect the dialect and record structural issues as warnings."""
    info = FormatInfo()
    first_line = content.lstrip("\n").split("\n", 1)[0].strip()

    if first_line.startswith("WEBVTT"):
        info.has_header = True
        info.format = "vtt"
    else:
        info.issues.append("Missing WEBVTT header")
        if _SRT_BLOCK_RE.search(content):
            info.format = "srt"

    if not STRICT_TIMING_LINE_RE.search(content):
        info.issues.append("No valid VTT timestamps found")
        info.is_valid = False
        if TIMING_ARROW in content and not TIMING_LINE_RE.search(content):
            info.issues.append("Malformed timestamp format detected")
    elif info.format == "unknown":
        info.format = "vtt"

    return info


def _is_block_keyword(line: str) -> bool:
    return any(line == kw or line.startswith(kw + " ") or line.startswith(kw + "\t")
               for kw in _BLOCK_KEYWORDS)


def _skip_block(lines: List[str], i: int) -> int:
    """Skip a header/NOTE block; stops at a blank line or a timing line."""
    start = i
    while i < len(lines) and lines[i].strip():
        if i > start and is_timing_line(lines[i]):
            break
        i += 1
    return i


# ═══════════════════════════════════════════════════════════════
#  Parser
# ═══════════════════════════════════════════════════════════════

class CueParser:
    """
    Parses caption documents into Cue lists plus diagnostics.

    Usage:
        parser = CueParser()
        result = parser.parse(text)
        if isinstance(result, Fallback):
            ...
        cues = result.cues
    """

    def __init__(self, options: Optional[ParseOptions] = None):
        self.options = options or ParseOptions()

    def parse(self, raw_text: Union[str, bytes, None],
              options: Optional[ParseOptions] = None, **overrides) -> ParseResult:
        """
        Parse a caption document.

        Args:
            raw_text: Document text (bytes are decoded as UTF-8).
            options: Parse options; defaults to the parser's options.
            **overrides: Individual option overrides (e.g. strict_mode=True).

        Returns:
            Success, PartialSuccess or Fallback.

        Raises:
            EmptyContentError: If the content is empty or None.
            StrictModeError: In strict mode, on any structural problem.
        """
        opts = options or self.options
        if overrides:
            opts = replace(opts, **overrides)

        if raw_text is None:
            raise EmptyContentError("Invalid caption content: must be a non-empty string")
        if isinstance(raw_text, bytes):
            raw_text = raw_text.decode("utf-8", errors="replace")
        if not isinstance(raw_text, str):
            raise FatalParseError(
                f"Invalid caption content: expected text, got {type(raw_text).__name__}"
            )

        content = normalize_content(raw_text)
        if not content.strip():
            raise EmptyContentError("Invalid caption content: must be a non-empty string")

        started = time.perf_counter()
        lines = content.split("\n")
        diagnostics = ParseDiagnostics()
        stats = diagnostics.stats
        stats.total_lines = len(lines)

        fmt = detect_format(content)
        stats.format = fmt.format
        stats.has_header = fmt.has_header
        if fmt.issues:
            if opts.strict_mode:
                raise StrictModeError(f"Invalid caption format: {', '.join(fmt.issues)}")
            diagnostics.warnings.extend(fmt.issues)

        sanitizer = TextSanitizer(max_length=opts.max_text_length)
        cues = self._scan(lines, opts, sanitizer, diagnostics)
        variant = None

        if (not cues and opts.enable_error_recovery and not opts.strict_mode
                and self._looks_timed(lines, stats)):
            logger.info("Structured scan found no cues, attempting fallback parsing...")
            cues = self._fallback_scan(lines, opts, sanitizer)
            diagnostics.warnings.append(FALLBACK_WARNING)
            variant = Fallback
            logger.info(f"Fallback parsing recovered {len(cues)} cues")

        if opts.validate_timing and cues:
            self._validate_timing(cues, diagnostics)

        stats.processed_cues = len(cues)
        stats.processing_time_ms = (time.perf_counter() - started) * 1000.0

        if variant is None:
            has_issues = diagnostics.warnings or stats.skipped_cues
            variant = PartialSuccess if has_issues else Success

        logger.debug(
            f"Parsed {len(cues)} cues ({stats.skipped_cues} skipped, "
            f"{len(diagnostics.warnings)} warnings) in {stats.processing_time_ms:.2f}ms "
            f"as {variant.__name__}"
        )
        return variant(cues, diagnostics)

    def try_parse(self, raw_text: Union[str, bytes, None],
                  options: Optional[ParseOptions] = None, **overrides) -> ParseResult:
        """Like parse(), but returns Failure instead of raising."""
        try:
            return self.parse(raw_text, options, **overrides)
        except FatalParseError as e:
            logger.warning(f"Caption parsing failed: {e}")
            diagnostics = ParseDiagnostics(errors=[f"Fatal parsing error: {e}"])
            return Failure([], diagnostics, error=e)

    # ── Structured scan ─────────────────────────────────────

    def _scan(self, lines: List[str], opts: ParseOptions,
              sanitizer: TextSanitizer, diagnostics: ParseDiagnostics) -> List[Cue]:
        cues: List[Cue] = []
        state = _State.HEADER
        identifier: Optional[str] = None
        timing_text = ""
        timing_line_no = 0
        text_lines: List[str] = []
        i = 0

        while i < len(lines):
            if len(cues) >= opts.max_cues:
                if any(line.strip() for line in lines[i:]):
                    diagnostics.warnings.append(
                        f"Reached maximum of {opts.max_cues} cues; remaining content ignored"
                    )
                break

            stripped = lines[i].strip()

            if state is _State.HEADER:
                if stripped.startswith("WEBVTT"):
                    i = _skip_block(lines, i)
                state = _State.SEEK_CUE
                continue

            if state is _State.SEEK_CUE:
                if not stripped:
                    i += 1
                    continue
                if is_timing_line(stripped):
                    timing_text = stripped
                    timing_line_no = i + 1
                    text_lines = []
                    state = _State.TEXT
                    i += 1
                    continue
                if _is_block_keyword(stripped):
                    i = _skip_block(lines, i)
                    identifier = None
                    continue
                if identifier is not None:
                    diagnostics.warnings.append(
                        f"Line {i}: text outside of a cue ignored ({identifier[:40]!r})"
                    )
                identifier = stripped
                i += 1
                continue

            # _State.TEXT
            if not stripped:
                self._emit(cues, identifier, timing_text, timing_line_no,
                           text_lines, opts, sanitizer, diagnostics)
                identifier = None
                state = _State.SEEK_CUE
                i += 1
                continue
            if is_timing_line(stripped):
                # Missing blank line between cues; a numeric line just
                # before the timing line is the next cue's identifier.
                next_identifier = None
                if text_lines and text_lines[-1].isdigit():
                    next_identifier = text_lines.pop()
                self._emit(cues, identifier, timing_text, timing_line_no,
                           text_lines, opts, sanitizer, diagnostics)
                identifier = next_identifier
                state = _State.SEEK_CUE
                continue
            text_lines.append(stripped)
            i += 1

        if state is _State.TEXT and len(cues) < opts.max_cues:
            self._emit(cues, identifier, timing_text, timing_line_no,
                       text_lines, opts, sanitizer, diagnostics)

        return cues

    def _emit(self, cues: List[Cue], identifier: Optional[str], timing_text: str,
              line_no: int, text_lines: List[str], opts: ParseOptions,
              sanitizer: TextSanitizer, diagnostics: ParseDiagnostics):
        """Validate one cue candidate and append it, or account for the skip."""
        recover = opts.enable_error_recovery and not opts.strict_mode
        try:
            timing = parse_timing_line(timing_text, recover=recover)
        except TimestampError as e:
            self._skip(diagnostics, line_no, f"Invalid timestamp: {e}", opts)
            return

        if timing.recovered:
            diagnostics.stats.recovered_timestamps += 1
            diagnostics.warnings.append(f"Line {line_no}: recovered malformed timestamp")

        problem = self._timing_problem(timing.start, timing.end, opts)
        if problem:
            self._skip(diagnostics, line_no, problem, opts)
            return

        if not text_lines:
            self._skip(diagnostics, line_no, "No cue text found", opts)
            return

        original = "\n".join(text_lines)
        if opts.sanitize_html:
            sanitized = sanitizer.sanitize(original)
            text = sanitized.text
            if sanitized.truncated:
                diagnostics.warnings.append(
                    f"Line {line_no}: cue text truncated to {opts.max_text_length} characters"
                )
        else:
            text = original[:opts.max_text_length] if opts.max_text_length else original

        if not text:
            self._skip(diagnostics, line_no, "Cue text empty after sanitization", opts)
            return

        cue = Cue(
            id=identifier or f"cue-{len(cues) + 1}",
            start=timing.start,
            end=timing.end,
            text=text,
            original_text=original,
        )
        cues.append(cue)

        if len(cues) <= 3:
            logger.debug(f"Parsed cue #{len(cues)}: {cue!r}")

    @staticmethod
    def _timing_problem(start: float, end: float, opts: ParseOptions) -> Optional[str]:
        if start < 0 or end < 0:
            return "Negative time values not allowed"
        if end <= start:
            return "Start time must be before end time"
        if end - start > opts.max_cue_duration:
            return f"Cue duration too long (max {opts.max_cue_duration:g}s)"
        return None

    @staticmethod
    def _skip(diagnostics: ParseDiagnostics, line_no: int, reason: str, opts: ParseOptions):
        diagnostics.stats.skipped_cues += 1
        message = f"Line {line_no}: {reason}"
        if opts.strict_mode:
            raise StrictModeError(message)
        diagnostics.warnings.append(message)

    @staticmethod
    def _looks_timed(lines: List[str], stats: ParseStats) -> bool:
        """Malformed timed text: cues were skipped or range-like timings exist."""
        if stats.skipped_cues:
            return True
        return any(TIMING_ARROW in line or find_time_range(line) is not None for line in lines)

    # ── Fallback scan ───────────────────────────────────────

    def _fallback_scan(self, lines: List[str], opts: ParseOptions,
                       sanitizer: TextSanitizer) -> List[Cue]:
        cues: List[Cue] = []

        for i, line in enumerate(lines):
            if len(cues) >= opts.max_cues:
                break
            timing = find_time_range(line)
            if timing is None:
                continue
            if self._timing_problem(timing.start, timing.end, opts):
                logger.debug(f"Fallback: ignoring invalid range on line {i + 1}")
                continue

            text_parts = []
            for j in range(i + 1, min(i + 5, len(lines))):
                candidate = lines[j].strip()
                if (candidate and TIMING_ARROW not in candidate
                        and find_time_range(candidate) is None):
                    text_parts.append(candidate)
                elif text_parts:
                    break

            if not text_parts:
                continue

            original = "\n".join(text_parts)
            text = sanitizer.sanitize(original).text if opts.sanitize_html else original
            if not text:
                continue

            cues.append(Cue(
                id=f"fallback-cue-{len(cues) + 1}",
                start=timing.start,
                end=timing.end,
                text=text,
                original_text=original,
            ))

        return cues

    # ── Timing validation ───────────────────────────────────

    @staticmethod
    def _validate_timing(cues: List[Cue], diagnostics: ParseDiagnostics):
        """Warn about overlapping, very short and very long cues."""
        overlaps, short, long_ = [], [], []

        latest = None
        for cue in sorted(cues, key=lambda c: (c.start, c.end)):
            if latest is not None and cue.start < latest.end:
                overlaps.append(f"Overlapping cues detected: {latest.id} and {cue.id}")
            if latest is None or cue.end > latest.end:
                latest = cue
            if cue.duration < 0.1:
                short.append(f"Very short cue duration: {cue.id} ({cue.duration:.3f}s)")
            if cue.duration > 60:
                long_.append(f"Very long cue duration: {cue.id} ({cue.duration:.1f}s)")

        for group in (overlaps, short, long_):
            diagnostics.warnings.extend(group[:MAX_REPORTED_TIMING_WARNINGS])
            if len(group) > MAX_REPORTED_TIMING_WARNINGS:
                diagnostics.warnings.append(
                    f"... and {len(group) - MAX_REPORTED_TIMING_WARNINGS} more similar warnings"
                )


def parse_captions(raw_text: Union[str, bytes, None], **options) -> ParseResult:
    """Parse a caption document with default options plus overrides."""
    return CueParser().parse(raw_text, **options)
