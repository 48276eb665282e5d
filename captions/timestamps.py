"""
Timestamp codec for caption timing lines.

Reads the cue timing forms accepted by the parser:
    HH:MM:SS.mmm   (hours may have more than two digits)
    MM:SS.mmm
    MM:SS          (milliseconds default to 0)

Malformed values can go through recovery heuristics before they are
rejected: comma used as the decimal separator (SRT style), missing
milliseconds on a full HH:MM:SS value, and short or long fractions.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import TimestampError

logger = logging.getLogger(__name__)

TIMING_ARROW = "-->"

_HOURS_RE = re.compile(r"^(\d+):(\d{2}):(\d{2})\.(\d{3})$")
_MINUTES_RE = re.compile(r"^(\d{1,2}):(\d{2})\.(\d{3})$")
_BARE_MINUTES_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# Any well-formed or recoverable timing line, used for format detection.
TIMING_LINE_RE = re.compile(
    r"\d+:\d{2}(?::\d{2})?(?:[.,]\d{1,3})?\s*-->\s*\d+:\d{2}(?::\d{2})?(?:[.,]\d{1,3})?"
)
_STRICT_TIME = (
    r"(?:(?<![\d:])\d+:\d{2}:\d{2}\.\d{3}|(?<![\d:])\d{1,2}:\d{2}(?:\.\d{3})?)(?![\d:.,])"
)
STRICT_TIMING_LINE_RE = re.compile(rf"{_STRICT_TIME}\s*-->\s*{_STRICT_TIME}")

# Loose time range used by fallback scanning ("00:01,5 - 00:04", "1:02 to 1:05").
_LOOSE_TIME = r"\d{1,2}(?::\d{2}){1,2}(?:[.,]\d{1,3})?"
TIME_RANGE_RE = re.compile(
    rf"(?P<start>{_LOOSE_TIME})\s*(?:-->|->|–|—|-|to)\s*(?P<end>{_LOOSE_TIME})",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TimingLine:
    """Start/end pair read from a timing line."""
    start: float
    end: float
    recovered: bool = False
    settings: str = ""


def parse_timestamp(value: str) -> float:
    """
    Convert a timestamp string to seconds.

    Args:
        value: A timestamp in one of the accepted forms.

    Returns:
        Time in seconds.

    Raises:
        TimestampError: If the value is not an accepted timestamp.
    """
    text = (value or "").strip()
    if text.startswith("-"):
        raise TimestampError(f"Negative time values not allowed: {value!r}")

    match = _HOURS_RE.match(text)
    if match:
        hours, minutes, seconds, millis = (int(g) for g in match.groups())
        _check_range(value, minutes, seconds)
        return hours * 3600 + minutes * 60 + seconds + millis / 1000.0

    match = _MINUTES_RE.match(text)
    if match:
        minutes, seconds, millis = (int(g) for g in match.groups())
        _check_range(value, 0, seconds)
        return minutes * 60 + seconds + millis / 1000.0

    match = _BARE_MINUTES_RE.match(text)
    if match:
        minutes, seconds = (int(g) for g in match.groups())
        _check_range(value, 0, seconds)
        return float(minutes * 60 + seconds)

    raise TimestampError(f"Unrecognized time format: {value!r}")


def _check_range(value: str, minutes: int, seconds: int):
    if minutes > 59 or seconds > 59:
        raise TimestampError(f"Minutes/seconds out of range: {value!r}")


def recover_timestamp(value: str) -> Optional[str]:
    """
    Rewrite a malformed timestamp into an accepted form.

    Returns:
        The repaired timestamp, or None if no heuristic applies.
    """
    original = (value or "").strip()
    text = original

    # 00:00:01,500 -> 00:00:01.500
    text = re.sub(r"(\d),(\d{1,})$", r"\1.\2", text)

    # 00:00:01 -> 00:00:01.000
    if re.match(r"^\d+:\d{2}:\d{2}$", text):
        text += ".000"

    # 00:00:01.5 -> 00:00:01.500, 00:00:01.2345 -> 00:00:01.234
    frac = re.match(r"^(.*\d)\.(\d+)$", text)
    if frac and len(frac.group(2)) != 3:
        digits = frac.group(2)
        digits = digits.ljust(3, "0") if len(digits) < 3 else digits[:3]
        text = f"{frac.group(1)}.{digits}"

    if text == original:
        return None
    try:
        parse_timestamp(text)
    except TimestampError:
        return None
    return text


def parse_timestamp_lenient(value: str, recover: bool = True) -> Tuple[float, bool]:
    """
    Parse a timestamp, falling back to recovery heuristics.

    Returns:
        (seconds, recovered) where recovered is True if a heuristic
        had to rewrite the value.

    Raises:
        TimestampError: If the value cannot be read even after recovery.
    """
    try:
        return parse_timestamp(value), False
    except TimestampError:
        if not recover:
            raise
        repaired = recover_timestamp(value)
        if repaired is None:
            raise
        logger.debug(f"Recovered timestamp {value!r} -> {repaired!r}")
        return parse_timestamp(repaired), True


def is_timing_line(line: str) -> bool:
    """True if the line looks like a cue timing line."""
    return TIMING_ARROW in line


def parse_timing_line(line: str, recover: bool = True) -> TimingLine:
    """
    Read a ``start --> end [settings]`` line.

    Raises:
        TimestampError: If the line has no arrow or either side is unreadable.
    """
    parts = line.split(TIMING_ARROW)
    if len(parts) != 2:
        raise TimestampError("Invalid timestamp format - missing or repeated -->")

    start_text = parts[0].strip()
    end_tokens = parts[1].strip().split(None, 1)
    if not start_text or not end_tokens:
        raise TimestampError("Invalid timestamp format - empty side of -->")
    end_text = end_tokens[0]
    settings = end_tokens[1] if len(end_tokens) > 1 else ""

    start, start_fixed = parse_timestamp_lenient(start_text, recover)
    end, end_fixed = parse_timestamp_lenient(end_text, recover)
    return TimingLine(start, end, start_fixed or end_fixed, settings)


def find_time_range(line: str) -> Optional[TimingLine]:
    """
    Find any range-like time pattern in a line (fallback scanning).

    Returns:
        A TimingLine, or None if the line holds no readable range.
    """
    match = TIME_RANGE_RE.search(line)
    if not match:
        return None
    try:
        start, start_fixed = parse_timestamp_lenient(match.group("start"))
        end, end_fixed = parse_timestamp_lenient(match.group("end"))
    except TimestampError:
        return None
    return TimingLine(start, end, start_fixed or end_fixed)


def format_timestamp(seconds: float, decimal_marker: str = ".") -> str:
    """
    Convert seconds to HH:MM:SS.mmm (or HH:MM:SS,mmm for SRT).

    Args:
        seconds: Time in seconds (e.g., 125.340). Negative values clamp to 0.
        decimal_marker: "." for WebVTT, "," for SRT.

    Returns:
        Formatted timestamp string (e.g., "00:02:05.340").
    """
    if seconds < 0:
        seconds = 0.0

    total_ms = int(round(seconds * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)

    return f"{hours:02d}:{minutes:02d}:{secs:02d}{decimal_marker}{millis:03d}"
