"""
Cue Writer — Renders parsed cues back to WebVTT or SRT.

WebVTT:
    WEBVTT

    intro
    00:00:01.200 --> 00:00:04.800
    Hello everyone, welcome to the show.

SRT:
    1
    00:00:01,200 --> 00:00:04,800
    Hello everyone, welcome to the show.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .cue_parser import Cue
from .sanitizer import strip_tags
from .timestamps import TIMING_ARROW, format_timestamp

logger = logging.getLogger(__name__)

FORMATS = ("vtt", "srt")


class CueWriter:
    """Serializes cues with sequential SRT indices or WebVTT identifiers."""

    def render(self, cues: Iterable[Cue], fmt: str = "vtt") -> str:
        """
        Render cues as a caption document.

        Raises:
            ValueError: For an unknown format.
        """
        fmt = fmt.lower().lstrip(".")
        if fmt not in FORMATS:
            raise ValueError(f"Unknown caption format '{fmt}' (expected one of {FORMATS})")

        blocks: List[str] = ["WEBVTT\n"] if fmt == "vtt" else []
        marker = "." if fmt == "vtt" else ","
        for i, cue in enumerate(cues):
            timing = (
                f"{format_timestamp(cue.start, marker)} {TIMING_ARROW} "
                f"{format_timestamp(cue.end, marker)}"
            )
            if fmt == "srt":
                # SRT has no inline markup whitelist; re-index sequentially
                blocks.append(f"{i + 1}\n{timing}\n{strip_tags(cue.text)}\n")
            else:
                header = f"{cue.id}\n" if cue.id and "\n" not in cue.id else ""
                blocks.append(f"{header}{timing}\n{cue.text}\n")
        return "\n".join(blocks)

    def write(self, cues: List[Cue], output_path: Path, fmt: Optional[str] = None) -> Path:
        """
        Write cues to a file. The format defaults to the file extension.

        Returns:
            The output path.
        """
        output_path = Path(output_path)
        fmt = fmt or output_path.suffix.lstrip(".") or "vtt"
        document = self.render(cues, fmt)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(document)

        logger.info(f"{fmt.upper()} written: {len(cues)} cues → {output_path}")
        return output_path

    def write_preview(self, cues: List[Cue], max_entries: int = 10) -> str:
        """
        Generate a short text preview of the cues.
        """
        lines = []
        shown = min(len(cues), max_entries)

        for cue in cues[:shown]:
            text = cue.text.replace("\n", " / ")
            text_preview = text[:80] + ("..." if len(text) > 80 else "")
            lines.append(
                f"  [{format_timestamp(cue.start)} → {format_timestamp(cue.end)}] {text_preview}"
            )

        if len(cues) > shown:
            lines.append(f"  ... and {len(cues) - shown} more cues")

        return "\n".join(lines)
