"""
Text Sanitizer — Cleans cue text before it reaches a renderer.

Strips script/style blocks and any tag outside a small whitelist of inline
formatting tags, decodes HTML entities, collapses whitespace inside each
line while keeping the cue's internal line breaks, and bounds the length.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TAGS = frozenset({"b", "i", "u", "c", "v", "lang", "ruby", "rt"})
DEFAULT_MAX_TEXT_LENGTH = 1000

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<(/?)([^<>]*)>")
_TAG_NAME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)")
_SPACES_RE = re.compile(r"[ \t\f\v]+")


@dataclass
class SanitizedText:
    """Result of sanitizing one cue's text."""
    text: str
    removed_tags: int = 0
    truncated: bool = False


class TextSanitizer:
    """
    Sanitizes cue text.

    Kept tags are reduced to their name plus WebVTT class/annotation
    (``<c.yellow>``, ``<v Roger>``); anything carrying attributes with
    ``=`` is reduced to the bare tag name.
    """

    def __init__(self, allowed_tags: Optional[Iterable[str]] = None,
                 max_length: int = DEFAULT_MAX_TEXT_LENGTH):
        self.allowed_tags: FrozenSet[str] = frozenset(
            t.lower() for t in (allowed_tags or DEFAULT_ALLOWED_TAGS)
        )
        self.max_length = max_length

    def sanitize(self, text: str) -> SanitizedText:
        """
        Sanitize a block of cue text.

        Args:
            text: Raw cue text, lines separated by "\\n".

        Returns:
            SanitizedText with the cleaned text and accounting.
        """
        if not text:
            return SanitizedText("")

        removed = 0
        cleaned, count = _BLOCK_RE.subn("", text)
        removed += count

        def _filter_tag(match) -> str:
            nonlocal removed
            closing, body = match.group(1), match.group(2).strip()
            name_match = _TAG_NAME_RE.match(body)
            name = name_match.group(1).lower() if name_match else ""
            if name not in self.allowed_tags:
                removed += 1
                return ""
            if closing:
                return f"</{name}>"
            if "=" in body or '"' in body or "'" in body:
                return f"<{name}>"
            return f"<{body}>"

        cleaned = _TAG_RE.sub(_filter_tag, cleaned)
        cleaned = html.unescape(cleaned)

        lines = [_SPACES_RE.sub(" ", line).strip() for line in cleaned.split("\n")]
        cleaned = "\n".join(line for line in lines if line)

        truncated = False
        if self.max_length and len(cleaned) > self.max_length:
            cleaned = cleaned[: self.max_length].rstrip()
            truncated = True

        return SanitizedText(cleaned, removed, truncated)


def strip_tags(text: str) -> str:
    """Remove every tag, keeping only the plain text."""
    return html.unescape(_TAG_RE.sub("", text or "")).strip()
