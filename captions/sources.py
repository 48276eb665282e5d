"""
Subtitle Sources — Where candidate caption content comes from.

A source turns a Candidate into raw caption text. Network catalogs live
outside this package; two local sources are provided for files on disk
and for in-memory content (tests, demos).
"""

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from .errors import SourceError
from .quality_scorer import Candidate

logger = logging.getLogger(__name__)


@runtime_checkable
class SubtitleSource(Protocol):
    def fetch(self, candidate: Candidate) -> Union[str, bytes]:
        """Return the raw caption content for a candidate. May raise."""
        ...


class LocalFileSource:
    """Reads ``candidate.file_name`` relative to a directory."""

    def __init__(self, directory: Union[str, Path] = ".", encoding: str = "utf-8"):
        self.directory = Path(directory)
        self.encoding = encoding

    def fetch(self, candidate: Candidate) -> str:
        if not candidate.file_name:
            raise SourceError(f"Candidate {candidate.id} has no file name")

        path = (self.directory / candidate.file_name).resolve()
        if not path.is_file():
            raise SourceError(f"Caption file not found: {path}")

        try:
            data = path.read_bytes()
        except OSError as e:
            raise SourceError(f"Cannot read {path}: {e}") from e

        logger.debug(f"Read {len(data)} bytes from {path.name}")
        return data.decode(self.encoding, errors="replace")


class StaticSource:
    """Serves content from a mapping keyed by candidate id or file name."""

    def __init__(self, contents: Optional[Mapping[str, str]] = None):
        self.contents: Dict[str, str] = dict(contents or {})
        self.fetch_count = 0

    def add(self, key: str, content: str):
        self.contents[key] = content

    def fetch(self, candidate: Candidate) -> str:
        self.fetch_count += 1
        for key in (candidate.id, candidate.file_name):
            if key and key in self.contents:
                return self.contents[key]
        raise SourceError(f"No content for candidate {candidate.id}")
