"""
Diagnostics — Structured snapshot for an external telemetry collaborator.

Collects parse reports, cache and handle counters, synchronizer metrics
and the current process footprint (via psutil) into one plain object
that serializes with to_dict() / to_json().
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)


def process_footprint() -> Dict[str, Any]:
    """Memory and thread usage of the current process."""
    try:
        proc = psutil.Process(os.getpid())
        with proc.oneshot():
            mem = proc.memory_info()
            return {
                "pid": proc.pid,
                "rss_mb": round(mem.rss / (1024 * 1024), 2),
                "vms_mb": round(mem.vms / (1024 * 1024), 2),
                "threads": proc.num_threads(),
            }
    except psutil.Error as e:
        logger.debug(f"Process stats unavailable: {e}")
        return {"pid": os.getpid()}


@dataclass
class DiagnosticsSnapshot:
    """Point-in-time view of the caption subsystem."""
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )
    active_language: Optional[str] = None
    languages: List[Dict[str, Any]] = field(default_factory=list)
    parse: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    cache: Dict[str, Any] = field(default_factory=dict)
    handles: Dict[str, Any] = field(default_factory=dict)
    sync: Dict[str, Any] = field(default_factory=dict)
    process: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(cls, include_process: bool = True, **sections) -> "DiagnosticsSnapshot":
        """Build a snapshot, adding process stats unless told not to."""
        snapshot = cls(**sections)
        if include_process:
            snapshot.process = process_footprint()
        return snapshot

    @property
    def parse_error_count(self) -> int:
        return sum(len(report.get("errors", [])) for report in self.parse.values())

    @property
    def parse_warning_count(self) -> int:
        return sum(len(report.get("warnings", [])) for report in self.parse.values())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["summary"] = {
            "parse_errors": self.parse_error_count,
            "parse_warnings": self.parse_warning_count,
            "cache_hit_rate": _hit_rate(self.cache),
        }
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)


def _hit_rate(cache: Dict[str, Any]) -> float:
    hits = cache.get("cache_hits", 0)
    lookups = hits + cache.get("cache_misses", 0)
    return round(hits / lookups, 4) if lookups else 0.0
