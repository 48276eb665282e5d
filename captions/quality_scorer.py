"""
Quality Scorer — Ranks candidate caption files for one language.

Each candidate gets a weighted sum of normalized factors:
  - popularity: download count, capped
  - rating: 0–10 scale normalized to 0–1
  - size fit: 1.0 inside an ideal byte range, penalized below and above
  - recency: linear decay over roughly a year

plus a small bonus for quality tokens in the file name (1080p, bluray...).
The result is capped at 1.0. Weight sets are plain data.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class Candidate:
    """One available caption file for a language. Never mutated."""
    id: str
    file_name: str = ""
    download_count: int = 0
    rating: float = 0.0
    file_size: int = 0
    upload_date: Any = None
    language_code: str = ""
    quality_score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], language_code: str = "") -> "Candidate":
        """Build a candidate from catalog metadata (snake_case or camelCase keys)."""
        def pick(*keys, default=None):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        file_name = pick("file_name", "fileName", default="")
        return cls(
            id=str(pick("id", default=file_name)),
            file_name=file_name,
            download_count=int(pick("download_count", "downloadCount", default=0) or 0),
            rating=float(pick("rating", default=0.0) or 0.0),
            file_size=int(pick("file_size", "fileSize", default=0) or 0),
            upload_date=pick("upload_date", "uploadDate"),
            language_code=pick("language_code", "languageCode", default=language_code) or "",
        )


@dataclass(frozen=True)
class QualityWeights:
    """Relative weight of each scoring factor."""
    popularity: float = 0.4
    rating: float = 0.3
    size_fit: float = 0.2
    recency: float = 0.1


QUALITY_WEIGHT_PRESETS: Dict[str, QualityWeights] = {
    "download_focused": QualityWeights(popularity=0.6, rating=0.2, size_fit=0.1, recency=0.1),
    "rating_focused": QualityWeights(popularity=0.2, rating=0.6, size_fit=0.1, recency=0.1),
    "balanced": QualityWeights(popularity=0.4, rating=0.3, size_fit=0.2, recency=0.1),
}

DEFAULT_QUALITY_TOKENS = ("bluray", "web-dl", "webrip", "1080p", "720p")


def _to_datetime(value: Any) -> Optional[datetime]:
    """Best-effort conversion of an upload date to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        # Catalogs send epoch seconds or milliseconds
        seconds = value / 1000.0 if value > 1e11 else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class QualityScorer:
    """
    Scores and selects caption candidates.

    Scores are deterministic: the reference time used for recency is
    fixed when the scorer is created (or passed in explicitly).
    """

    def __init__(self, weights: Optional[QualityWeights] = None,
                 popularity_cap: int = 10000,
                 ideal_size_kb: Sequence[float] = (10, 500),
                 oversize_decay_kb: float = 1000,
                 recency_days: float = 365,
                 quality_bonus: float = 0.1,
                 quality_tokens: Iterable[str] = DEFAULT_QUALITY_TOKENS,
                 reference_time: Optional[datetime] = None):
        self.weights = weights or QUALITY_WEIGHT_PRESETS["balanced"]
        self.popularity_cap = max(1, popularity_cap)
        self.min_size_kb, self.max_size_kb = ideal_size_kb
        self.oversize_decay_kb = oversize_decay_kb
        self.recency_days = recency_days
        self.quality_bonus = quality_bonus
        self.quality_tokens = tuple(t.lower() for t in quality_tokens)
        self.reference_time = _to_datetime(reference_time) or datetime.now(timezone.utc)

    @classmethod
    def from_config(cls, config, reference_time: Optional[datetime] = None) -> "QualityScorer":
        """Build a scorer from a ScoringConfig-like object."""
        preset = getattr(config, "preset", "balanced")
        weights = QUALITY_WEIGHT_PRESETS.get(preset)
        if weights is None:
            logger.warning(f"Unknown scoring preset '{preset}', using 'balanced'")
            weights = QUALITY_WEIGHT_PRESETS["balanced"]
        custom = getattr(config, "weights", None)
        if custom:
            weights = replace(weights, **custom)

        return cls(
            weights=weights,
            popularity_cap=getattr(config, "popularity_cap", 10000),
            ideal_size_kb=(getattr(config, "min_size_kb", 10), getattr(config, "max_size_kb", 500)),
            oversize_decay_kb=getattr(config, "oversize_decay_kb", 1000),
            recency_days=getattr(config, "recency_days", 365),
            quality_bonus=getattr(config, "quality_bonus", 0.1),
            quality_tokens=getattr(config, "quality_tokens", DEFAULT_QUALITY_TOKENS),
            reference_time=reference_time,
        )

    # ── Factors ─────────────────────────────────────────────

    def popularity_factor(self, candidate: Candidate) -> float:
        if candidate.download_count <= 0:
            return 0.0
        return min(candidate.download_count / self.popularity_cap, 1.0)

    @staticmethod
    def rating_factor(candidate: Candidate) -> float:
        if candidate.rating <= 0:
            return 0.0
        return min(candidate.rating / 10.0, 1.0)

    def size_factor(self, candidate: Candidate) -> float:
        if candidate.file_size <= 0:
            return 0.0
        size_kb = candidate.file_size / 1024.0
        if size_kb < self.min_size_kb:
            return size_kb / self.min_size_kb
        if size_kb > self.max_size_kb:
            return max(0.0, 1.0 - (size_kb - self.max_size_kb) / self.oversize_decay_kb)
        return 1.0

    def recency_factor(self, candidate: Candidate) -> float:
        uploaded = _to_datetime(candidate.upload_date)
        if uploaded is None:
            return 0.0
        age_days = (self.reference_time - uploaded).total_seconds() / SECONDS_PER_DAY
        return min(1.0, max(0.0, 1.0 - age_days / self.recency_days))

    def has_quality_token(self, candidate: Candidate) -> bool:
        name = (candidate.file_name or "").lower()
        return any(token in name for token in self.quality_tokens)

    # ── Scoring ─────────────────────────────────────────────

    def score(self, candidate: Candidate) -> float:
        """
        Compute the quality score of a candidate.

        Returns:
            Score in [0, 1].
        """
        w = self.weights
        total = (
            self.popularity_factor(candidate) * w.popularity
            + self.rating_factor(candidate) * w.rating
            + self.size_factor(candidate) * w.size_fit
            + self.recency_factor(candidate) * w.recency
        )
        if self.has_quality_token(candidate):
            total += self.quality_bonus
        return min(max(total, 0.0), 1.0)

    def rank(self, candidates: Iterable[Candidate]) -> List[Candidate]:
        """Return scored copies of all candidates, best first (stable on ties)."""
        scored = [replace(c, quality_score=self.score(c)) for c in candidates]
        scored.sort(key=lambda c: c.quality_score, reverse=True)
        return scored

    def select_best(self, candidates: Iterable[Candidate]) -> Optional[Candidate]:
        """
        Pick the best candidate.

        Returns:
            A copy of the winning candidate with quality_score set, or
            None for an empty list. Ties keep the earliest candidate.
        """
        best = None
        for candidate in candidates:
            score = self.score(candidate)
            if best is None or score > best.quality_score:
                best = replace(candidate, quality_score=score)

        if best is not None:
            logger.debug(
                f"Best candidate: {best.file_name or best.id} "
                f"(score={best.quality_score:.2f}, downloads={best.download_count}, "
                f"rating={best.rating})"
            )
        return best
