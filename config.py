"""
Configuration loader for Caption Sync.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from captions.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class ParserConfig:
    strict_mode: bool = False
    max_cues: int = 10000
    enable_error_recovery: bool = True
    sanitize_html: bool = True
    validate_timing: bool = True
    max_cue_duration: float = 300.0
    max_text_length: int = 1000


@dataclass
class ScoringConfig:
    preset: str = "balanced"  # download_focused | rating_focused | balanced
    weights: Optional[Dict[str, float]] = None
    popularity_cap: int = 10000
    min_size_kb: float = 10
    max_size_kb: float = 500
    oversize_decay_kb: float = 1000
    recency_days: float = 365
    quality_bonus: float = 0.1
    quality_tokens: List[str] = field(
        default_factory=lambda: ["bluray", "web-dl", "webrip", "1080p", "720p"]
    )


@dataclass
class CacheConfig:
    max_cached_languages: int = 5
    max_cache_size_mb: float = 50
    ttl_seconds: float = 1800


@dataclass
class LanguagesConfig:
    priority: List[str] = field(
        default_factory=lambda: ["eng", "spa", "fre", "ger", "ita", "por", "rus", "ara"]
    )
    quality_threshold: float = 0.3
    auto_select: bool = True
    preload_next: bool = True
    cleanup_interval: float = 300.0  # 0 = no background cleanup thread


@dataclass
class SyncConfig:
    update_interval: float = 0.1
    bucket_size: float = 1.0
    drift_threshold: float = 0.05
    drift_window: int = 20
    max_correction_step: float = 0.1
    seek_threshold: float = 1.0
    accuracy_target_ms: float = 100.0
    update_budget_ms: float = 5.0
    transition_duration: float = 0.2


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    parser: ParserConfig = field(default_factory=ParserConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    languages: LanguagesConfig = field(default_factory=LanguagesConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if getattr(args, "strict", False):
            self.parser.strict_mode = True
        if getattr(args, "no_recovery", False):
            self.parser.enable_error_recovery = False
        if getattr(args, "priority", None):
            self.languages.priority = [c.strip() for c in args.priority.split(",") if c.strip()]
        if getattr(args, "threshold", None) is not None:
            self.languages.quality_threshold = args.threshold
        if getattr(args, "preset", None):
            self.scoring.preset = args.preset

    def validate(self):
        """
        Reject values that cannot work.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        problems = []
        if self.parser.max_cues < 1:
            problems.append("parser.max_cues must be >= 1")
        if self.parser.max_cue_duration <= 0:
            problems.append("parser.max_cue_duration must be > 0")
        if self.parser.max_text_length < 1:
            problems.append("parser.max_text_length must be >= 1")
        if self.scoring.min_size_kb > self.scoring.max_size_kb:
            problems.append("scoring.min_size_kb must not exceed scoring.max_size_kb")
        if self.scoring.popularity_cap < 1:
            problems.append("scoring.popularity_cap must be >= 1")
        if self.cache.max_cached_languages < 1:
            problems.append("cache.max_cached_languages must be >= 1")
        if self.cache.max_cache_size_mb <= 0:
            problems.append("cache.max_cache_size_mb must be > 0")
        if not 0.0 <= self.languages.quality_threshold <= 1.0:
            problems.append("languages.quality_threshold must be within [0, 1]")
        if self.languages.cleanup_interval < 0:
            problems.append("languages.cleanup_interval must be >= 0")
        if self.sync.bucket_size <= 0:
            problems.append("sync.bucket_size must be > 0")
        if self.sync.drift_window < 1:
            problems.append("sync.drift_window must be >= 1")
        if self.sync.max_correction_step <= 0:
            problems.append("sync.max_correction_step must be > 0")
        if self.sync.seek_threshold <= self.sync.drift_threshold:
            problems.append("sync.seek_threshold must exceed sync.drift_threshold")

        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))


def _dict_to_dataclass(cls, data: dict):
    """Convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping for {cls.__name__}, got {type(data).__name__}")
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    unknown = set(data) - field_names
    if unknown:
        logger.debug(f"Ignoring unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    config = AppConfig(
        parser=_dict_to_dataclass(ParserConfig, raw.get("parser")),
        scoring=_dict_to_dataclass(ScoringConfig, raw.get("scoring")),
        cache=_dict_to_dataclass(CacheConfig, raw.get("cache")),
        languages=_dict_to_dataclass(LanguagesConfig, raw.get("languages")),
        sync=_dict_to_dataclass(SyncConfig, raw.get("sync")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
    )
    config.validate()

    logger.info(f"Configuration loaded from {path}")
    return config
