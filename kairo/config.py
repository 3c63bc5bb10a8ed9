"""Kairo configuration models and loading."""

import os
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from kairo.error_log import ErrorSink
from kairo.exceptions import ConfigurationError
from kairo.memory.backends.base import MemoryBackend
from kairo.memory.backends.file import FileBackend
from kairo.memory.breaker import CircuitBreaker
from kairo.memory.schema import MemoryKind, RecallOptions
from kairo.memory.store import MemoryStore, StorageMode
from kairo.xdg import get_xdg_config_path, get_xdg_data_path

CONFIG_FILENAME = "kairo.yaml"


def _default_memory_dir() -> Path:
    return get_xdg_data_path("memory")


class RoutingThresholds(BaseModel):
    """Confidence thresholds used by routing decisions."""

    route: float = Field(default=0.7, ge=0.0, le=1.0)
    clarify: float = Field(default=0.3, ge=0.0, le=1.0)
    reset_override: float = Field(default=0.95, ge=0.0, le=1.0)
    anti_flicker_override: float = Field(default=0.9, ge=0.0, le=1.0)
    damping: float = Field(default=0.2, ge=0.0, le=1.0)
    damping_floor: float = Field(default=0.1, ge=0.0, le=1.0)
    intent_similarity: float = 0.7
    repeat_similarity: float = 0.8
    handoff_full: float = 0.8  # full handoff preamble above this
    handoff_brief: float = 0.5  # one-line handoff above this


class RoutingTimings(BaseModel):
    """Time windows (seconds) for the routing state machine."""

    anti_flicker: float = 30
    damping_window: float = 120
    repeat_window: float = 60
    intro_window: float = 300
    continuation_after: float = 60
    intent_horizon: float = 300
    max_recent_intents: int = 10
    session_ttl: float = 3600
    dispatch_timeout: float = 30


class RecallPreset(BaseModel):
    """Recall defaults for one kind of agent."""

    limit: int = 10
    min_relevance: float = 0.3
    include_patterns: bool = True
    kinds: Optional[List[MemoryKind]] = None

    def to_options(self) -> RecallOptions:
        return RecallOptions(
            limit=self.limit,
            min_relevance=self.min_relevance,
            include_patterns=self.include_patterns,
            kinds=list(self.kinds) if self.kinds is not None else None,
        )


_SUMMARY_PATTERN_CORRECTION = [MemoryKind.SUMMARY, MemoryKind.PATTERN, MemoryKind.CORRECTION]


def _default_presets() -> Dict[str, RecallPreset]:
    return {
        "research": RecallPreset(limit=8, min_relevance=0.5, kinds=_SUMMARY_PATTERN_CORRECTION),
        "automation": RecallPreset(limit=6, min_relevance=0.4, kinds=_SUMMARY_PATTERN_CORRECTION),
        "router": RecallPreset(
            limit=5, min_relevance=0.4, include_patterns=False, kinds=[MemoryKind.SUMMARY, MemoryKind.CORRECTION]
        ),
        "general": RecallPreset(limit=10, min_relevance=0.3, kinds=_SUMMARY_PATTERN_CORRECTION),
    }


class CleanupDefaults(BaseModel):
    max_age_days: int = 90
    min_relevance: float = 0.1
    max_entries: int = 1000


class SupabaseConfig(BaseModel):
    """Supabase primary backend. Falls back to SUPABASE_URL / SUPABASE_KEY."""

    url: Optional[str] = Field(default_factory=lambda: os.environ.get("SUPABASE_URL"))
    key: Optional[str] = Field(default_factory=lambda: os.environ.get("SUPABASE_KEY"))
    table: str = "memory"

    @field_validator("url", "key", mode="before")
    @classmethod
    def expand_env(cls, v):
        """Expand ${VAR}; a reference to an unset variable counts as missing."""
        if isinstance(v, str):
            v = os.path.expandvars(v).strip()
            if not v or "${" in v or v.startswith("$"):
                return None
        return v


class DuckDBConfig(BaseModel):
    path: Optional[Path] = None

    @field_validator("path", mode="before")
    @classmethod
    def expand_path(cls, v):
        if isinstance(v, str):
            return Path(os.path.expandvars(v)).expanduser()
        return v


class MemoryConfig(BaseModel):
    """Memory store settings."""

    mode: StorageMode = StorageMode.FILE
    primary: Literal["supabase", "duckdb"] = "supabase"
    file_dir: Path = Field(default_factory=_default_memory_dir)
    max_records_per_agent: int = 1000
    primary_timeout: float = 3.0
    breaker_failure_threshold: int = 3
    breaker_reset_seconds: float = 30.0
    persist_patterns: bool = True
    recall_presets: Dict[str, RecallPreset] = Field(default_factory=_default_presets)
    cleanup: CleanupDefaults = Field(default_factory=CleanupDefaults)
    supabase: SupabaseConfig = Field(default_factory=SupabaseConfig)
    duckdb: DuckDBConfig = Field(default_factory=DuckDBConfig)

    @field_validator("file_dir", mode="before")
    @classmethod
    def expand_file_dir(cls, v):
        if isinstance(v, str):
            return Path(os.path.expandvars(v)).expanduser()
        return v

    def preset(self, agent_type: str) -> RecallOptions:
        """Recall options for an agent type, falling back to ``general``."""
        preset = self.recall_presets.get(agent_type.lower()) or self.recall_presets.get("general") or RecallPreset()
        return preset.to_options()


class KairoConfig(BaseModel):
    """Top-level configuration."""

    log_level: str = "warning"
    sweep_interval: float = 60.0
    error_log: Optional[Path] = None
    thresholds: RoutingThresholds = Field(default_factory=RoutingThresholds)
    timings: RoutingTimings = Field(default_factory=RoutingTimings)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)

    @field_validator("error_log", mode="before")
    @classmethod
    def expand_error_log(cls, v):
        if isinstance(v, str):
            return Path(os.path.expandvars(v)).expanduser()
        return v


def get_config_path() -> Path:
    return get_xdg_config_path(CONFIG_FILENAME)


def load_config(path: Optional[Path] = None) -> KairoConfig:
    """Load configuration from YAML.

    Args:
        path: Path to kairo.yaml. If None, uses the default XDG location

    Returns:
        KairoConfig. Defaults (file mode) when the file doesn't exist.

    Raises:
        ConfigurationError: If the file is unreadable or invalid
    """
    if path is None:
        path = get_config_path()

    if not path.exists():
        return KairoConfig()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must contain a mapping at the top level")

    try:
        return KairoConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {path}: {e}") from e


def build_primary_backend(config: MemoryConfig) -> Optional[MemoryBackend]:
    """Create the primary backend the memory mode needs.

    Returns:
        None in file mode

    Raises:
        ConfigurationError: If the backend's credentials or library are missing
    """
    if config.mode is StorageMode.FILE:
        return None

    if config.primary == "supabase":
        if not config.supabase.url or not config.supabase.key:
            raise ConfigurationError(
                f"Memory mode '{config.mode.value}' needs Supabase credentials "
                "(memory.supabase.url/key or SUPABASE_URL/SUPABASE_KEY)"
            )
        from kairo.memory.backends.supabase import SupabaseBackend

        return SupabaseBackend(
            config.supabase.url,
            config.supabase.key,
            table=config.supabase.table,
            timeout=config.primary_timeout,
        )

    from kairo.memory.backends.duckdb_backend import DuckDBBackend

    db_path = config.duckdb.path or config.file_dir / "kairo.duckdb"
    try:
        return DuckDBBackend(db_path)
    except ImportError as e:
        raise ConfigurationError(str(e)) from e


def build_error_sink(config: KairoConfig) -> ErrorSink:
    return ErrorSink(config.error_log)


def build_memory_store(config: KairoConfig, error_sink: Optional[ErrorSink] = None) -> MemoryStore:
    """Wire a MemoryStore from configuration."""
    memory = config.memory
    return MemoryStore(
        file_backend=FileBackend(memory.file_dir, max_records_per_agent=memory.max_records_per_agent),
        primary=build_primary_backend(memory),
        mode=memory.mode,
        breaker=CircuitBreaker(
            failure_threshold=memory.breaker_failure_threshold,
            reset_timeout=memory.breaker_reset_seconds,
        ),
        primary_timeout=memory.primary_timeout,
        error_sink=error_sink or build_error_sink(config),
        patterns_path=memory.file_dir / "patterns.json" if memory.persist_patterns else None,
    )
