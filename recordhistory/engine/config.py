"""
recordhistory Configuration - Load and validate recordhistory.yaml.

Usage:
    from recordhistory.engine.config import load_config, get_config

The file is optional. When absent, every setting takes its default. Per-class
options passed to ``@versioned`` are validated by ``VersioningOptions`` and
fall back to the ``history`` section of the loaded config.
"""

from __future__ import annotations

import inspect
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from recordhistory.engine.errors import HistoryConfigError

CONFIG_FILE_NAME = "recordhistory.yaml"
CONFIG_ENV_VAR = "RECORDHISTORY_CONFIG"


# ---------------------------------------------------------------------------
# Pydantic models for recordhistory.yaml
# ---------------------------------------------------------------------------

class HistoryDefaults(BaseModel):
    table_suffix: str = "_h"
    version_column: str = "version"
    lock_column: str = "lock_version"
    deleted_flag_column: str = "deleted_in_original_table"
    restored_column: str = "record_restored"
    inheritance_prefix: str = "versioned_"
    default_limit: int = Field(default=0, ge=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    event_log: bool = False
    directory: str = ".recordhistory/logs"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"level must be DEBUG/INFO/WARNING/ERROR/CRITICAL, got '{v}'")
        return v


class RecordHistoryConfig(BaseModel):
    """Root model for recordhistory.yaml."""
    history: HistoryDefaults = HistoryDefaults()
    logging: LoggingConfig = LoggingConfig()


# ---------------------------------------------------------------------------
# Per-class options (@versioned)
# ---------------------------------------------------------------------------

class VersioningOptions(BaseModel):
    """
    Setup-time options for one versioned class.

    ``condition`` is either a constant, a zero/one-argument callable (the one
    argument receives the record) or the name of an instance method.
    ``if_changed`` accepts a single field name or a list.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    table_name: Optional[str] = None
    foreign_key: Optional[str] = None
    version_column: Optional[str] = None
    inheritance_column: Optional[str] = None
    lock_column: Optional[str] = None
    deleted_flag_column: Optional[str] = None
    restored_column: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=0)
    condition: Any = True
    if_changed: List[str] = Field(default_factory=list)
    non_versioned_columns: List[str] = Field(default_factory=list)
    extend: Optional[type] = None

    @field_validator("if_changed", "non_versioned_columns", mode="before")
    @classmethod
    def coerce_names(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(name) for name in v]

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: Any) -> Any:
        if callable(v) and not isinstance(v, type):
            try:
                signature = inspect.signature(v)
            except (TypeError, ValueError):
                return v
            params = [
                p for p in signature.parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
                and p.default is p.empty
            ]
            if len(params) > 1:
                raise ValueError("condition callable must take zero or one argument")
        return v

    def resolved(self, defaults: HistoryDefaults) -> "VersioningOptions":
        """Return a copy with every unset column option filled from ``defaults``."""
        return self.model_copy(update={
            "version_column": self.version_column or defaults.version_column,
            "lock_column": self.lock_column or defaults.lock_column,
            "deleted_flag_column": self.deleted_flag_column or defaults.deleted_flag_column,
            "restored_column": self.restored_column or defaults.restored_column,
            "limit": defaults.default_limit if self.limit is None else self.limit,
        })


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[RecordHistoryConfig] = None


def _find_config_file() -> Optional[Path]:
    """Look for recordhistory.yaml from CWD upward, honouring the env override."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: Optional[str] = None) -> RecordHistoryConfig:
    """
    Load and validate recordhistory.yaml.

    Args:
        config_path: Explicit path. If None, uses $RECORDHISTORY_CONFIG or
                     auto-discovers from the working directory upward.

    Returns:
        Validated RecordHistoryConfig instance (defaults when no file exists).
    """
    global _config

    path = Path(config_path) if config_path else _find_config_file()
    if path is None or not path.exists():
        _config = RecordHistoryConfig()
        return _config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw: Dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise HistoryConfigError(f"Cannot parse {path}: {e}", config_path=str(path)) from e

    try:
        _config = RecordHistoryConfig(
            history=raw.get("history", {}),
            logging=raw.get("logging", {}),
        )
    except ValidationError as e:
        raise HistoryConfigError(
            f"Invalid configuration in {path}",
            config_path=str(path),
            validation_errors=e.errors(),
        ) from e
    return _config


def get_config() -> RecordHistoryConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded config (tests, reloads)."""
    global _config
    _config = None
