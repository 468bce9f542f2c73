from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Tuple

from pg_replication.errors import ConfigError

# ============================== Config model ===============================

@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    user: str
    password: str
    database: str

    def describe(self) -> str:
        return f"{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class ReplicationSettings:
    max_wait_attempts: int = 30
    wait_interval_seconds: float = 5
    enable_initial_sync: bool = True
    disable_triggers_during_sync: bool = True


SETTINGS_KEYS = tuple(f.name for f in fields(ReplicationSettings))
TARGET_SETTINGS_KEYS = ("enable_initial_sync", "disable_triggers_during_sync")


@dataclass(frozen=True)
class TargetConfig:
    name: str
    subscription_name: str
    database: DatabaseConfig
    tables: Tuple[str, ...] | None = None      # None -> global table list
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplicationConfig:
    publication_name: str
    source: DatabaseConfig
    targets: Tuple[TargetConfig, ...]
    tables: Tuple[str, ...]
    settings: ReplicationSettings = field(default_factory=ReplicationSettings)

    def tables_for(self, target: TargetConfig) -> Tuple[str, ...]:
        return target.tables if target.tables else self.tables

    def settings_for(self, target: TargetConfig) -> ReplicationSettings:
        return merge_settings(self.settings, target.settings)


def merge_settings(base: ReplicationSettings, overrides: Mapping[str, Any] | None) -> ReplicationSettings:
    """Shallow-merge per-target overrides over the global settings; target keys win."""
    if not overrides:
        return base
    unknown = set(overrides) - set(SETTINGS_KEYS)
    if unknown:
        raise ConfigError(f"Unknown replication settings: {', '.join(sorted(unknown))}")
    return replace(base, **dict(overrides))
