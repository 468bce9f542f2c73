from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

from pg_replication.ReplicationConfig import (
    SETTINGS_KEYS,
    TARGET_SETTINGS_KEYS,
    DatabaseConfig,
    ReplicationConfig,
    ReplicationSettings,
    TargetConfig,
)
from pg_replication.errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = (
    "/config/replication-config.json",   # container volume mount
    "./config/replication-config.json",
    "./replication-config.json",
    "../replication-config.json",
)

# ------------------------ Catalog loading ------------------------

def parse_catalog(raw: str, origin: str = "<string>") -> Dict[str, Any]:
    raw = (raw or "").strip()
    if not raw:
        raise ConfigError(f"Catalog {origin} is empty")
    try:
        catalog = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in catalog {origin}: {e}") from e
    if not isinstance(catalog, dict):
        raise ConfigError(f"Catalog {origin} must be a JSON object")
    return catalog

def load_catalog(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Locate and parse the replication catalog.
    Order: explicit path, $CONFIG_FILE, the default locations, then the
    $REPLICATION_CONFIG environment variable holding the JSON itself.
    """
    load_dotenv()
    candidates = [p for p in (path, os.environ.get("CONFIG_FILE"), *DEFAULT_CONFIG_PATHS) if p]

    for candidate in candidates:
        p = Path(candidate)
        try:
            if not p.exists():
                continue
            t0 = time.perf_counter()
            log.info("📋 Loading configuration from: %s", p)
            catalog = parse_catalog(p.read_text(encoding="utf-8"), str(p))
            log.info("Loaded catalog from %s (%.3fs)", p, time.perf_counter() - t0)
            return catalog
        except OSError as e:
            log.warning("⚠️ Failed to read config from %s: %s", p, e)

    env_raw = os.environ.get("REPLICATION_CONFIG")
    if env_raw:
        log.info("📋 Loading configuration from REPLICATION_CONFIG environment variable")
        return parse_catalog(env_raw, "REPLICATION_CONFIG")

    tried = "\n".join(f"  - {c}" for c in candidates)
    raise ConfigError(
        f"No configuration found. Tried the following locations:\n{tried}\n\n"
        "Alternatively, set REPLICATION_CONFIG environment variable."
    )

def load_airflow_catalog() -> Dict[str, Any]:
    """Catalog for the DAG files; the path comes from the Airflow Variable 'REPLICATION_CONFIG_PATH'."""
    from airflow.models import Variable
    path = Variable.get("REPLICATION_CONFIG_PATH", default_var="/opt/airflow/dags/replication-config.json").strip()
    return load_catalog(path)

# ------------------------ Airflow Connections ------------------------

ConnectionResolver = Callable[[str], Dict[str, Any]]

def airflow_connection(conn_id: str) -> Dict[str, Any]:
    """Endpoint fields from an Airflow Connection (login -> user, schema -> database)."""
    from airflow.hooks.base import BaseHook
    conn = BaseHook.get_connection(conn_id)
    return {
        "host": conn.host,
        "port": conn.port or 5432,
        "user": conn.login,
        "password": conn.password,
        "database": conn.schema,
    }

# ------------------------ Validation helpers ------------------------

def _require(section: Dict[str, Any], key: str, where: str) -> Any:
    value = section.get(key)
    if value in (None, ""):
        raise ConfigError(f"Missing {key} in {where}")
    return value

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def _table_list(value: Any, where: str) -> tuple:
    if not isinstance(value, list) or not value:
        raise ConfigError(f"At least one table must be specified for {where}")
    for t in value:
        if not isinstance(t, str) or not t.strip():
            raise ConfigError(f"Invalid table name {t!r} in {where}")
    return tuple(t.strip() for t in value)

def _database_config(section: Any, name: str,
                     resolve_connection: ConnectionResolver = airflow_connection) -> DatabaseConfig:
    if not isinstance(section, dict):
        raise ConfigError(f"Missing {name} database configuration")
    where = f"{name} database configuration"
    if section.get("conn_id"):
        conn_id = str(section["conn_id"])
        where = f"{name} database configuration (conn_id {conn_id!r})"
        section = resolve_connection(conn_id)
    fields = {k: _require(section, k, where) for k in ("host", "port", "user", "password", "database")}
    port = fields["port"]
    if not _is_int(port) or port <= 0 or port > 65535:
        raise ConfigError(f"Invalid port number for {where}")
    return DatabaseConfig(
        host=str(fields["host"]),
        port=port,
        user=str(fields["user"]),
        password=str(fields["password"]),
        database=str(fields["database"]),
    )

def _check_settings(settings: Dict[str, Any], allowed: tuple, where: str) -> Dict[str, Any]:
    if not isinstance(settings, dict):
        raise ConfigError(f"settings must be an object in {where}")
    unknown = sorted(set(settings) - set(allowed))
    if unknown:
        raise ConfigError(f"Unknown settings in {where}: {', '.join(unknown)}")

    if "max_wait_attempts" in settings:
        v = settings["max_wait_attempts"]
        if not _is_int(v) or v <= 0:
            raise ConfigError("max_wait_attempts must be a positive integer")
    if "wait_interval_seconds" in settings:
        v = settings["wait_interval_seconds"]
        if not _is_number(v) or v <= 0:
            raise ConfigError("wait_interval_seconds must be a positive number")
    for key in TARGET_SETTINGS_KEYS:
        if key in settings and not isinstance(settings[key], bool):
            raise ConfigError(f"{key} must be a boolean")
    return dict(settings)

# ------------------------ Config builders ------------------------

def build_replication_config(section: Dict[str, Any],
                             resolve_connection: ConnectionResolver = airflow_connection) -> ReplicationConfig:
    """
    Database blocks carry host/port/user/password/database inline, or a
    "conn_id" naming an Airflow Connection that supplies them.
    """
    if not isinstance(section, dict):
        raise ConfigError('Missing "replication" section in configuration')

    publication_name = _require(section, "publication_name", "configuration")
    if not isinstance(publication_name, str):
        raise ConfigError("publication_name must be a string")
    source = _database_config(section.get("source"), "source", resolve_connection)

    raw_targets = section.get("targets")
    if not isinstance(raw_targets, list) or not raw_targets:
        raise ConfigError("At least one target database must be configured")

    targets: List[TargetConfig] = []
    for index, tgt in enumerate(raw_targets, start=1):
        if not isinstance(tgt, dict) or not tgt.get("name"):
            raise ConfigError(f"Target {index} is missing a name")
        name = str(tgt["name"])
        if not tgt.get("subscription_name"):
            raise ConfigError(f'Target "{name}" is missing subscription_name')
        where = f'target "{name}"'
        tables = _table_list(tgt["tables"], where) if tgt.get("tables") is not None else None
        targets.append(TargetConfig(
            name=name,
            subscription_name=str(tgt["subscription_name"]),
            database=_database_config(tgt, where, resolve_connection),
            tables=tables,
            settings=_check_settings(tgt.get("settings") or {}, TARGET_SETTINGS_KEYS, where),
        ))

    for attr, label in (("name", "target name"), ("subscription_name", "subscription name")):
        seen = set()
        for t in targets:
            value = getattr(t, attr)
            if value in seen:
                raise ConfigError(f"Duplicate {label}: {value!r}")
            seen.add(value)

    tables = _table_list(section.get("tables"), "replication")
    settings = _check_settings(section.get("settings") or {}, SETTINGS_KEYS, "replication settings")

    return ReplicationConfig(
        publication_name=publication_name,
        source=source,
        targets=tuple(targets),
        tables=tables,
        settings=ReplicationSettings(**settings),
    )

def build_replication_configs(catalog: Dict[str, Any],
                              resolve_connection: ConnectionResolver = airflow_connection) -> List[ReplicationConfig]:
    """
    Accepts {"replication": {...}} or {"replications": [{...}, ...]}.
    """
    if "replications" in catalog:
        sections = catalog["replications"]
        if not isinstance(sections, list) or not sections:
            raise ConfigError('"replications" must be a non-empty list')
    elif "replication" in catalog:
        sections = [catalog["replication"]]
    else:
        raise ConfigError('Missing "replication" section in configuration')

    configs = [build_replication_config(s, resolve_connection) for s in sections]
    names = [c.publication_name for c in configs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate publication_name: {', '.join(dupes)}")
    return configs

def default_catalog() -> Dict[str, Any]:
    return {
        "replication": {
            "publication_name": "default_publication",
            "source": {
                "host": "localhost",
                "port": 5432,
                "user": "postgres",
                "password": "password",
                "database": "sourcedb",
            },
            "targets": [
                {
                    "name": "default_target",
                    "subscription_name": "default_subscription",
                    "host": "localhost",
                    "port": 5433,
                    "user": "postgres",
                    "password": "password",
                    "database": "targetdb",
                }
            ],
            "tables": ["users", "posts"],
            "settings": {
                "max_wait_attempts": 30,
                "wait_interval_seconds": 5,
                "enable_initial_sync": True,
                "disable_triggers_during_sync": True,
            },
        }
    }
