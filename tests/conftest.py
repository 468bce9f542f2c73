"""
Shared pytest fixtures.

FakeServer keeps an in-memory Postgres catalog (tables, publications,
subscriptions) and interprets exactly the statements the engine issues, so
reconciliation can be exercised end to end without a database.
"""

import re
from typing import Any, Dict, List, Optional, Set

import pytest

from pg_replication import ddl
from pg_replication.ReplicationConfig import (
    DatabaseConfig,
    ReplicationConfig,
    ReplicationSettings,
    TargetConfig,
)
from pg_replication.errors import DatabaseConnectionError, QueryError

_CREATE_PUB = re.compile(r'^CREATE PUBLICATION "([^"]+)" FOR TABLE (.+)$')
_ALTER_PUB = re.compile(r'^ALTER PUBLICATION "([^"]+)" (ADD|DROP) TABLE "([^"]+)"$')
_CREATE_SUB = re.compile(r'^CREATE SUBSCRIPTION "([^"]+)" CONNECTION \'(.*)\' PUBLICATION "([^"]+)"( WITH \(copy_data = false\))?$')
_REFRESH_SUB = re.compile(r'^ALTER SUBSCRIPTION "([^"]+)" REFRESH PUBLICATION$')
_QUOTED = re.compile(r'"([^"]+)"')


class FakeServer:
    def __init__(self, tables=()):
        self.tables: Set[str] = set(tables)
        self.publications: Dict[str, Set[str]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.statements: List[str] = []
        self.reachable = True
        self.fail_patterns: List[str] = []
        self.ignored_patterns: List[str] = []      # recorded, reported as success, never applied
        self.new_subscriptions_enabled = True

    def ddl_statements(self, prefix: str = "") -> List[str]:
        return [s for s in self.statements
                if s.startswith(("CREATE", "ALTER")) and s.startswith(prefix)]

    def execute(self, text: str, params=None) -> List[Dict[str, Any]]:
        self.statements.append(text)
        for pattern in self.fail_patterns:
            if re.search(pattern, text) or (params and any(re.search(pattern, str(p)) for p in params)):
                raise QueryError(f"simulated failure for {pattern!r}")
        if any(re.search(pattern, text) for pattern in self.ignored_patterns):
            return []

        if text == "SELECT 1":
            return [{"?column?": 1}]
        if text == ddl.PUBLICATION_EXISTS_SQL:
            name = params[0]
            return [{"pubname": name}] if name in self.publications else []
        if text == ddl.PUBLISHED_TABLES_SQL:
            return [{"tablename": t} for t in sorted(self.publications.get(params[0], ()))]
        if text == ddl.TABLE_EXISTS_SQL:
            return [{"exists": params[0] in self.tables}]
        if text == ddl.SUBSCRIPTION_EXISTS_SQL:
            name = params[0]
            return [{"subname": name}] if name in self.subscriptions else []
        if text == ddl.SUBSCRIPTION_STATUS_SQL:
            sub = self.subscriptions.get(params[0])
            if sub is None:
                return []
            return [{"subname": params[0], "subenabled": sub["enabled"], "subslotname": params[0]}]

        m = _CREATE_PUB.match(text)
        if m:
            if m.group(1) in self.publications:
                raise QueryError(f'publication "{m.group(1)}" already exists')
            self.publications[m.group(1)] = set(_QUOTED.findall(m.group(2)))
            return []
        m = _ALTER_PUB.match(text)
        if m:
            pub, action, table = m.groups()
            if action == "ADD":
                self.publications[pub].add(table)
            else:
                self.publications[pub].discard(table)
            return []
        m = _CREATE_SUB.match(text)
        if m:
            self.subscriptions[m.group(1)] = {
                "enabled": self.new_subscriptions_enabled,
                "conninfo": m.group(2),
                "publication": m.group(3),
                "copy_data": m.group(4) is None,
            }
            return []
        m = _REFRESH_SUB.match(text)
        if m:
            if m.group(1) not in self.subscriptions:
                raise QueryError(f'subscription "{m.group(1)}" does not exist')
            return []
        raise AssertionError(f"FakeServer does not understand: {text}")


class FakeConnection:
    def __init__(self, cfg: DatabaseConfig, server: FakeServer):
        self.cfg = cfg
        self.server = server
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0

    def connect(self) -> None:
        self.connect_calls += 1
        if not self.server.reachable:
            raise DatabaseConnectionError(f"Cannot connect to {self.cfg.describe()}")
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def query(self, text: str, params=None) -> List[Dict[str, Any]]:
        if not self.connected:
            raise DatabaseConnectionError("Not connected")
        return self.server.execute(text, params)

    def test_connection(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except (QueryError, DatabaseConnectionError):
            return False

    def connection_info(self) -> str:
        return self.cfg.describe()


class FakeCluster:
    """Maps each endpoint host to a FakeServer and records every handle it hands out."""

    def __init__(self):
        self.servers: Dict[str, FakeServer] = {}
        self.handles: List[FakeConnection] = []

    def add(self, host: str, tables=()) -> FakeServer:
        self.servers[host] = FakeServer(tables)
        return self.servers[host]

    def __call__(self, cfg: DatabaseConfig) -> FakeConnection:
        handle = FakeConnection(cfg, self.servers[cfg.host])
        self.handles.append(handle)
        return handle

    def handles_for(self, host: str) -> List[FakeConnection]:
        return [h for h in self.handles if h.cfg.host == host]


def db(host: str, port: int = 5432, database: str = "app") -> DatabaseConfig:
    return DatabaseConfig(host=host, port=port, user="repl", password="secret", database=database)


def make_config(targets: int = 3, tables=("users", "posts", "comments"),
                settings: Optional[ReplicationSettings] = None, **target_overrides) -> ReplicationConfig:
    """target_overrides: {"t2": {"settings": {...}, "tables": (...)}}"""
    tgts = []
    for i in range(1, targets + 1):
        name = f"t{i}"
        extra = target_overrides.get(name, {})
        tgts.append(TargetConfig(
            name=name,
            subscription_name=f"sub_{name}",
            database=db(name, 5433),
            tables=extra.get("tables"),
            settings=extra.get("settings", {}),
        ))
    return ReplicationConfig(
        publication_name="app_pub",
        source=db("source"),
        targets=tuple(tgts),
        tables=tuple(tables),
        settings=settings or ReplicationSettings(max_wait_attempts=3, wait_interval_seconds=0),
    )


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def populated(cluster, config):
    """A source and three targets that already hold every replicated table."""
    cluster.add("source", config.tables)
    for t in config.targets:
        cluster.add(t.database.host, config.tables)
    return cluster


@pytest.fixture
def no_sleep():
    calls: List[float] = []
    def _sleep(seconds: float) -> None:
        calls.append(seconds)
    _sleep.calls = calls
    return _sleep
