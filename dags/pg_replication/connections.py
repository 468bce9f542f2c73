from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Sequence

import psycopg2
import psycopg2.extras

from pg_replication.ReplicationConfig import DatabaseConfig
from pg_replication.ddl import mask_password
from pg_replication.errors import DatabaseConnectionError, QueryError

LOG = logging.getLogger(__name__)


class DatabaseConnection:
    """One psycopg2 connection to one endpoint, opened on demand."""

    def __init__(self, cfg: DatabaseConfig, connect_timeout: int = 10):
        self.cfg = cfg
        self.connect_timeout = connect_timeout
        self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def connect(self) -> None:
        t0 = time.perf_counter()
        try:
            conn = psycopg2.connect(
                host=self.cfg.host,
                port=self.cfg.port,
                user=self.cfg.user,
                password=self.cfg.password,
                dbname=self.cfg.database,
                connect_timeout=self.connect_timeout,
            )
        except psycopg2.Error as e:
            raise DatabaseConnectionError(f"Cannot connect to {self.connection_info()}: {e}") from e
        # CREATE/ALTER SUBSCRIPTION refuse to run inside a transaction block
        conn.autocommit = True
        self._conn = conn
        LOG.info("Connected to database at %s (%.3fs)", self.connection_info(), time.perf_counter() - t0)

    def disconnect(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        conn.close()
        LOG.info("Disconnected from database at %s", self.connection_info())

    def query(self, text: str, params: Sequence[Any] | None = None) -> List[Dict[str, Any]]:
        if not self.connected:
            raise DatabaseConnectionError(f"Not connected to {self.connection_info()}")
        if LOG.isEnabledFor(logging.DEBUG):
            LOG.debug("SQL on %s: %s params=%r", self.connection_info(), mask_password(text), params)
        try:
            with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as c:
                c.execute(text, params)
                if c.description is None:
                    return []
                return [dict(r) for r in c.fetchall()]
        except psycopg2.Error as e:
            LOG.error("Database query error on %s: %s", self.connection_info(), e)
            raise QueryError(str(e).strip()) from e

    def test_connection(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except (QueryError, DatabaseConnectionError) as e:
            LOG.error("Connection test failed for %s: %s", self.connection_info(), e)
            return False

    def connection_info(self) -> str:
        return self.cfg.describe()


ConnectionFactory = Callable[[DatabaseConfig], Any]


@contextmanager
def pg_conn(cfg: DatabaseConfig, factory: ConnectionFactory = DatabaseConnection) -> Iterator[Any]:
    """
    Open a handle for the duration of the block.
    disconnect() runs exactly once on every exit path, including a failed connect().
    """
    handle = factory(cfg)
    try:
        handle.connect()
        yield handle
    finally:
        try:
            handle.disconnect()
        except Exception as e:
            LOG.error("Error disconnecting from %s: %s", cfg.describe(), e)
