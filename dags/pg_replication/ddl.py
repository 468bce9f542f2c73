from __future__ import annotations

import logging
import re
from typing import Iterable

import psycopg2.extensions

from pg_replication.ReplicationConfig import DatabaseConfig

LOG = logging.getLogger(__name__)

# ============================== Catalog queries ===============================

PUBLICATION_EXISTS_SQL = "SELECT pubname FROM pg_publication WHERE pubname = %s"

PUBLISHED_TABLES_SQL = (
    "SELECT tablename FROM pg_publication_tables "
    "WHERE pubname = %s AND schemaname = 'public'"
)

TABLE_EXISTS_SQL = """
SELECT EXISTS (
  SELECT 1 FROM information_schema.tables
  WHERE table_schema = 'public' AND table_name = %s
)
""".strip()

SUBSCRIPTION_EXISTS_SQL = "SELECT subname FROM pg_subscription WHERE subname = %s"

SUBSCRIPTION_STATUS_SQL = (
    "SELECT subname, subenabled, subslotname FROM pg_subscription WHERE subname = %s"
)

# ============================== Quoting ===============================

def _qi(ident: str) -> str:
    q = '"' + ident.replace('"', '""') + '"'
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Quoted identifier: raw=%r quoted=%r", ident, q)
    return q

def _ql(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"

# ============================== Statement builders ===============================

def create_publication_sql(publication: str, tables: Iterable[str]) -> str:
    table_list = ", ".join(_qi(t) for t in tables)
    return f"CREATE PUBLICATION {_qi(publication)} FOR TABLE {table_list}"

def alter_publication_sql(publication: str, action: str, table: str) -> str:
    action = action.upper()
    if action not in ("ADD", "DROP"):
        raise ValueError(f"Unsupported publication action: {action!r}")
    return f"ALTER PUBLICATION {_qi(publication)} {action} TABLE {_qi(table)}"

def create_subscription_sql(subscription: str, conninfo: str, publication: str,
                            copy_data: bool = True) -> str:
    sql = (
        f"CREATE SUBSCRIPTION {_qi(subscription)} CONNECTION {_ql(conninfo)} "
        f"PUBLICATION {_qi(publication)}"
    )
    if not copy_data:
        sql += " WITH (copy_data = false)"
    return sql

def refresh_subscription_sql(subscription: str) -> str:
    return f"ALTER SUBSCRIPTION {_qi(subscription)} REFRESH PUBLICATION"

# ============================== Connection strings ===============================

def source_conninfo(source: DatabaseConfig) -> str:
    """libpq connection string the subscriber uses to reach the publisher."""
    return psycopg2.extensions.make_dsn(
        host=source.host,
        port=source.port,
        user=source.user,
        password=source.password,
        dbname=source.database,
    )

_PASSWORD_RE = re.compile(r"password=('(?:[^'\\]|\\.)*'|\S+)")
# source_conninfo() always emits dbname after password; the greedy match runs to the
# last " dbname=" so quoted or SQL-escaped passwords are covered whole
_CONNINFO_PASSWORD_RE = re.compile(r"password=.*(?= dbname=)", re.DOTALL)

def mask_password(text: str) -> str:
    """Mask the password of a libpq connection string, alone or embedded in a statement."""
    masked, n = _CONNINFO_PASSWORD_RE.subn("password=***", text)
    if n:
        return masked
    return _PASSWORD_RE.sub("password=***", text)
