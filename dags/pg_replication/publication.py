from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set, Tuple

from pg_replication.ddl import (
    PUBLICATION_EXISTS_SQL,
    PUBLISHED_TABLES_SQL,
    alter_publication_sql,
    create_publication_sql,
)
from pg_replication.errors import DDLError, QueryError

LOG = logging.getLogger(__name__)

# ============================== Helpers (module-level; stateless) ===============================

def _unique(tables: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for t in tables:
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out

def diff_tables(desired: Iterable[str], actual: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Return (to_add, to_remove) as sorted lists: desired - actual, actual - desired."""
    d, a = set(desired), set(actual)
    return sorted(d - a), sorted(a - d)


@dataclass(frozen=True)
class PublicationChange:
    publication_name: str
    created: bool = False
    to_add: Tuple[str, ...] = ()
    to_remove: Tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return self.created or bool(self.to_add) or bool(self.to_remove)

    def as_dict(self) -> Dict[str, object]:
        return {
            "publication_name": self.publication_name,
            "created": self.created,
            "to_add": list(self.to_add),
            "to_remove": list(self.to_remove),
        }

# ============================== Reconciler ===============================

class PublicationReconciler:
    """Converges one publication on the source towards the desired table set."""

    def __init__(self, publication_name: str, logger: logging.Logger | None = None):
        self.publication_name = publication_name
        self.log = logger or LOG

    # ------------------------ Catalog reads ------------------------

    def exists(self, source) -> bool:
        rows = source.query(PUBLICATION_EXISTS_SQL, (self.publication_name,))
        return len(rows) > 0

    def published_tables(self, source) -> Set[str]:
        t0 = time.perf_counter()
        rows = source.query(PUBLISHED_TABLES_SQL, (self.publication_name,))
        tables = {r["tablename"] for r in rows}
        self.log.debug("Published tables for %r: %s (%.3fs)",
                       self.publication_name, sorted(tables), time.perf_counter() - t0)
        return tables

    def drift(self, source, desired: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Read-only: (missing, extra) between desired and published tables."""
        if not self.exists(source):
            return sorted(set(desired)), []
        return diff_tables(desired, self.published_tables(source))

    # ------------------------ Reconciliation ------------------------

    def reconcile(self, source, desired: Iterable[str]) -> PublicationChange:
        """
        • Creates the publication for every desired table in one statement if absent.
        • Otherwise diffs desired vs published and issues one ALTER per table.
          Every ALTER is attempted; failures are collected and raised together
          as a DDLError once the batch is done.
        • A converged publication issues no DDL at all.
        """
        desired = _unique(desired)
        pub = self.publication_name
        t0 = time.perf_counter()
        self.log.info("Setting up publication %r on source database...", pub)

        if not self.exists(source):
            try:
                source.query(create_publication_sql(pub, desired))
            except QueryError as e:
                self.log.error("Error creating publication %r: %s", pub, e)
                raise DDLError(f"CREATE PUBLICATION {pub}", {pub: str(e)}) from e
            self.log.info("Publication %r created for tables: %s (%.3fs)",
                          pub, ", ".join(desired), time.perf_counter() - t0)
            return PublicationChange(pub, created=True, to_add=tuple(desired))

        actual = self.published_tables(source)
        to_add, to_remove = diff_tables(desired, actual)
        self.log.info("Publication %r already exists; to_add=%s to_remove=%s", pub, to_add, to_remove)

        if not to_add and not to_remove:
            self.log.info("Publication %r is up to date (%.3fs)", pub, time.perf_counter() - t0)
            return PublicationChange(pub)

        failures: Dict[str, str] = {}
        for action, tables in (("ADD", to_add), ("DROP", to_remove)):
            for table in tables:
                try:
                    source.query(alter_publication_sql(pub, action, table))
                    self.log.info("ALTER PUBLICATION %r %s TABLE %r", pub, action, table)
                except QueryError as e:
                    self.log.error("ALTER PUBLICATION %r %s TABLE %r failed: %s", pub, action, table, e)
                    failures[table] = str(e)

        if failures:
            raise DDLError(f"ALTER PUBLICATION {pub}", failures)

        remaining_add, remaining_remove = diff_tables(desired, self.published_tables(source))
        if remaining_add or remaining_remove:
            self.log.warning("Publication %r still drifts after reconciliation: missing=%s extra=%s",
                             pub, remaining_add, remaining_remove)

        self.log.info("Publication %r reconciled (%.3fs)", pub, time.perf_counter() - t0)
        return PublicationChange(pub, to_add=tuple(to_add), to_remove=tuple(to_remove))
