"""
Pre-flight checks run against a target before a subscription is created or refreshed.

Target schema is never created here: every replicated table must already exist
in the `public` schema of the target.
"""

import logging
import time
from typing import Iterable, List

from pg_replication.ddl import TABLE_EXISTS_SQL
from pg_replication.errors import QueryError, TableValidationError

logger = logging.getLogger(__name__)


class TableExistenceValidator:
    """Checks that every required table exists in a target database."""

    def find_missing(self, handle, tables: Iterable[str]) -> List[str]:
        """
        Check all tables, never stopping at the first miss.
        A table whose lookup fails is reported as missing.
        """
        missing: List[str] = []
        for table in tables:
            try:
                rows = handle.query(TABLE_EXISTS_SQL, (table,))
            except QueryError as e:
                logger.error("❌ Error checking table %r: %s", table, e)
                missing.append(table)
                continue
            if rows and rows[0].get("exists"):
                logger.info("✅ Table %r exists in target database", table)
            else:
                missing.append(table)
        return missing

    def validate(self, handle, tables: Iterable[str]) -> None:
        tables = list(tables)
        t0 = time.perf_counter()
        logger.info("🔍 Validating that required tables exist: %s", ", ".join(tables))

        missing = self.find_missing(handle, tables)
        if missing:
            logger.error(
                "❌ Missing required tables in target database: %s. "
                "Tables must be created manually before setting up replication.",
                ", ".join(missing),
            )
            raise TableValidationError(missing)

        logger.info("✅ All %d required tables exist (%.3fs)", len(tables), time.perf_counter() - t0)
