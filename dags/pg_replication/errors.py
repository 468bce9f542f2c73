from __future__ import annotations

from typing import Dict, Iterable, List


class ReplicationError(Exception):
    """Base class for every failure raised by the replication engine."""


class ConfigError(ReplicationError, ValueError):
    """The replication catalog is missing, unreadable or invalid."""


class DatabaseConnectionError(ReplicationError):
    """An endpoint could not be reached or did not answer a test query."""


class QueryError(ReplicationError):
    """A statement failed on a connected endpoint."""


class TableValidationError(ReplicationError):
    def __init__(self, missing_tables: Iterable[str]):
        self.missing_tables: List[str] = list(missing_tables)
        super().__init__(f"Missing tables: {', '.join(self.missing_tables)}")


class DDLError(ReplicationError):
    """
    A CREATE/ALTER statement failed.
    `failures` maps the table (or object) name to the driver error text so the
    operator gets the full remediation list in one pass.
    """

    def __init__(self, intent: str, failures: Dict[str, str] | None = None):
        self.intent = intent
        self.failures: Dict[str, str] = dict(failures or {})
        detail = "; ".join(f"{name}: {err}" for name, err in self.failures.items())
        super().__init__(f"{intent} failed" + (f" ({detail})" if detail else ""))


class RefreshWarning(UserWarning):
    """ALTER SUBSCRIPTION ... REFRESH PUBLICATION failed; logged, never raised."""
