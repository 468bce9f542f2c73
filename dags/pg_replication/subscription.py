from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from pg_replication.ReplicationConfig import ReplicationConfig, TargetConfig
from pg_replication.connections import ConnectionFactory, DatabaseConnection, pg_conn
from pg_replication.ddl import (
    SUBSCRIPTION_EXISTS_SQL,
    create_subscription_sql,
    mask_password,
    refresh_subscription_sql,
    source_conninfo,
)
from pg_replication.errors import DDLError, DatabaseConnectionError, QueryError, RefreshWarning
from pg_replication.validators import TableExistenceValidator

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionOutcome:
    target: str
    success: bool
    message: str
    error: str | None = None
    action: str | None = None               # "created" | "refreshed"
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "target": self.target,
            "success": self.success,
            "message": self.message,
        }
        if self.error is not None:
            d["error"] = self.error
        if self.action is not None:
            d["action"] = self.action
        if self.warnings:
            d["warnings"] = list(self.warnings)
        return d


class SubscriptionReconciler:
    """
    Ensures every target has a subscription bound to the publication.

    Targets are handled one at a time in catalog order. Each call opens its own
    target handle and always disconnects it before returning; nothing is shared
    between targets, so a failing target never blocks the others.
    """

    def __init__(self, config: ReplicationConfig,
                 connection_factory: ConnectionFactory = DatabaseConnection,
                 validator: TableExistenceValidator | None = None):
        self.config = config
        self.connection_factory = connection_factory
        self.validator = validator or TableExistenceValidator()

    def reconcile_all(self) -> List[SubscriptionOutcome]:
        LOG.info("Setting up subscriptions on %d target database(s)...", len(self.config.targets))
        outcomes: List[SubscriptionOutcome] = []
        for target in self.config.targets:
            outcomes.append(self.reconcile(target))
        return outcomes

    def reconcile(self, target: TargetConfig) -> SubscriptionOutcome:
        t0 = time.perf_counter()
        try:
            with pg_conn(target.database, self.connection_factory) as handle:
                if not handle.test_connection():
                    raise DatabaseConnectionError("Failed to connect to target database")

                LOG.info("Setting up subscription for target: %s (%s)", target.name, target.database.describe())
                settings = self.config.settings_for(target)
                tables = self.config.tables_for(target)
                LOG.info("Effective settings for %s: %s", target.name, settings)

                self.validator.validate(handle, tables)
                action, warnings = self._ensure_subscription(handle, target, settings.enable_initial_sync)
        except Exception as e:
            LOG.error("Error setting up subscription for %s: %s", target.name, e)
            return SubscriptionOutcome(
                target=target.name,
                success=False,
                message="Subscription setup failed",
                error=str(e) or type(e).__name__,
            )

        LOG.info("Subscription %r %s for target %s (%.3fs)",
                 target.subscription_name, action, target.name, time.perf_counter() - t0)
        return SubscriptionOutcome(
            target=target.name,
            success=True,
            message="Subscription setup completed successfully",
            action=action,
            warnings=tuple(warnings),
        )

    # ------------------------ State machine ------------------------

    def _ensure_subscription(self, handle, target: TargetConfig, copy_data: bool) -> Tuple[str, List[str]]:
        rows = handle.query(SUBSCRIPTION_EXISTS_SQL, (target.subscription_name,))
        if not rows:
            conninfo = source_conninfo(self.config.source)
            statement = create_subscription_sql(
                target.subscription_name, conninfo, self.config.publication_name, copy_data=copy_data,
            )
            LOG.info("Creating subscription: %s", create_subscription_sql(
                target.subscription_name, mask_password(conninfo), self.config.publication_name,
                copy_data=copy_data,
            ))
            try:
                handle.query(statement)
            except QueryError as e:
                raise DDLError(f"CREATE SUBSCRIPTION {target.subscription_name}",
                               {target.subscription_name: str(e)}) from e
            return "created", []

        LOG.info("Subscription %r already exists for target %s; refreshing publication",
                 target.subscription_name, target.name)
        try:
            handle.query(refresh_subscription_sql(target.subscription_name))
        except QueryError as e:
            warning = RefreshWarning(
                f"Refresh of subscription {target.subscription_name!r} failed: {e}"
            )
            LOG.warning("%s", warning)
            return "refreshed", [str(warning)]
        return "refreshed", []
