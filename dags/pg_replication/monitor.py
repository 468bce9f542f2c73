from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Tuple

from pg_replication.ReplicationConfig import ReplicationSettings, TargetConfig
from pg_replication.connections import ConnectionFactory, DatabaseConnection, pg_conn
from pg_replication.ddl import SUBSCRIPTION_STATUS_SQL

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetStatus:
    target: str
    subscription: str
    active: bool
    details: Dict[str, Any] | None = None
    error: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "target": self.target,
            "subscription": self.subscription,
            "active": self.active,
        }
        if self.error is not None:
            d["error"] = self.error
        else:
            d["details"] = self.details
        return d


@dataclass(frozen=True)
class StatusSnapshot:
    attempt: int
    statuses: Tuple[TargetStatus, ...]

    @property
    def all_active(self) -> bool:
        return all(s.active for s in self.statuses)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "all_active": self.all_active,
            "targets": [s.as_dict() for s in self.statuses],
        }


class ReplicationMonitor:
    """
    Soft-timeout poller over every target's subscription.

    Runs at most `max_wait_attempts` checks with `wait_interval_seconds` between
    them and stops early once every target is active. Exhausting the attempts
    is logged, never raised. Each check is rebuilt from scratch.
    """

    def __init__(self, targets: Iterable[TargetConfig], settings: ReplicationSettings,
                 connection_factory: ConnectionFactory = DatabaseConnection,
                 sleep: Callable[[float], None] = time.sleep):
        self.targets = tuple(targets)
        self.max_attempts = settings.max_wait_attempts
        self.interval = settings.wait_interval_seconds
        self.connection_factory = connection_factory
        self.sleep = sleep

    def check_target(self, target: TargetConfig) -> TargetStatus:
        try:
            with pg_conn(target.database, self.connection_factory) as handle:
                rows = handle.query(SUBSCRIPTION_STATUS_SQL, (target.subscription_name,))
        except Exception as e:
            LOG.warning("Status check failed for %s: %s", target.name, e)
            return TargetStatus(target.name, target.subscription_name, False, error=str(e) or type(e).__name__)

        row = rows[0] if rows else None
        active = bool(row and row.get("subenabled"))
        return TargetStatus(target.name, target.subscription_name, active, details=row)

    def check_status(self, attempt: int) -> StatusSnapshot:
        return StatusSnapshot(attempt, tuple(self.check_target(t) for t in self.targets))

    def run(self) -> StatusSnapshot:
        LOG.info("Starting replication monitoring (max_attempts=%d, interval=%ss)...",
                 self.max_attempts, self.interval)
        snapshot = StatusSnapshot(0, ())
        for attempt in range(1, self.max_attempts + 1):
            snapshot = self.check_status(attempt)
            LOG.info("Replication status check %d/%d: %s", attempt, self.max_attempts,
                     [(s.target, s.active) for s in snapshot.statuses])

            if snapshot.all_active:
                LOG.info("✅ All replications are active and healthy")
                return snapshot

            if attempt < self.max_attempts:
                LOG.info("Waiting %s seconds before next check...", self.interval)
                self.sleep(self.interval)

        inactive = [s.target for s in snapshot.statuses if not s.active]
        LOG.warning("❗️ Replication not active on %s after %d attempt(s); giving up monitoring",
                    ", ".join(inactive), self.max_attempts)
        return snapshot
