"""
Replication orchestrator: the single entry point for one provisioning run.

Flow (strictly sequential):
  connect source -> reconcile publication -> reconcile each subscription
  -> log results and publication drift -> monitor -> disconnect source.

Source-path failures abort the run. Target failures are captured as outcomes.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from pg_replication.ReplicationConfig import ReplicationConfig
from pg_replication.connections import ConnectionFactory, DatabaseConnection
from pg_replication.errors import DatabaseConnectionError
from pg_replication.monitor import ReplicationMonitor, StatusSnapshot
from pg_replication.publication import PublicationChange, PublicationReconciler
from pg_replication.subscription import SubscriptionOutcome, SubscriptionReconciler

logger = logging.getLogger(__name__)

# ----------------------------- JSON/XCom helper -----------------------------
def _json_sanitize(val: Any) -> Any:
    """Ensure value is JSON-serializable (safe for Airflow XCom)."""
    return json.loads(json.dumps(val, default=str))


@dataclass
class ReplicationReport:
    publication: PublicationChange | None = None
    outcomes: List[SubscriptionOutcome] = field(default_factory=list)
    status: StatusSnapshot | None = None

    @property
    def all_succeeded(self) -> bool:
        return all(o.success for o in self.outcomes)

    @property
    def all_active(self) -> bool:
        return self.status is not None and self.status.all_active

    def as_dict(self) -> Dict[str, Any]:
        return _json_sanitize({
            "publication": self.publication.as_dict() if self.publication else None,
            "results": [o.as_dict() for o in self.outcomes],
            "status": self.status.as_dict() if self.status else None,
            "all_succeeded": self.all_succeeded,
            "all_active": self.all_active,
        })


class ReplicationOrchestrator:
    """Owns the source handle for the whole run; target handles stay inside each step."""

    def __init__(self, config: ReplicationConfig,
                 connection_factory: ConnectionFactory = DatabaseConnection,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.connection_factory = connection_factory
        self.sleep = sleep
        self.source = connection_factory(config.source)
        self.publications = PublicationReconciler(config.publication_name)
        self.subscriptions = SubscriptionReconciler(config, connection_factory)

    # ==========================================
    # Steps
    # ==========================================

    def initialize(self) -> None:
        logger.info("Initializing replication for publication %r...", self.config.publication_name)
        self.source.connect()
        if not self.source.test_connection():
            raise DatabaseConnectionError("Failed to connect to source database")
        logger.info("Source database connected: %s", self.config.source.describe())

    def setup_publication(self) -> PublicationChange:
        try:
            return self.publications.reconcile(self.source, self.config.tables)
        except Exception as e:
            logger.error("Error setting up publication: %s", e)
            raise

    def setup_subscriptions(self) -> List[SubscriptionOutcome]:
        return self.subscriptions.reconcile_all()

    def log_results(self, outcomes: List[SubscriptionOutcome]) -> None:
        for o in outcomes:
            if o.success:
                logger.info("✅ %s: %s", o.target, o.message)
            else:
                logger.error("❌ %s: %s - %s", o.target, o.message, o.error)

    def report_drift(self) -> None:
        """Read-only and advisory: a failed read is logged, never raised."""
        try:
            missing, extra = self.publications.drift(self.source, self.config.tables)
        except Exception as e:
            logger.error("Publication %r drift check failed: %s", self.config.publication_name, e)
            return
        if missing or extra:
            logger.warning("Publication %r drift: missing=%s extra=%s",
                           self.config.publication_name, missing, extra)
        else:
            logger.info("Publication %r publishes exactly: %s",
                        self.config.publication_name, ", ".join(sorted(set(self.config.tables))))

    def monitor_replication(self) -> StatusSnapshot:
        monitor = ReplicationMonitor(
            self.config.targets, self.config.settings, self.connection_factory, sleep=self.sleep,
        )
        return monitor.run()

    def cleanup(self) -> None:
        logger.info("Cleaning up replication manager...")
        try:
            self.source.disconnect()
        except Exception as e:
            logger.error("Error disconnecting from source: %s", e)

    # ==========================================
    # Main operation
    # ==========================================

    def run(self) -> ReplicationReport:
        report = ReplicationReport()
        t0 = time.perf_counter()
        try:
            self.initialize()
            report.publication = self.setup_publication()
            report.outcomes = self.setup_subscriptions()
            self.log_results(report.outcomes)
            self.report_drift()
            report.status = self.monitor_replication()
        except Exception as e:
            logger.error("Replication setup failed: %s", e)
            raise
        finally:
            self.cleanup()
        logger.info("Replication run for %r finished in %.3fs",
                    self.config.publication_name, time.perf_counter() - t0)
        return report


def summarize_report(payload: Dict[str, Any]) -> str:
    """
    Accepts ReplicationReport.as_dict() output.
    Returns a one-line summary and logs the per-target breakdown.
    """
    payload = _json_sanitize(payload)
    results = payload.get("results") or []
    status = payload.get("status") or {}
    active = {t.get("target"): bool(t.get("active")) for t in status.get("targets", [])}

    failed = [r for r in results if not r.get("success")]
    inactive = sorted(name for name, ok in active.items() if not ok)

    logger.info("\n%s\n📊 REPLICATION SUMMARY\n%s", "=" * 50, "=" * 50)
    for r in results:
        name = r.get("target")
        state = "active" if active.get(name) else "inactive"
        if r.get("success"):
            logger.info("  - %s: %s (%s)", name, r.get("action") or "ok", state)
        else:
            logger.warning("  - %s: FAILED (%s) - %s", name, r.get("error"), state)
        for w in r.get("warnings", []):
            logger.warning("    • %s", w)

    return (
        f"{len(results) - len(failed)}/{len(results)} subscription(s) set up, "
        f"{len(active) - len(inactive)}/{len(active)} active"
    )
