import logging
from typing import Any, Dict, List

from pg_replication.ReplicationConfig import ReplicationConfig, TargetConfig
from pg_replication.connections import ConnectionFactory, DatabaseConnection, pg_conn
from pg_replication.ddl import SUBSCRIPTION_STATUS_SQL
from pg_replication.publication import PublicationReconciler

logger = logging.getLogger(__name__)


class HealthChecker:
    """Read-only check over the same catalog views the engine reconciles."""

    def __init__(self, config: ReplicationConfig,
                 connection_factory: ConnectionFactory = DatabaseConnection):
        self.config = config
        self.connection_factory = connection_factory

    def check_source(self) -> Dict[str, Any]:
        pub = PublicationReconciler(self.config.publication_name, logger=logger)
        try:
            with pg_conn(self.config.source, self.connection_factory) as handle:
                if not handle.test_connection():
                    return {"status": "unhealthy", "details": {"connected": False}}
                exists = pub.exists(handle)
                missing, _ = pub.drift(handle, self.config.tables)
        except Exception as e:
            logger.warning("Source health check failed: %s", e)
            return {"status": "unhealthy", "details": {"error": str(e) or type(e).__name__}}

        return {
            "status": "healthy",
            "details": {
                "connected": True,
                "publication_exists": exists,
                "publication_name": self.config.publication_name,
                "missing_tables": missing,
            },
        }

    def check_target(self, target: TargetConfig) -> Dict[str, Any]:
        try:
            with pg_conn(target.database, self.connection_factory) as handle:
                if not handle.test_connection():
                    return {"name": target.name, "status": "unhealthy", "details": {"connected": False}}
                rows = handle.query(SUBSCRIPTION_STATUS_SQL, (target.subscription_name,))
        except Exception as e:
            logger.warning("Target %s health check failed: %s", target.name, e)
            return {"name": target.name, "status": "unhealthy",
                    "details": {"error": str(e) or type(e).__name__}}

        exists = len(rows) > 0
        enabled = exists and bool(rows[0].get("subenabled"))
        return {
            "name": target.name,
            "status": "healthy" if exists and enabled else "degraded",
            "details": {
                "connected": True,
                "subscription_exists": exists,
                "subscription_enabled": enabled,
                "subscription_name": target.subscription_name,
            },
        }

    def check_health(self) -> Dict[str, Any]:
        source = self.check_source()
        targets: List[Dict[str, Any]] = [self.check_target(t) for t in self.config.targets]
        healthy = source["status"] == "healthy" and all(t["status"] == "healthy" for t in targets)
        logger.info("Health: %s (source=%s, targets=%s)", "healthy" if healthy else "unhealthy",
                    source["status"], [(t["name"], t["status"]) for t in targets])
        return {
            "status": "healthy" if healthy else "unhealthy",
            "details": {"source": source, "targets": targets},
        }
