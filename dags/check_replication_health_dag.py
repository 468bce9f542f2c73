from __future__ import annotations

import logging
from typing import Any, Dict, List

import pendulum

from airflow.decorators import dag, task

from pg_replication.ReplicationConfig import ReplicationConfig
from pg_replication.alerts import send_discord_alert
from pg_replication.catalog import build_replication_configs, load_airflow_catalog
from pg_replication.health import HealthChecker

log = logging.getLogger(__name__)


# ----------------------------- DAG factory -----------------------------

def _build_health_dag(cfg: ReplicationConfig):
    """
    Build a DAG that:
      - checks the source publication and every target subscription (read-only)
      - alerts when anything is not healthy
    """
    dag_id = f"pg_replication_health_{cfg.publication_name}"

    @dag(
        dag_id=dag_id,
        schedule="*/15 * * * *",
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["pg_replication", "health", cfg.publication_name],
        description=f"Replication health for publication {cfg.publication_name}",
    )
    def _dag():

        @task
        def check_health() -> Dict[str, Any]:
            return HealthChecker(cfg).check_health()

        @task(do_xcom_push=False)
        def alert_if_unhealthy(health: Dict[str, Any]) -> None:
            if health.get("status") == "healthy":
                log.info("🎉 Replication %s is healthy. No alert.", cfg.publication_name)
                return

            details = health.get("details", {})
            lines: List[str] = []
            source = details.get("source", {})
            if source.get("status") != "healthy":
                lines.append(f"- source `{cfg.source.describe()}`: {source.get('status')} {source.get('details')}")
            elif source.get("details", {}).get("missing_tables"):
                lines.append(f"- source: unpublished tables {source['details']['missing_tables']}")
            for t in details.get("targets", []):
                if t.get("status") != "healthy":
                    lines.append(f"- `{t.get('name')}`: {t.get('status')} {t.get('details')}")

            header = f"❗ **Replication unhealthy** for publication `{cfg.publication_name}`"
            try:
                send_discord_alert("\n".join([header, *lines]))
                log.info("🔔 Alert sent to Discord.")
            except Exception as e:
                log.exception("Failed to send Discord alert: %s", e)

        alert_if_unhealthy(check_health())

    return _dag()


# ----------------------------- DAG registration -----------------------------

for _cfg in build_replication_configs(load_airflow_catalog()):
    dag_obj = _build_health_dag(_cfg)
    globals()[dag_obj.dag_id] = dag_obj
