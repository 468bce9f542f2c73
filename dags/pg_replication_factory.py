from __future__ import annotations

import logging
from typing import Any, Dict

import pendulum

from airflow.decorators import dag, task
from airflow.exceptions import AirflowFailException

from pg_replication.ReplicationConfig import ReplicationConfig
from pg_replication.alerts import send_discord_alert
from pg_replication.catalog import build_replication_configs, load_airflow_catalog
from pg_replication.errors import ReplicationError
from pg_replication.orchestrator import ReplicationOrchestrator, summarize_report

log = logging.getLogger(__name__)

# ------------------------ DAG creation helpers ------------------------
def _build_replication_dag(cfg: ReplicationConfig):
    dag_id = f"pg_replication_{cfg.publication_name}"

    @dag(
        dag_id=dag_id,
        schedule="0 * * * *",
        start_date=pendulum.datetime(2025, 8, 18, tz="UTC"),
        catchup=False,
        max_active_runs=1,
        tags=["pg_replication", cfg.publication_name],
        description=(
            f"Publication {cfg.publication_name} on {cfg.source.describe()} → "
            f"{', '.join(t.name for t in cfg.targets)}"
        ),
    )
    def replication_dag():

        @task
        def provision() -> Dict[str, Any]:
            log.info("Provisioning publication %s for %d target(s)", cfg.publication_name, len(cfg.targets))
            try:
                report = ReplicationOrchestrator(cfg).run()
            except ReplicationError as e:
                raise AirflowFailException(f"Replication setup failed: {e}") from e
            return report.as_dict()

        @task(do_xcom_push=False)
        def alerting(payload: Dict[str, Any]) -> None:
            summary = summarize_report(payload)
            if payload.get("all_succeeded") and payload.get("all_active"):
                log.info("🎉 %s. No alert.", summary)
                return

            lines = []
            for r in payload.get("results", []):
                if not r.get("success"):
                    lines.append(f"- `{r.get('target')}`: {r.get('error')}")
            for t in (payload.get("status") or {}).get("targets", []):
                if not t.get("active"):
                    lines.append(f"- `{t.get('target')}`: subscription `{t.get('subscription')}` not active")
            header = f"❗️ **Replication not healthy** for publication `{cfg.publication_name}`\n{summary}"
            message = header + ("\n" + "\n".join(lines) if lines else "")
            try:
                send_discord_alert(message)
            except Exception as e:
                log.exception("Failed to send Discord alert: %s", e)

        alerting(provision())

    return replication_dag()

# ------------------------ Generate all DAGs from catalog ------------------------
for _cfg in build_replication_configs(load_airflow_catalog()):
    dag_obj = _build_replication_dag(_cfg)
    # Ensure Airflow UI shows this file as the DAG source
    dag_obj.fileloc = __file__
    globals()[dag_obj.dag_id] = dag_obj
