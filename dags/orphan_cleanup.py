"""Orphan cleanup DAG - on-demand reconciliation of statement records against storage."""

import logging
from datetime import datetime, timedelta

from airflow import DAG
from airflow.sdk.definitions.decorators import task

from config.settings import settings
from core.report import log_summary
from integrations.runtime import open_orchestrator

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = {
    "dry_run": True,
    "cleanup_scope": "all",
    "batch_size": settings.BATCH_SIZE,
    "max_records": settings.MAX_RECORDS,
    "include_blobs": False,
}


@task
def check_status():
    """Log totals and a sampled orphan estimate before the full run."""
    with open_orchestrator(settings) as (orchestrator, _runs):
        status = orchestrator.status(settings.STATUS_SAMPLE_SIZE)
    logger.info(status["message"])
    return status


@task
def reconcile(status, params=None):
    """Run the reconciliation with the trigger params."""
    if not status.get("can_perform_cleanup", True):
        raise RuntimeError(status["message"])

    options = {**DEFAULT_PARAMS, **(params or {})}
    logger.info(f"Sampled estimate before run: {status['stats']['estimated_orphaned_records']}")

    with open_orchestrator(settings) as (orchestrator, _runs):
        result = orchestrator.run(
            batch_size=int(options["batch_size"]),
            dry_run=bool(options["dry_run"]),
            cleanup_scope=options["cleanup_scope"],
            max_records=int(options["max_records"]),
            include_blobs=bool(options["include_blobs"]),
            timeout=settings.TIMEOUT_SECONDS,
        )

    if not result.success:
        raise RuntimeError(f"Reconciliation failed: {result.error}")

    log_summary(result.report)
    return result.report.to_dict()


@task
def store_report(report):
    """Store the run report to MongoDB."""
    with open_orchestrator(settings) as (_orchestrator, runs):
        return runs.store(report)


with DAG(
    dag_id="orphan_cleanup",
    start_date=datetime(2024, 1, 1),
    schedule=None,
    catchup=False,
    params=DEFAULT_PARAMS,
    default_args={
        "owner": "batch_processing",
        "retries": 1,
        "retry_delay": timedelta(seconds=30),
    },
) as dag:

    status = check_status()
    report = reconcile(status)
    stored = store_report(report)

    status >> report >> stored
