# shadowsettle/services/pipeline.py
"""
Glue between the compute network and the job ledger:
submit -> observe -> fetch -> persist.
"""
import logging
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from shadowsettle.config import load_iexec_settings
from shadowsettle.errors import SettlementError, TaskTimeoutError
from shadowsettle.logging_setup import short
from shadowsettle.models import db, store_enabled
from shadowsettle.services import job_ledger
from shadowsettle.services.iexec_client import IExecClient
from shadowsettle.services.order_assembler import DealHandle
from shadowsettle.services.result_fetcher import TaskResult, TaskStatus, fetch_task_result
from shadowsettle.services.task_observer import wait_for_task

logger = logging.getLogger(__name__)


def get_iexec_client() -> IExecClient:
    """Process-wide client, created on first use and kept in app.extensions."""
    client = current_app.extensions.get("iexec_client")
    if client is None:
        client = IExecClient(load_iexec_settings(current_app.config))
        current_app.extensions["iexec_client"] = client
    return client


def observation_timeout(client) -> float:
    return float(getattr(client.settings, "observation_timeout", None) or current_app.config["TASK_OBSERVATION_TIMEOUT"])


def wait_and_fetch(client, task_id: str, deal_id: str) -> TaskResult:
    wait_for_task(client, task_id, deal_id, timeout=observation_timeout(client))
    return fetch_task_result(client, task_id)


def record_submission(handle: DealHandle, *, wallet_address=None, settlement_name=None, dataset_url=None) -> None:
    """Best-effort job row for a freshly submitted task."""
    if not store_enabled(current_app):
        return
    try:
        job_ledger.create_job(
            handle.task_id,
            deal_id=handle.deal_id,
            wallet_address=wallet_address,
            settlement_name=settlement_name,
            status="submitted",
            dataset_url_override=dataset_url,
        )
    except (SQLAlchemyError, SettlementError) as e:
        db.session.rollback()
        logger.warning("could not record job task_id=%s: %s", short(handle.task_id), e)


def record_outcome(task_id: str, outcome: TaskResult = None, error: Optional[str] = None) -> None:
    """
    Patch the job with the fetched result, or with the failure message.
    Settled jobs are terminal and left untouched.
    """
    if not store_enabled(current_app):
        return
    job = job_ledger.find_job(task_id)
    if job is None or job.status == "settled" or job.settled_tx_hash:
        return
    if outcome is not None and outcome.status is TaskStatus.COMPLETED:
        job_ledger.patch_job(task_id, {"status": "completed", "result": outcome.result, "error": None})
    elif error is not None:
        job_ledger.patch_job(task_id, {"status": "failed", "error": error})


def track_task(client, task_id: str, deal_id: str) -> Dict[str, Any]:
    """
    Observe a submitted task to its end and persist what came out.
    A timeout only records the message; the job stays ``submitted`` so it
    can be re-polled through the result endpoint.
    """
    try:
        outcome = wait_and_fetch(client, task_id, deal_id)
    except TaskTimeoutError as e:
        job = job_ledger.find_job(task_id) if store_enabled(current_app) else None
        if job is not None and job.status != "settled":
            job_ledger.patch_job(task_id, {"error": str(e)})
        return {"taskId": task_id, "status": "timeout"}
    except SettlementError as e:
        record_outcome(task_id, error=str(e))
        return {"taskId": task_id, "status": "failed", "error": str(e)}

    record_outcome(task_id, outcome)
    return outcome.to_dict(task_id)
