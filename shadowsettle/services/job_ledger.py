# shadowsettle/services/job_ledger.py
"""
Persistence for settlement jobs, keyed by task id.

create_job is an idempotent upsert: an existing row keeps its deal id and
result (first non-null wins), takes the latest status/error, and refreshes
updated_at. patch_job only touches the supplied fields.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from shadowsettle.errors import NotFoundError, ValidationError
from shadowsettle.models import db
from shadowsettle.models.job import DEFAULT_SETTLEMENT_NAME, JOB_STATUSES, SettlementJob

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 500
MAX_LIST_LIMIT = 2000
PATCHABLE_FIELDS = ("status", "result", "error", "settledTxHash", "settledAt")


# ---------------------------
# Normalization helpers
# ---------------------------

def _norm_wallet(wallet) -> Optional[str]:
    if wallet is None:
        return None
    w = str(wallet).strip().lower()
    return w or None


def _norm_status(status) -> str:
    s = str(status or "submitted").strip().lower()
    if s not in JOB_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Use one of: {', '.join(JOB_STATUSES)}")
    return s


def _to_datetime(value) -> Optional[datetime]:
    """Accept epoch milliseconds, ISO-8601 strings or datetimes; store naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value}")
    else:
        raise ValidationError(f"Invalid timestamp: {value}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def epoch_ms(dt: Optional[datetime]) -> Optional[int]:
    if dt is None:
        return None
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def _iso(dt) -> Optional[str]:
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


def job_to_dict(job: SettlementJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "taskId": job.task_id,
        "dealId": job.deal_id,
        "walletAddress": job.wallet_address,
        "settlementName": job.settlement_name,
        "status": job.status,
        "result": job.result,
        "error": job.error,
        "datasetUrlOverride": job.dataset_url_override,
        "submittedAt": epoch_ms(job.submitted_at),
        "settledTxHash": job.settled_tx_hash,
        "settledAt": epoch_ms(job.settled_at),
        "createdAt": _iso(job.created_at),
        "updatedAt": _iso(job.updated_at),
    }


# ---------------------------
# Writes
# ---------------------------

def _merge(job: SettlementJob, data: Dict[str, Any], now: datetime) -> None:
    if data.get("deal_id") and not job.deal_id:
        job.deal_id = data["deal_id"]
    if data.get("settlement_name"):
        job.settlement_name = data["settlement_name"]
    if data.get("wallet_address") and not job.wallet_address:
        job.wallet_address = data["wallet_address"]
    if data.get("result") is not None and job.result is None:
        job.result = data["result"]
    job.status = data["status"]
    job.error = data.get("error")
    job.updated_at = max(now, job.submitted_at or now)


def create_job(
    task_id: str,
    *,
    deal_id: Optional[str] = None,
    wallet_address: Optional[str] = None,
    settlement_name: Optional[str] = None,
    status: Optional[str] = None,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    dataset_url_override: Optional[str] = None,
    submitted_at=None,
) -> SettlementJob:
    """Insert a job, or merge into the existing row for ``task_id``."""
    task_id = (task_id or "").strip() if isinstance(task_id, str) else None
    if not task_id:
        raise ValidationError("Missing or invalid taskId")

    now = datetime.utcnow()
    data = {
        "deal_id": deal_id or None,
        "wallet_address": _norm_wallet(wallet_address),
        "settlement_name": settlement_name or None,
        "status": _norm_status(status),
        "result": result,
        "error": error or None,
    }

    job = SettlementJob.query.filter_by(task_id=task_id).first()
    if job:
        _merge(job, data, now)
        db.session.commit()
        return job

    submitted = _to_datetime(submitted_at) or now
    job = SettlementJob(
        task_id=task_id,
        deal_id=data["deal_id"],
        wallet_address=data["wallet_address"],
        settlement_name=data["settlement_name"] or DEFAULT_SETTLEMENT_NAME,
        status=data["status"],
        result=result,
        error=data["error"],
        dataset_url_override=dataset_url_override or None,
        submitted_at=submitted,
        created_at=now,
        updated_at=max(now, submitted),
    )
    db.session.add(job)
    try:
        db.session.commit()
    except IntegrityError:
        # concurrent create for the same task id won the insert
        db.session.rollback()
        job = SettlementJob.query.filter_by(task_id=task_id).first()
        if job is None:
            raise
        _merge(job, data, datetime.utcnow())
        db.session.commit()
    return job


def patch_job(task_id: str, updates: Dict[str, Any]) -> SettlementJob:
    """
    Partial update by task id. ``updates`` uses the API field names
    (status, result, error, settledTxHash, settledAt).
    """
    fields = {k: updates[k] for k in PATCHABLE_FIELDS if k in updates}
    if not fields:
        raise ValidationError("No updates provided")

    job = get_job(task_id)

    # validate before touching the row
    status = _norm_status(fields["status"]) if "status" in fields else None
    settled_at = _to_datetime(fields["settledAt"]) if "settledAt" in fields else None
    if status == "settled" and job.result is None and fields.get("result") is None:
        raise ValidationError("A job without a result cannot be settled")

    if "result" in fields:
        if job.result is None:
            job.result = fields["result"]
        elif fields["result"] is not None and fields["result"] != job.result:
            logger.warning("patch_job task_id=%s: result already set, keeping the first one", job.task_id)
    if "error" in fields:
        job.error = fields["error"]
    if "settledTxHash" in fields:
        if job.settled_tx_hash and fields["settledTxHash"] != job.settled_tx_hash:
            logger.warning("patch_job task_id=%s: settled tx already recorded (%s)", job.task_id, job.settled_tx_hash)
        else:
            job.settled_tx_hash = fields["settledTxHash"]
    if "settledAt" in fields:
        job.settled_at = settled_at
    if status is not None:
        job.status = status

    job.updated_at = max(datetime.utcnow(), job.submitted_at)
    db.session.commit()
    return job


def mark_settled(task_id: str, tx_hash: str) -> SettlementJob:
    return patch_job(task_id, {
        "status": "settled",
        "settledTxHash": tx_hash,
        "settledAt": datetime.utcnow(),
    })


# ---------------------------
# Reads
# ---------------------------

def find_job(task_id: str) -> Optional[SettlementJob]:
    task_id = (task_id or "").strip()
    if not task_id:
        return None
    return SettlementJob.query.filter_by(task_id=task_id).first()


def get_job(task_id: str) -> SettlementJob:
    job = find_job(task_id)
    if job is None:
        raise NotFoundError("Job not found")
    return job


def list_jobs(wallet_address) -> List[SettlementJob]:
    """Jobs for one wallet, newest first. No wallet means no jobs."""
    wallet = _norm_wallet(wallet_address)
    if not wallet:
        return []
    return (
        SettlementJob.query
        .filter(SettlementJob.wallet_address == wallet)
        .order_by(SettlementJob.submitted_at.desc())
        .all()
    )


def list_all_jobs(limit: int = DEFAULT_LIST_LIMIT) -> List[SettlementJob]:
    try:
        limit = int(limit) or DEFAULT_LIST_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIST_LIMIT
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    return SettlementJob.query.order_by(SettlementJob.submitted_at.desc()).limit(limit).all()
