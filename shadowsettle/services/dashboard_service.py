# shadowsettle/services/dashboard_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from shadowsettle.services import job_ledger
from shadowsettle.services.job_ledger import epoch_ms
from shadowsettle.services.units import from_base_units

logger = logging.getLogger(__name__)

STATS_JOB_LIMIT = job_ledger.MAX_LIST_LIMIT
ACTIVITY_JOB_LIMIT = 500
DEFAULT_ACTIVITY_LIMIT = 30
MAX_ACTIVITY_LIMIT = 100


def _payout_total(result) -> float:
    total = Decimal(0)
    for p in (result or {}).get("payouts") or []:
        try:
            total += Decimal(str(p.get("amount") or 0))
        except (ArithmeticError, ValueError, AttributeError):
            continue
    return float(total)


def job_stats(jobs) -> Dict[str, int]:
    stats = {"activePools": 0, "jobsRunning": 0, "settlementsCompleted": 0, "settlementsSettled": 0}
    for j in jobs:
        has_result = j.result is not None
        has_settled = j.settled_tx_hash is not None
        if has_result:
            stats["settlementsCompleted"] += 1
        if has_settled:
            stats["settlementsSettled"] += 1
        if has_result and not has_settled:
            stats["activePools"] += 1
        if not has_result and not j.error:
            stats["jobsRunning"] += 1
    return stats


def build_stats(balance: Optional[Dict[str, Any]], use_store: bool) -> Dict[str, Any]:
    """Totals over every wallet. ``balance`` is a Treasury Cache answer or None."""
    if balance:
        formatted = balance["balanceFormatted"]
        numeric = float(from_base_units(balance["balanceRaw"]))
    else:
        formatted, numeric = "0", 0

    counts = job_stats(job_ledger.list_all_jobs(STATS_JOB_LIMIT) if use_store else [])
    return {"totalFundsDeposited": formatted, "totalFundsDepositedNum": numeric, **counts}


def build_activity(wallet: Optional[str], limit, use_store: bool) -> List[Dict[str, Any]]:
    try:
        limit = min(int(limit or DEFAULT_ACTIVITY_LIMIT), MAX_ACTIVITY_LIMIT)
    except (TypeError, ValueError):
        limit = DEFAULT_ACTIVITY_LIMIT
    if not use_store:
        return []

    jobs = job_ledger.list_jobs(wallet) if wallet else job_ledger.list_all_jobs(ACTIVITY_JOB_LIMIT)
    events = []
    for j in jobs:
        name = j.settlement_name or "Settlement"
        participants = len((j.result or {}).get("payouts") or [])
        total = _payout_total(j.result)
        if j.submitted_at:
            events.append({
                "type": "job_started",
                "taskId": j.task_id,
                "settlementName": name,
                "timestamp": epoch_ms(j.submitted_at),
                "participants": None,
                "totalPayout": None,
            })
        if j.result is not None and j.updated_at:
            events.append({
                "type": "job_completed",
                "taskId": j.task_id,
                "settlementName": name,
                "timestamp": epoch_ms(j.updated_at),
                "participants": participants,
                "totalPayout": total if total > 0 else None,
            })
        if j.settled_tx_hash is not None and j.settled_at:
            events.append({
                "type": "settlement_executed",
                "taskId": j.task_id,
                "settlementName": name,
                "timestamp": epoch_ms(j.settled_at),
                "participants": participants,
                "totalPayout": total if total > 0 else None,
            })

    events.sort(key=lambda e: e["timestamp"], reverse=True)
    return events[:max(limit, 0)]
