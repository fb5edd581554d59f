# shadowsettle/tasks/settlement_tasks.py
import logging

from celery import shared_task
from flask import current_app

from shadowsettle.config import load_settlement_settings
from shadowsettle.errors import SettlementError
from shadowsettle.logging_setup import short
from shadowsettle.models import store_enabled
from shadowsettle.services import pipeline, treasury_service

logger = logging.getLogger(__name__)


@shared_task(name="settlement.track")
def track_settlement(task_id: str, deal_id: str):
    """
    Observa la task hasta que termina, baja el resultado y actualiza el job.
    No reintenta: un timeout deja el job en 'submitted' para re-consultarlo.
    """
    logger.info("tracking task_id=%s deal_id=%s", short(task_id), short(deal_id))
    try:
        client = pipeline.get_iexec_client()
    except SettlementError as e:
        logger.error("cannot track task_id=%s: %s", short(task_id), e)
        return {"taskId": task_id, "status": "failed", "error": str(e)}

    out = pipeline.track_task(client, task_id, deal_id)
    logger.info("tracked task_id=%s status=%s", short(task_id), out.get("status"))
    return out


@shared_task(name="settlement.refresh_treasury")
def refresh_treasury():
    """Lectura on-chain forzada del balance del contrato, persistida en la caché."""
    try:
        settings = load_settlement_settings(current_app.config)
        return treasury_service.get_treasury_balance(
            settings,
            force_refresh=True,
            use_store=store_enabled(current_app),
        )
    except SettlementError as e:
        logger.warning("treasury refresh failed: %s", e)
        return {"error": str(e)}
