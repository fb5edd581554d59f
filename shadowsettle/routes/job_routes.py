# shadowsettle/routes/job_routes.py
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shadowsettle.errors import SettlementError
from shadowsettle.models import db, store_enabled
from shadowsettle.services import job_ledger

logger = logging.getLogger(__name__)

bp = Blueprint("jobs", __name__)

STORE_NOT_CONFIGURED = "Job store not configured"


def _error(exc: Exception):
    if isinstance(exc, SettlementError):
        return jsonify({"error": str(exc)}), exc.status_code
    if isinstance(exc, SQLAlchemyError):
        db.session.rollback()
    logger.exception("unhandled error on %s", request.path)
    return jsonify({"error": str(exc) or "Internal error"}), 500


@bp.get("")
def list_jobs():
    """
    Jobs de una wallet (más recientes primero)
    ---
    tags: [Jobs]
    parameters:
      - in: query
        name: wallet
        required: false
        type: string
    responses:
      200: {description: OK}
    """
    wallet = request.args.get("wallet")
    if not wallet or not store_enabled(current_app):
        return jsonify([]), 200
    try:
        return jsonify([job_ledger.job_to_dict(j) for j in job_ledger.list_jobs(wallet)]), 200
    except Exception as e:
        return _error(e)


@bp.post("")
def create_job():
    """
    Crear o actualizar un job por taskId
    ---
    tags: [Jobs]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [taskId]
          properties:
            taskId: {type: string}
            dealId: {type: string}
            walletAddress: {type: string}
            settlementName: {type: string}
            status: {type: string, example: "submitted"}
            result: {type: object}
            error: {type: string}
            datasetUrlOverride: {type: string}
            submittedAt: {type: integer, description: "epoch ms"}
    responses:
      201: {description: Creado}
      400: {description: Falta taskId}
      503: {description: Store no configurado}
    """
    if not store_enabled(current_app):
        return jsonify({"error": STORE_NOT_CONFIGURED}), 503

    data = request.get_json(silent=True) or {}
    try:
        job = job_ledger.create_job(
            data.get("taskId"),
            deal_id=data.get("dealId"),
            wallet_address=data.get("walletAddress"),
            settlement_name=data.get("settlementName"),
            status=data.get("status"),
            result=data.get("result"),
            error=data.get("error"),
            dataset_url_override=data.get("datasetUrlOverride"),
            submitted_at=data.get("submittedAt"),
        )
        return jsonify(job_ledger.job_to_dict(job)), 201
    except Exception as e:
        return _error(e)


@bp.get("/by-task/<task_id>")
def get_job(task_id: str):
    """
    Obtener un job por taskId
    ---
    tags: [Jobs]
    parameters:
      - in: path
        name: task_id
        required: true
        type: string
    responses:
      200: {description: OK}
      404: {description: No encontrado}
    """
    if not store_enabled(current_app):
        return jsonify({"error": STORE_NOT_CONFIGURED}), 503
    try:
        return jsonify(job_ledger.job_to_dict(job_ledger.get_job(task_id))), 200
    except Exception as e:
        return _error(e)


@bp.patch("/by-task/<task_id>")
def patch_job(task_id: str):
    """
    Actualización parcial de un job
    ---
    tags: [Jobs]
    consumes: [application/json]
    parameters:
      - in: path
        name: task_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            status: {type: string}
            result: {type: object}
            error: {type: string}
            settledTxHash: {type: string}
            settledAt: {type: integer}
    responses:
      200: {description: OK}
      400: {description: Sin cambios o inválido}
      404: {description: No encontrado}
    """
    if not store_enabled(current_app):
        return jsonify({"error": STORE_NOT_CONFIGURED}), 503

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "No updates provided"}), 400
    try:
        return jsonify(job_ledger.job_to_dict(job_ledger.patch_job(task_id, data))), 200
    except Exception as e:
        return _error(e)
