# shadowsettle/routes/settlement_routes.py
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shadowsettle.config import load_settlement_settings
from shadowsettle.errors import SettlementError, ValidationError
from shadowsettle.logging_setup import short
from shadowsettle.models import db, store_enabled
from shadowsettle.services import job_ledger, pipeline, settlement_service, treasury_service
from shadowsettle.services.order_assembler import submit_task
from shadowsettle.services.result_fetcher import fetch_task_result

logger = logging.getLogger(__name__)

bp = Blueprint("settlement", __name__)


# --- Helpers locales ---

def _as_bool(v) -> bool:
    return str(v).lower() in ("1", "true", "yes", "on")


def _error(exc: Exception):
    if isinstance(exc, SettlementError):
        return jsonify({"error": str(exc)}), exc.status_code
    logger.exception("unhandled error on %s", request.path)
    return jsonify({"error": str(exc) or "Internal error"}), 500


def _enqueue(task_name: str, *args) -> None:
    """Best-effort Celery enqueue; a broker outage must not fail the request."""
    try:
        from shadowsettle.tasks import settlement_tasks
        getattr(settlement_tasks, task_name).delay(*args)
    except Exception as e:
        logger.warning("could not enqueue %s: %s", task_name, e)


# --- Rutas ---

@bp.get("/config")
def settlement_config():
    """
    Settlement: contract and token addresses for the frontend
    ---
    tags: [Settlement]
    responses:
      200: {description: OK}
      503: {description: Settlement no configurado}
    """
    try:
        settings = load_settlement_settings(current_app.config)
    except SettlementError as e:
        return _error(e)

    token_address = settings.token_address
    if not token_address:
        try:
            token_address = settlement_service.resolve_token_address(settings)
        except SettlementError as e:
            logger.warning("config: could not read token from contract: %s", e)

    return jsonify({
        "settlementAddress": settings.contract_address,
        "tokenAddress": token_address or None,
        "chainId": settings.chain_id,
        "explorerUrl": settings.explorer_url,
    }), 200


@bp.get("/network-info")
def network_info():
    """
    Settlement: block height and gas price of the settlement chain
    ---
    tags: [Settlement]
    responses:
      200: {description: OK}
      503: {description: RPC no configurado}
    """
    try:
        settings = load_settlement_settings(current_app.config)
        return jsonify(settlement_service.network_info(settings)), 200
    except Exception as e:
        return _error(e)


@bp.get("/treasury-balance")
def treasury_balance():
    """
    Settlement: token balance held by the settlement contract
    ---
    tags: [Settlement]
    parameters:
      - in: query
        name: refresh
        required: false
        type: string
        description: "1/true fuerza lectura on-chain y actualiza la caché"
    responses:
      200: {description: OK}
      503: {description: Settlement no configurado}
    """
    force_refresh = _as_bool(request.args.get("refresh", "false"))
    try:
        settings = load_settlement_settings(current_app.config)
        out = treasury_service.get_treasury_balance(
            settings,
            force_refresh=force_refresh,
            use_store=store_enabled(current_app),
        )
        return jsonify(out), 200
    except Exception as e:
        return _error(e)


@bp.post("/run")
def run():
    """
    Settlement: submit the confidential settlement task
    ---
    tags: [Settlement]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [datasetUrl]
          properties:
            datasetUrl: {type: string, example: "https://example.com/dataset.json"}
            wait: {type: boolean, example: false}
            walletAddress: {type: string}
            settlementName: {type: string, example: "Settlement"}
    responses:
      200: {description: OK}
      400: {description: URL inválida}
      500: {description: Error del pipeline}
    """
    data = request.get_json(silent=True) or {}
    dataset_url = data.get("datasetUrl")
    if not dataset_url or not isinstance(dataset_url, str):
        return jsonify({"error": "Missing or invalid datasetUrl"}), 400
    url = dataset_url.strip()
    if not url.startswith(("http://", "https://")):
        return jsonify({"error": "datasetUrl must be an HTTP(S) URL"}), 400

    wait = _as_bool(data.get("wait", False))
    logger.info("run dataset_url=%s wait=%s", short(url, 60), wait)

    try:
        client = pipeline.get_iexec_client()
        handle = submit_task(client, url)
        pipeline.record_submission(
            handle,
            wallet_address=data.get("walletAddress"),
            settlement_name=data.get("settlementName"),
            dataset_url=url,
        )

        if wait:
            outcome = pipeline.wait_and_fetch(client, handle.task_id, handle.deal_id)
            pipeline.record_outcome(handle.task_id, outcome)
            return jsonify({**handle.to_dict(), "result": outcome.result}), 200

        _enqueue("track_settlement", handle.task_id, handle.deal_id)
        return jsonify({
            **handle.to_dict(),
            "message": "Task submitted. Use GET /settlement/result/:taskId to fetch the result.",
        }), 200
    except Exception as e:
        return _error(e)


@bp.get("/result/<task_id>")
def result(task_id: str):
    """
    Settlement: task status and parsed result
    ---
    tags: [Settlement]
    parameters:
      - in: path
        name: task_id
        required: true
        type: string
    responses:
      200: {description: OK}
      400: {description: Falta taskId}
    """
    task_id = (task_id or "").strip()
    if not task_id:
        return jsonify({"error": "Missing taskId"}), 400
    try:
        outcome = fetch_task_result(pipeline.get_iexec_client(), task_id)
        pipeline.record_outcome(task_id, outcome)
        return jsonify(outcome.to_dict(task_id)), 200
    except Exception as e:
        return _error(e)


@bp.post("/wait/<task_id>")
def wait(task_id: str):
    """
    Settlement: wait for the task to finish, then fetch its result
    ---
    tags: [Settlement]
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
          required: [dealId]
          properties:
            dealId: {type: string}
    responses:
      200: {description: OK}
      400: {description: Faltan taskId o dealId}
      504: {description: Timeout de observación}
    """
    data = request.get_json(silent=True) or {}
    deal_id = data.get("dealId")
    if not task_id or not deal_id:
        return jsonify({"error": "Missing taskId or dealId"}), 400
    try:
        outcome = pipeline.wait_and_fetch(pipeline.get_iexec_client(), task_id, deal_id)
        pipeline.record_outcome(task_id, outcome)
        return jsonify(outcome.to_dict(task_id)), 200
    except Exception as e:
        return _error(e)


@bp.post("/execute")
def execute():
    """
    Settlement: execute settleBatch on-chain
    ---
    tags: [Settlement]
    consumes: [application/json]
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [recipients, amounts, attestation]
          properties:
            recipients: {type: array, items: {type: string}}
            amounts: {type: array, items: {type: number}}
            attestation: {type: string, example: "0x01"}
            taskId: {type: string}
    responses:
      200: {description: OK}
      400: {description: Validación}
      503: {description: Settlement no configurado}
      500: {description: Error del contrato}
    """
    data = request.get_json(silent=True) or {}
    task_id = (data.get("taskId") or "").strip() if isinstance(data.get("taskId"), str) else None
    use_store = store_enabled(current_app)

    try:
        settings = load_settlement_settings(current_app.config, require_executor=True)

        job = job_ledger.find_job(task_id) if (task_id and use_store) else None
        if job is not None and job.result is None:
            raise ValidationError("Job has no result yet; settlement needs a completed task")

        receipt = settlement_service.execute_settlement(
            settings,
            data.get("recipients"),
            data.get("amounts"),
            data.get("attestation"),
        )
    except Exception as e:
        return _error(e)

    if job is not None:
        try:
            job_ledger.mark_settled(job.task_id, receipt.tx_hash)
        except (SQLAlchemyError, SettlementError) as e:
            db.session.rollback()
            logger.warning("settled but could not patch job task_id=%s: %s", short(task_id), e)

    _enqueue("refresh_treasury")
    return jsonify(receipt.to_dict()), 200
