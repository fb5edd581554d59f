# shadowsettle/routes/dashboard_routes.py
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shadowsettle.config import load_settlement_settings
from shadowsettle.errors import SettlementError
from shadowsettle.models import db, store_enabled
from shadowsettle.services import dashboard_service, treasury_service

logger = logging.getLogger(__name__)

bp = Blueprint("dashboard", __name__)


def _treasury_or_none(use_store: bool):
    try:
        settings = load_settlement_settings(current_app.config)
        return treasury_service.get_treasury_balance(settings, use_store=use_store)
    except SettlementError as e:
        logger.info("stats without treasury balance: %s", e)
        return None


@bp.get("/stats")
def stats():
    """
    Totales del dashboard
    ---
    tags: [Dashboard]
    responses:
      200:
        description: OK
        schema:
          type: object
          properties:
            totalFundsDeposited: {type: string}
            totalFundsDepositedNum: {type: number}
            activePools: {type: integer}
            jobsRunning: {type: integer}
            settlementsCompleted: {type: integer}
            settlementsSettled: {type: integer}
    """
    use_store = store_enabled(current_app)
    try:
        out = dashboard_service.build_stats(_treasury_or_none(use_store), use_store)
        return jsonify(out), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("dashboard stats failed")
        return jsonify({"error": str(e)}), 500


@bp.get("/activity")
def activity():
    """
    Actividad reciente (job_started, job_completed, settlement_executed)
    ---
    tags: [Dashboard]
    parameters:
      - in: query
        name: limit
        required: false
        type: integer
        default: 30
      - in: query
        name: wallet
        required: false
        type: string
    responses:
      200: {description: OK}
    """
    try:
        events = dashboard_service.build_activity(
            request.args.get("wallet"),
            request.args.get("limit"),
            store_enabled(current_app),
        )
        return jsonify(events), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("dashboard activity failed")
        return jsonify({"error": str(e)}), 500
