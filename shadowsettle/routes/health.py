import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from shadowsettle.config import load_iexec_settings, load_settlement_settings
from shadowsettle.errors import ConfigurationError
from shadowsettle.services.chain import block_number, get_w3

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    """
    Healthcheck
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
    """
    return jsonify({"status": "ok"}), 200


def _check_rpc(uri: str, use_poa: bool) -> str:
    try:
        block_number(get_w3(uri, use_poa))
        return "ok"
    except Exception as e:
        logger.warning("rpc check failed for %s: %s", uri, e)
        return "error"


@bp.get("/health/checks")
def checks():
    """
    Estado de las dependencias (RPC de cómputo y de settlement)
    ---
    tags:
      - Health
    responses:
      200:
        description: "backend/iexec/chain: ok | error | not_configured"
    """
    try:
        iexec = load_iexec_settings(current_app.config)
        iexec_state = _check_rpc(iexec.rpc_url, iexec.use_poa)
    except ConfigurationError:
        iexec_state = "not_configured"

    try:
        settlement = load_settlement_settings(current_app.config)
        chain_state = _check_rpc(settlement.rpc_url, settlement.use_poa)
    except ConfigurationError:
        chain_state = "not_configured"

    return jsonify({
        "backend": "ok",
        "iexec": iexec_state,
        "chain": chain_state,
        "checkedAt": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
    }), 200
