# shadowsettle/services/settlement_service.py
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from web3 import Web3
from web3.exceptions import Web3Exception

from shadowsettle.config import SettlementSettings
from shadowsettle.errors import (
    ConfigurationError,
    ExecutionError,
    NetworkError,
    ValidationError,
    error_for_selector,
)
from shadowsettle.services.chain import get_w3, load_abi, revert_data, send_transaction, wait_for_receipt
from shadowsettle.services.units import (
    USDC_DECIMALS,
    from_base_units,
    normalize_address,
    to_attestation_bytes,
    to_base_units,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementReceipt:
    tx_hash: str
    explorer_url: str

    def to_dict(self):
        return {"txHash": self.tx_hash, "explorerUrl": self.explorer_url}


def settlement_w3(settings: SettlementSettings) -> Web3:
    return get_w3(settings.rpc_url, use_poa=settings.use_poa)


def settlement_contract(w3: Web3, settings: SettlementSettings):
    return w3.eth.contract(address=Web3.to_checksum_address(settings.contract_address), abi=load_abi("Settlement"))


def validate_batch(recipients, amounts, attestation) -> Tuple[List[str], List[int], bytes]:
    """Check and normalize a settleBatch call: checksummed recipients, fixed-point amounts, raw attestation."""
    if not isinstance(recipients, list) or not isinstance(amounts, list) or len(recipients) != len(amounts):
        raise ValidationError("Invalid body: need recipients and amounts arrays of the same length")
    attestation_bytes = to_attestation_bytes(attestation)
    if not recipients:
        raise ValidationError("At least one recipient required")

    checksummed = [normalize_address(r) for r in recipients]
    base_units = [to_base_units(a, USDC_DECIMALS) for a in amounts]
    return checksummed, base_units, attestation_bytes


def decode_execution_error(exc: BaseException) -> ExecutionError:
    """Known contract reverts become their own error kind; anything else is an ExecutionError."""
    typed = error_for_selector(revert_data(exc))
    if typed is not None:
        return typed
    message = getattr(exc, "message", None) or str(exc) or "Settlement execute failed"
    return ExecutionError(message)


def execute_settlement(
    settings: SettlementSettings,
    recipients: Sequence,
    amounts: Sequence,
    attestation: str,
    *,
    w3: Optional[Web3] = None,
) -> SettlementReceipt:
    """
    Call Settlement.settleBatch as the executor and wait for confirmation.

    The contract refuses a reused attestation; that revert surfaces as
    AlreadySettledError so callers can tell it from other failures.
    """
    if not settings.executor_private_key:
        raise ConfigurationError("SETTLEMENT_EXECUTOR_PRIVATE_KEY not configured")

    checksummed, base_units, attestation_bytes = validate_batch(recipients, amounts, attestation)
    total = from_base_units(sum(base_units))
    logger.info("execute: recipients=%d total=%s", len(checksummed), total)

    w3 = w3 or settlement_w3(settings)
    contract = settlement_contract(w3, settings)
    fn = contract.functions.settleBatch(checksummed, base_units, attestation_bytes)

    try:
        tx_hash = send_transaction(w3, fn, settings.executor_private_key, chain_id=settings.chain_id)
        wait_for_receipt(w3, tx_hash)
    except (Web3Exception, ValueError, OSError) as e:
        # reverts and RPC errors alike may carry revert data
        raise decode_execution_error(e) from e

    explorer_url = f"{settings.explorer_url}/tx/{tx_hash}"
    logger.info("execute: tx_hash=%s", tx_hash)
    return SettlementReceipt(tx_hash=tx_hash, explorer_url=explorer_url)


def resolve_token_address(settings: SettlementSettings, w3: Optional[Web3] = None) -> str:
    if settings.token_address:
        return Web3.to_checksum_address(settings.token_address)
    w3 = w3 or settlement_w3(settings)
    try:
        return settlement_contract(w3, settings).functions.token().call()
    except Exception as e:
        raise ConfigurationError(f"Could not resolve token address: {e}") from e


def read_treasury_balance(settings: SettlementSettings, w3: Optional[Web3] = None) -> int:
    """Token balance held by the settlement contract (fixed-point integer)."""
    w3 = w3 or settlement_w3(settings)
    token_address = resolve_token_address(settings, w3)
    token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=load_abi("ERC20"))
    try:
        return int(token.functions.balanceOf(Web3.to_checksum_address(settings.contract_address)).call())
    except Exception as e:
        raise NetworkError(f"Could not read treasury balance: {e}") from e


def network_info(settings: SettlementSettings, w3: Optional[Web3] = None) -> dict:
    w3 = w3 or settlement_w3(settings)
    try:
        block_height = w3.eth.block_number
        gas_price_wei = w3.eth.gas_price or 0
    except Exception as e:
        raise NetworkError(f"Failed to get network info: {e}") from e
    return {
        "network": settings.network_name,
        "blockHeight": block_height,
        "gasPriceGwei": round(gas_price_wei / 1e9, 2),
    }
