# shadowsettle/services/chain.py
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError

from shadowsettle.errors import NetworkError

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).resolve().parent.parent / "abi"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def load_abi(name: str):
    """Load a bundled ABI (shadowsettle/abi/<name>.json)."""
    return json.loads((ABI_DIR / f"{name}.json").read_text(encoding="utf-8"))


def _poa_middleware():
    try:
        from web3.middleware import ExtraDataToPOAMiddleware
        return ExtraDataToPOAMiddleware
    except ImportError:
        from web3.middleware import geth_poa_middleware
        return geth_poa_middleware


def build_w3(provider_uri: str, *, use_poa: bool = False, timeout: int = 15) -> Web3:
    if not provider_uri:
        raise NetworkError("RPC provider URI not configured")

    w3 = Web3(Web3.HTTPProvider(provider_uri, request_kwargs={"timeout": timeout}))

    # PoA chains (bellecour, sepolia...) carry extraData > 32 bytes
    if use_poa:
        w3.middleware_onion.inject(_poa_middleware(), layer=0)

    return w3


@lru_cache(maxsize=8)
def get_w3(provider_uri: str, use_poa: bool = False) -> Web3:
    """One lazily created provider per RPC endpoint, shared across requests."""
    return build_w3(provider_uri, use_poa=use_poa)


def revert_data(exc: BaseException) -> Optional[str]:
    """Extract the ``0x``-prefixed revert payload from a web3 exception, if any."""
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, str) and data.startswith("0x"):
        return data
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, dict):
            nested = arg.get("data")
            if isinstance(nested, str) and nested.startswith("0x"):
                return nested
    return None


def _fee_params(w3: Web3) -> Dict[str, int]:
    # EIP-1559, legacy gasPrice when the chain has no baseFeePerGas
    latest = w3.eth.get_block("latest")
    base_fee = latest.get("baseFeePerGas")
    if base_fee is not None:
        max_priority = w3.to_wei(2, "gwei")
        return {
            "maxFeePerGas": int(base_fee * 2) + max_priority,
            "maxPriorityFeePerGas": max_priority,
        }
    return {"gasPrice": w3.eth.gas_price}


def send_transaction(w3: Web3, fn, private_key: str, *, value: int = 0, chain_id: Optional[int] = None) -> str:
    """
    Sign and broadcast a contract call. Returns the tx hash (0x hex).

    Contract reverts during gas estimation propagate as web3's
    ContractLogicError/ContractCustomError so callers can decode them.
    """
    account = w3.eth.account.from_key(private_key)
    tx_params: Dict[str, Any] = {
        "from": account.address,
        "nonce": w3.eth.get_transaction_count(account.address, "pending"),
        "chainId": chain_id or w3.eth.chain_id,
        "value": int(value or 0),
    }

    gas = fn.estimate_gas(tx_params)
    tx_params["gas"] = int(gas * 1.2)
    tx_params.update(_fee_params(w3))

    tx = fn.build_transaction(tx_params)
    signed = account.sign_transaction(tx)
    raw = getattr(signed, "raw_transaction", None) or signed.rawTransaction
    tx_hash = w3.eth.send_raw_transaction(raw)
    return Web3.to_hex(tx_hash)


def wait_for_receipt(w3: Web3, tx_hash: str, timeout: int = 600):
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt.get("status") == 0:
        raise ContractLogicError(f"Transaction {tx_hash} reverted")
    return receipt


def block_number(w3: Web3) -> int:
    try:
        return w3.eth.block_number
    except Exception as e:
        raise NetworkError(f"Could not read block number: {e}") from e
