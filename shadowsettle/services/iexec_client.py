# shadowsettle/services/iexec_client.py
"""
Thin client for the iExec compute network.

Talks to the PoCo hub contract with web3 (order matching, task status), to the
marketplace API with requests (workerpool order book) and to the IPFS gateway
for result archives. Orders are signed locally as EIP-712 typed data.
"""
import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes
from web3 import Web3
from web3.logs import DISCARD

from shadowsettle.config import IExecSettings
from shadowsettle.errors import (
    ConfigurationError,
    NetworkError,
    ResultFormatError,
    TaskObservationError,
)
from shadowsettle.logging_setup import short
from shadowsettle.services.chain import ZERO_ADDRESS, get_w3, load_abi, send_transaction, wait_for_receipt

logger = logging.getLogger(__name__)

ZERO_BYTES32 = "0x" + "00" * 32

# PoCo TaskStatusEnum
TASK_STATUS = {0: "UNSET", 1: "ACTIVE", 2: "REVEALING", 3: "COMPLETED", 4: "FAILED"}
STATUS_COMPLETED = 3
STATUS_FAILED = 4

TAG_BITS = {"tee": 0, "scone": 1}

TASK_FIELDS = (
    "status", "dealid", "idx", "timeref", "contributionDeadline", "revealDeadline",
    "finalDeadline", "consensusValue", "revealCounter", "winnerCounter", "contributors",
    "resultDigest", "results", "resultsTimestamp", "resultsCallback",
)

# EIP-712 struct layouts (field order matters: it is also the ABI tuple order)
ORDER_TYPES = {
    "AppOrder": [
        ("app", "address"), ("appprice", "uint256"), ("volume", "uint256"), ("tag", "bytes32"),
        ("datasetrestrict", "address"), ("workerpoolrestrict", "address"),
        ("requesterrestrict", "address"), ("salt", "bytes32"),
    ],
    "DatasetOrder": [
        ("dataset", "address"), ("datasetprice", "uint256"), ("volume", "uint256"), ("tag", "bytes32"),
        ("apprestrict", "address"), ("workerpoolrestrict", "address"),
        ("requesterrestrict", "address"), ("salt", "bytes32"),
    ],
    "WorkerpoolOrder": [
        ("workerpool", "address"), ("workerpoolprice", "uint256"), ("volume", "uint256"),
        ("tag", "bytes32"), ("category", "uint256"), ("trust", "uint256"),
        ("apprestrict", "address"), ("datasetrestrict", "address"),
        ("requesterrestrict", "address"), ("salt", "bytes32"),
    ],
    "RequestOrder": [
        ("app", "address"), ("appmaxprice", "uint256"), ("dataset", "address"),
        ("datasetmaxprice", "uint256"), ("workerpool", "address"), ("workerpoolmaxprice", "uint256"),
        ("requester", "address"), ("volume", "uint256"), ("tag", "bytes32"), ("category", "uint256"),
        ("trust", "uint256"), ("beneficiary", "address"), ("callback", "address"),
        ("params", "string"), ("salt", "bytes32"),
    ],
}

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


def _to_hex(x):
    return Web3.to_hex(x) if isinstance(x, (bytes, HexBytes)) else x


def encode_tag(tags) -> str:
    """['tee', 'scone'] -> 0x00..03"""
    bits = 0
    for t in tags:
        if t not in TAG_BITS:
            raise ConfigurationError(f"Unsupported tag: {t}")
        bits |= 1 << TAG_BITS[t]
    return "0x" + format(bits, "064x")


def random_salt() -> str:
    return "0x" + os.urandom(32).hex()


def compute_task_id(deal_id: str, task_idx: int = 0) -> str:
    """keccak256(dealid ++ idx), the id PoCo assigns to task ``task_idx`` of a deal."""
    return Web3.to_hex(Web3.solidity_keccak(["bytes32", "uint256"], [deal_id, int(task_idx)]))


def _coerce(value, typ: str):
    if typ == "address":
        return Web3.to_checksum_address(value or ZERO_ADDRESS)
    if typ == "uint256":
        return int(value or 0)
    if typ == "bytes32":
        return value or ZERO_BYTES32
    return value if value is not None else ""


def order_tuple(kind: str, order: Dict[str, Any]) -> tuple:
    """Order dict to the ABI tuple (struct fields + sign) expected by matchOrders."""
    values = [_coerce(order.get(name), typ) for name, typ in ORDER_TYPES[kind]]
    values.append(order.get("sign") or b"")
    return tuple(values)


def empty_dataset_order() -> Dict[str, Any]:
    order = {name: _coerce(None, typ) for name, typ in ORDER_TYPES["DatasetOrder"]}
    order["sign"] = "0x"
    return order


class IExecClient:
    def __init__(self, settings: IExecSettings, *, w3: Optional[Web3] = None, session: Optional[requests.Session] = None):
        self.settings = settings
        self.w3 = w3 or get_w3(settings.rpc_url, use_poa=settings.use_poa)
        self.session = session or requests.Session()
        self.account = Account.from_key(settings.private_key)
        self._hub = None
        self._domain = None

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def hub(self):
        if self._hub is None:
            self._hub = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.settings.hub_address),
                abi=load_abi("IexecHub"),
            )
        return self._hub

    # --- apps ---

    def is_app_deployed(self, app_address: str) -> bool:
        try:
            registry_address = self.hub.functions.appregistry().call()
            registry = self.w3.eth.contract(address=registry_address, abi=load_abi("AppRegistry"))
            return bool(registry.functions.isRegistered(Web3.to_checksum_address(app_address)).call())
        except Exception as e:
            raise NetworkError(f"Could not check app {app_address}: {e}") from e

    # --- orders ---

    def eip712_domain(self) -> Dict[str, Any]:
        if self._domain is None:
            try:
                name, version, chain_id, verifying = self.hub.functions.domain().call()
            except Exception as e:
                raise NetworkError(f"Could not read EIP-712 domain from hub: {e}") from e
            self._domain = {
                "name": name,
                "version": version,
                "chainId": int(chain_id),
                "verifyingContract": Web3.to_checksum_address(verifying),
            }
        return self._domain

    def sign_order(self, kind: str, order: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``order`` with a random salt (if missing) and its EIP-712 ``sign``."""
        order = dict(order)
        order.setdefault("salt", random_salt())
        message = {name: _coerce(order.get(name), typ) for name, typ in ORDER_TYPES[kind]}
        typed = {
            "types": {
                "EIP712Domain": EIP712_DOMAIN,
                kind: [{"name": n, "type": t} for n, t in ORDER_TYPES[kind]],
            },
            "primaryType": kind,
            "domain": self.eip712_domain(),
            "message": message,
        }
        signed = self.account.sign_message(encode_typed_data(full_message=typed))
        order.update(message)
        order["sign"] = Web3.to_hex(signed.signature)
        return order

    def resolve_workerpool(self, workerpool: str) -> Optional[str]:
        if Web3.is_address(workerpool):
            return Web3.to_checksum_address(workerpool)
        registry = os.getenv("IEXEC_ENS_REGISTRY")
        if not registry:
            logger.warning("workerpool %s is a name and IEXEC_ENS_REGISTRY is unset; order book not filtered by pool", workerpool)
            return None
        from ens import ENS

        ns = ENS.from_web3(self.w3, addr=Web3.to_checksum_address(registry))
        resolved = ns.address(workerpool)
        if not resolved:
            raise ConfigurationError(f"Could not resolve workerpool {workerpool}")
        return resolved

    def fetch_workerpool_orders(self, *, app: str, workerpool: Optional[str], tag: str, min_volume: int = 1) -> List[Dict[str, Any]]:
        params = {
            "chainId": self.settings.chain_id,
            "app": app,
            "minTag": tag,
            "maxTag": tag,
            "minVolume": min_volume,
        }
        if workerpool:
            params["workerpool"] = workerpool
        url = f"{self.settings.market_api_url.rstrip('/')}/workerpoolorders"
        try:
            resp = self.session.get(url, params=params, timeout=20)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise NetworkError(f"Workerpool order book request failed: {e}") from e
        if data.get("ok") is False:
            raise NetworkError(f"Marketplace error: {data.get('error') or data}")
        return [o["order"] for o in data.get("orders") or [] if o.get("order")]

    def match_orders(self, apporder, datasetorder, workerpoolorder, requestorder) -> str:
        """Send matchOrders and return the deal id from the OrdersMatched event."""
        fn = self.hub.functions.matchOrders(
            order_tuple("AppOrder", apporder),
            order_tuple("DatasetOrder", datasetorder),
            order_tuple("WorkerpoolOrder", workerpoolorder),
            order_tuple("RequestOrder", requestorder),
        )
        try:
            tx_hash = send_transaction(self.w3, fn, self.settings.private_key, chain_id=self.settings.chain_id)
            receipt = wait_for_receipt(self.w3, tx_hash, timeout=120)
        except Exception as e:
            raise NetworkError(f"matchOrders failed: {e}") from e

        events = self.hub.events.OrdersMatched().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise NetworkError(f"matchOrders tx {tx_hash} emitted no OrdersMatched event")
        return Web3.to_hex(events[0]["args"]["dealid"])

    # --- tasks ---

    def view_task(self, task_id: str) -> Dict[str, Any]:
        try:
            raw = self.hub.functions.viewTask(task_id).call()
        except Exception as e:
            raise NetworkError(f"viewTask failed for {short(task_id)}: {e}") from e
        task = dict(zip(TASK_FIELDS, raw))
        for key in ("dealid", "consensusValue", "resultDigest"):
            task[key] = _to_hex(task.get(key))
        task["results"] = HexBytes(task.get("results") or b"")
        return task

    def download_results(self, task_id: str, task: Optional[Dict[str, Any]] = None) -> bytes:
        """Fetch the result archive referenced by the task's on-chain ``results`` field."""
        task = task or self.view_task(task_id)
        try:
            pointer = json.loads(bytes(task.get("results") or b"").decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ResultFormatError(f"Task {short(task_id)} has no readable results pointer") from e

        location = pointer.get("location") or ""
        if pointer.get("storage") == "ipfs":
            url = self.settings.ipfs_gateway_url.rstrip("/") + location
        elif location.startswith(("http://", "https://")):
            url = location
        else:
            raise ResultFormatError(f"Unsupported result storage: {pointer.get('storage')}")

        try:
            resp = self.session.get(url, timeout=60)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Could not download results for {short(task_id)}: {e}") from e
        return resp.content

    def subscribe_task(
        self,
        task_id: str,
        deal_id: str,
        *,
        on_complete: Callable[[], None],
        on_error: Callable[[BaseException], None],
    ) -> "TaskSubscription":
        return TaskSubscription(
            self, task_id, deal_id,
            on_complete=on_complete, on_error=on_error,
            interval=self.settings.poll_interval,
        ).start()


class TaskSubscription:
    """
    Status stream for one task. Pushes exactly one of on_complete/on_error,
    then stops. Once unsubscribe() returns no callback runs; it waits for
    one already in flight.
    """

    def __init__(self, client: IExecClient, task_id: str, deal_id: str, *, on_complete, on_error, interval: float = 5.0):
        self.task_id = task_id
        self.deal_id = deal_id
        self._client = client
        self._on_complete = on_complete
        self._on_error = on_error
        self._interval = interval
        self._stop = threading.Event()
        self._lock = threading.RLock()
        self._thread = threading.Thread(target=self._run, name=f"task-{task_id[:10]}", daemon=True)

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def start(self) -> "TaskSubscription":
        self._thread.start()
        return self

    def unsubscribe(self) -> None:
        with self._lock:
            self._stop.set()

    def _emit(self, callback, *args) -> None:
        # callback runs under the lock so unsubscribe() waits for it
        with self._lock:
            if self._stop.is_set():
                return
            self._stop.set()
            callback(*args)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                task = self._client.view_task(self.task_id)
            except NetworkError as e:
                self._emit(self._on_error, e)
                return

            status = task.get("status")
            if status == STATUS_COMPLETED:
                self._emit(self._on_complete)
                return
            if status == STATUS_FAILED:
                self._emit(self._on_error, TaskObservationError(f"Task {short(self.task_id)} failed"))
                return
            final_deadline = int(task.get("finalDeadline") or 0)
            if final_deadline and time.time() > final_deadline:
                self._emit(self._on_error, TaskObservationError(f"Task {short(self.task_id)} passed its final deadline"))
                return

            self._stop.wait(self._interval)
