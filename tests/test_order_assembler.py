import json

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from shadowsettle.config import IExecSettings
from shadowsettle.errors import ConfigurationError, NoCapacityError
from shadowsettle.services.iexec_client import (
    EIP712_DOMAIN,
    ORDER_TYPES,
    IExecClient,
    compute_task_id,
    encode_tag,
)
from shadowsettle.services.order_assembler import request_params, submit_task

PK = "0x" + "11" * 32
APP = "0x3333333333333333333333333333333333333333"
POOL = "0x4444444444444444444444444444444444444444"
DEAL = "0x" + "de" * 32


def make_settings(**kw):
    base = dict(
        private_key=PK,
        chain_name="bellecour",
        app_address=APP,
        rpc_url="http://localhost:8545",
        chain_id=134,
        hub_address="0x3eca1B216A7DF1C7689aEb259fFB83ADFB894E7f",
        market_api_url="https://market.example",
        ipfs_gateway_url="https://ipfs.example",
        result_proxy_url="https://result.example",
        explorer_url="https://explorer.example",
        workerpool=POOL,
    )
    base.update(kw)
    return IExecSettings(**base)


class FakeClient:
    def __init__(self, deployed=True, orders=None):
        self.settings = make_settings()
        self.address = Account.from_key(PK).address
        self.deployed = deployed
        self.orders = [{"workerpool": POOL, "workerpoolprice": 0, "category": 0}] if orders is None else orders
        self.signed = {}
        self.matched = None

    def is_app_deployed(self, app):
        return self.deployed

    def sign_order(self, kind, order):
        order = dict(order, sign="0xsig")
        self.signed[kind] = order
        return order

    def resolve_workerpool(self, workerpool):
        return workerpool

    def fetch_workerpool_orders(self, *, app, workerpool, tag, min_volume=1):
        self.query = {"app": app, "workerpool": workerpool, "tag": tag}
        return self.orders

    def match_orders(self, apporder, datasetorder, workerpoolorder, requestorder):
        self.matched = (apporder, datasetorder, workerpoolorder, requestorder)
        return DEAL


def test_tee_scone_tag():
    assert encode_tag(("tee", "scone")) == "0x" + "0" * 63 + "3"
    with pytest.raises(ConfigurationError):
        encode_tag(("gpu",))

def test_task_id_is_deterministic():
    tid = compute_task_id(DEAL, 0)
    assert tid == compute_task_id(DEAL, 0)
    assert tid != compute_task_id(DEAL, 1)
    assert len(tid) == 66

def test_submit_task_returns_deal_and_task():
    client = FakeClient()
    handle = submit_task(client, "https://example.com/data.json")
    assert handle.deal_id == DEAL
    assert handle.task_id == compute_task_id(DEAL, 0)
    assert handle.to_dict() == {"dealId": DEAL, "taskId": handle.task_id}

    apporder, datasetorder, poolorder, requestorder = client.matched
    assert apporder["requesterrestrict"] == client.address
    assert requestorder["volume"] == 1
    assert requestorder["tag"] == encode_tag(("tee", "scone"))
    assert client.query["tag"] == requestorder["tag"]
    assert json.loads(requestorder["params"])["iexec_input_files"] == ["https://example.com/data.json"]
    assert datasetorder["dataset"] == "0x0000000000000000000000000000000000000000"

def test_submit_task_without_app():
    client = FakeClient(deployed=False)
    with pytest.raises(ConfigurationError, match="No iApp found"):
        submit_task(client, "https://example.com/data.json")
    assert client.matched is None

def test_submit_task_without_capacity():
    client = FakeClient(orders=[])
    with pytest.raises(NoCapacityError):
        submit_task(client, "https://example.com/data.json")
    assert client.matched is None

def test_request_params_shape():
    params = json.loads(request_params("https://d.example/x", "https://result.example"))
    assert params["iexec_result_storage_provider"] == "ipfs"
    assert params["iexec_result_storage_proxy"] == "https://result.example"


def test_sign_order_recovers_to_requester():
    client = IExecClient(make_settings(), w3=Web3())
    client._domain = {
        "name": "iExecODB",
        "version": "5.0.0",
        "chainId": 134,
        "verifyingContract": "0x3eca1B216A7DF1C7689aEb259fFB83ADFB894E7f",
    }
    order = client.sign_order("AppOrder", {"app": APP, "appprice": 0, "volume": 1, "tag": encode_tag(("tee", "scone"))})
    assert order["salt"].startswith("0x") and len(order["salt"]) == 66

    message = {name: order[name] for name, _ in ORDER_TYPES["AppOrder"]}
    typed = {
        "types": {
            "EIP712Domain": EIP712_DOMAIN,
            "AppOrder": [{"name": n, "type": t} for n, t in ORDER_TYPES["AppOrder"]],
        },
        "primaryType": "AppOrder",
        "domain": client._domain,
        "message": message,
    }
    signer = Account.recover_message(encode_typed_data(full_message=typed), signature=order["sign"])
    assert signer == client.address
