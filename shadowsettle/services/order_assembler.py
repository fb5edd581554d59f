# shadowsettle/services/order_assembler.py
import json
import logging
from dataclasses import dataclass

from shadowsettle.errors import ConfigurationError, NoCapacityError
from shadowsettle.logging_setup import short
from shadowsettle.services.chain import ZERO_ADDRESS
from shadowsettle.services.iexec_client import (
    IExecClient,
    compute_task_id,
    empty_dataset_order,
    encode_tag,
)

logger = logging.getLogger(__name__)

# iExec SDK default for app orders
APP_ORDER_VOLUME = 1_000_000


@dataclass(frozen=True)
class DealHandle:
    deal_id: str
    task_id: str

    def to_dict(self):
        return {"dealId": self.deal_id, "taskId": self.task_id}


def request_params(dataset_url: str, result_proxy_url: str) -> str:
    # The dataset travels as an input file URL, not as a dataset-market order.
    return json.dumps({
        "iexec_input_files": [dataset_url],
        "iexec_result_storage_provider": "ipfs",
        "iexec_result_storage_proxy": result_proxy_url,
    }, separators=(",", ":"))


def submit_task(client: IExecClient, dataset_url: str) -> DealHandle:
    """
    Sign app + request orders, take the best workerpool order and match
    all three. Single-task deal, so the task is always index 0.

    Nothing is persisted here; failures propagate unchanged.
    """
    settings = client.settings
    app = settings.app_address
    tag = encode_tag(settings.tag)
    requester = client.address
    logger.info("submit_task dataset_url=%s", short(dataset_url, 50))

    if not client.is_app_deployed(app):
        raise ConfigurationError(f"No iApp found at {app}")

    apporder = client.sign_order("AppOrder", {
        "app": app,
        "appprice": 0,
        "volume": APP_ORDER_VOLUME,
        "tag": tag,
        "datasetrestrict": ZERO_ADDRESS,
        "workerpoolrestrict": ZERO_ADDRESS,
        "requesterrestrict": requester,  # only we can consume this order
    })

    workerpool = client.resolve_workerpool(settings.workerpool)
    orders = client.fetch_workerpool_orders(app=app, workerpool=workerpool, tag=tag, min_volume=1)
    if not orders:
        raise NoCapacityError("No workerpool order found. Try again later.")
    workerpoolorder = orders[0]
    logger.info("workerpool order found pool=%s price=%s", workerpoolorder.get("workerpool"), workerpoolorder.get("workerpoolprice"))

    requestorder = client.sign_order("RequestOrder", {
        "app": app,
        "appmaxprice": apporder["appprice"],
        "dataset": ZERO_ADDRESS,
        "datasetmaxprice": 0,
        "workerpool": ZERO_ADDRESS,
        "workerpoolmaxprice": workerpoolorder.get("workerpoolprice", 0),
        "requester": requester,
        "volume": 1,
        "tag": tag,
        "category": workerpoolorder.get("category", 0),
        "trust": 0,
        "beneficiary": requester,
        "callback": ZERO_ADDRESS,
        "params": request_params(dataset_url, settings.result_proxy_url),
    })

    deal_id = client.match_orders(apporder, empty_dataset_order(), workerpoolorder, requestorder)
    task_id = compute_task_id(deal_id, 0)
    logger.info("deal matched deal_id=%s task_id=%s", deal_id, task_id)
    return DealHandle(deal_id=deal_id, task_id=task_id)
