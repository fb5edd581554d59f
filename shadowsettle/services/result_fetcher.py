# shadowsettle/services/result_fetcher.py
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from shadowsettle.errors import ResultFormatError
from shadowsettle.logging_setup import short
from shadowsettle.services.iexec_client import STATUS_COMPLETED, TASK_STATUS

logger = logging.getLogger(__name__)

RESULT_ENTRY = "result.json"


class TaskStatus(str, Enum):
    COMPLETED = "COMPLETED"
    OTHER = "OTHER"


def classify_status(raw) -> TaskStatus:
    # The SDK reports 3 or "COMPLETED"; every other code means "not ready yet".
    if raw == STATUS_COMPLETED or raw == TaskStatus.COMPLETED.value:
        return TaskStatus.COMPLETED
    return TaskStatus.OTHER


@dataclass
class TaskResult:
    status: TaskStatus
    raw_status: Any
    result: Optional[Dict[str, Any]] = None

    def to_dict(self, task_id: str) -> Dict[str, Any]:
        return {
            "taskId": task_id,
            "status": self.status.value,
            "rawStatus": self.raw_status,
            "result": self.result,
        }


def parse_result_archive(data: bytes) -> Dict[str, Any]:
    """Open the task output zip and decode ``result.json``."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            try:
                raw = archive.read(RESULT_ENTRY)
            except KeyError:
                raise ResultFormatError(f"{RESULT_ENTRY} not found in task output")
    except zipfile.BadZipFile as e:
        raise ResultFormatError(f"Task output is not a zip archive: {e}") from e

    try:
        result = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ResultFormatError(f"{RESULT_ENTRY} is not valid JSON: {e}") from e

    if not isinstance(result, dict):
        raise ResultFormatError(f"{RESULT_ENTRY} must be a JSON object")
    if not isinstance(result.get("payouts"), list):
        raise ResultFormatError(f"{RESULT_ENTRY} has no payouts list")
    if not (result.get("attestation") or result.get("tee_attestation")):
        raise ResultFormatError(f"{RESULT_ENTRY} has no attestation")
    return result


def fetch_task_result(network, task_id: str) -> TaskResult:
    task = network.view_task(task_id)
    raw_status = task.get("status")
    status = classify_status(raw_status)
    logger.info(
        "task status task_id=%s status=%s (%s)",
        short(task_id), raw_status, TASK_STATUS.get(raw_status, raw_status),
    )
    if status is not TaskStatus.COMPLETED:
        return TaskResult(status=status, raw_status=raw_status)

    archive = network.download_results(task_id, task)
    result = parse_result_archive(archive)
    logger.info("result parsed task_id=%s payouts=%d", short(task_id), len(result["payouts"]))
    return TaskResult(status=status, raw_status=raw_status, result=result)
