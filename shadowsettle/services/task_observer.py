# shadowsettle/services/task_observer.py
import logging
import threading
from typing import Optional

from shadowsettle.errors import TaskObservationError, TaskTimeoutError
from shadowsettle.logging_setup import short

logger = logging.getLogger(__name__)


class _Outcome:
    """First-writer-wins slot shared by the stream callbacks and the deadline."""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.error: Optional[BaseException] = None

    def settle(self, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self.error = error
            self._done.set()
            return True

    def wait(self, timeout: float) -> bool:
        return self._done.wait(timeout)


def wait_for_task(network, task_id: str, deal_id: str, timeout: float) -> None:
    """
    Block until the task stream completes, errors, or ``timeout`` seconds pass.

    ``network`` must provide ``subscribe_task(task_id, deal_id, on_complete=,
    on_error=)`` returning an object with ``unsubscribe()``. The subscription
    is released exactly once whichever way this returns.
    """
    outcome = _Outcome()

    def on_complete():
        if outcome.settle():
            logger.info("task finalized task_id=%s", short(task_id))

    def on_error(exc):
        if outcome.settle(exc):
            logger.warning("task stream error task_id=%s: %s", short(task_id), exc)

    logger.info("observing task task_id=%s timeout=%ss", short(task_id), timeout)
    subscription = network.subscribe_task(task_id, deal_id, on_complete=on_complete, on_error=on_error)
    try:
        if not outcome.wait(timeout) and outcome.settle(TaskTimeoutError("Task observation timeout")):
            logger.warning("task observation timeout task_id=%s", short(task_id))
    finally:
        subscription.unsubscribe()

    err = outcome.error
    if err is None:
        return
    if isinstance(err, (TaskTimeoutError, TaskObservationError)):
        raise err
    raise TaskObservationError(str(err) or err.__class__.__name__) from err
