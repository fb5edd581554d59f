import threading
import time

import pytest

from shadowsettle.errors import NetworkError, TaskObservationError, TaskTimeoutError
from shadowsettle.services.iexec_client import STATUS_COMPLETED, STATUS_FAILED, TaskSubscription
from shadowsettle.services.task_observer import wait_for_task


class FakeSubscription:
    def __init__(self):
        self.released = 0

    def unsubscribe(self):
        self.released += 1


class FakeNetwork:
    """Fires the configured callback from another thread after ``delay`` seconds."""

    def __init__(self, outcome=None, delay=0.0):
        self.outcome = outcome
        self.delay = delay
        self.sub = FakeSubscription()
        self.callbacks = None

    def subscribe_task(self, task_id, deal_id, *, on_complete, on_error):
        self.callbacks = (on_complete, on_error)

        def fire():
            if self.outcome == "complete":
                on_complete()
            elif isinstance(self.outcome, BaseException):
                on_error(self.outcome)

        if self.outcome is not None:
            threading.Timer(self.delay, fire).start()
        return self.sub


def test_completes():
    net = FakeNetwork("complete", delay=0.01)
    wait_for_task(net, "0xtask", "0xdeal", timeout=2)
    assert net.sub.released == 1

def test_timeout_releases_subscription():
    net = FakeNetwork(None)
    start = time.monotonic()
    with pytest.raises(TaskTimeoutError, match="Task observation timeout"):
        wait_for_task(net, "0xtask", "0xdeal", timeout=0.05)
    assert time.monotonic() - start < 1
    assert net.sub.released == 1

def test_late_callback_after_timeout_is_ignored():
    net = FakeNetwork(None)
    with pytest.raises(TaskTimeoutError):
        wait_for_task(net, "0xtask", "0xdeal", timeout=0.01)
    on_complete, on_error = net.callbacks
    on_complete()
    on_error(RuntimeError("late"))
    assert net.sub.released == 1

def test_stream_error_is_wrapped():
    net = FakeNetwork(RuntimeError("socket closed"), delay=0.01)
    with pytest.raises(TaskObservationError, match="socket closed"):
        wait_for_task(net, "0xtask", "0xdeal", timeout=2)
    assert net.sub.released == 1

def test_first_outcome_wins():
    net = FakeNetwork("complete")

    def subscribe(task_id, deal_id, *, on_complete, on_error):
        on_complete()
        on_error(RuntimeError("too late"))
        return net.sub

    net.subscribe_task = subscribe
    wait_for_task(net, "0xtask", "0xdeal", timeout=1)
    assert net.sub.released == 1


# --- polling subscription ---

class FakeClient:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = 0

    def view_task(self, task_id):
        self.calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, BaseException):
            raise status
        return {"status": status, "finalDeadline": 0}


def _subscribe(client):
    done = threading.Event()
    seen = []

    def on_complete():
        seen.append("complete")
        done.set()

    def on_error(exc):
        seen.append(exc)
        done.set()

    sub = TaskSubscription(client, "0x" + "ab" * 32, "0xdeal", on_complete=on_complete, on_error=on_error, interval=0.01)
    return sub, done, seen

def test_subscription_pushes_completion_once():
    client = FakeClient([1, 1, STATUS_COMPLETED])
    sub, done, seen = _subscribe(client)
    sub.start()
    assert done.wait(2)
    time.sleep(0.05)
    assert seen == ["complete"]
    assert sub.closed

def test_subscription_reports_failed_task():
    sub, done, seen = _subscribe(FakeClient([STATUS_FAILED]))
    sub.start()
    assert done.wait(2)
    assert isinstance(seen[0], TaskObservationError)

def test_subscription_reports_network_error():
    sub, done, seen = _subscribe(FakeClient([NetworkError("rpc down")]))
    sub.start()
    assert done.wait(2)
    assert isinstance(seen[0], NetworkError)

def test_unsubscribe_silences_callbacks():
    client = FakeClient([1])
    sub, done, seen = _subscribe(client)
    sub.start()
    sub.unsubscribe()
    assert not done.wait(0.1)
    assert seen == []

def test_unsubscribe_waits_for_inflight_callback():
    entered = threading.Event()
    release = threading.Event()
    order = []

    def on_complete():
        entered.set()
        release.wait(2)
        order.append("callback")

    sub = TaskSubscription(FakeClient([STATUS_COMPLETED]), "0x" + "ab" * 32, "0xdeal",
                           on_complete=on_complete, on_error=lambda e: None, interval=0.01)
    sub.start()
    assert entered.wait(2)

    def stop():
        sub.unsubscribe()
        order.append("unsubscribed")

    t = threading.Thread(target=stop)
    t.start()
    time.sleep(0.05)
    assert order == []
    release.set()
    t.join(2)
    assert order == ["callback", "unsubscribed"]

def test_callback_may_unsubscribe_itself():
    done = threading.Event()
    holder = {}

    def on_complete():
        holder["sub"].unsubscribe()
        done.set()

    holder["sub"] = TaskSubscription(FakeClient([STATUS_COMPLETED]), "0x" + "ab" * 32, "0xdeal",
                                     on_complete=on_complete, on_error=lambda e: None, interval=0.01)
    holder["sub"].start()
    assert done.wait(2)
