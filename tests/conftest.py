import os
import pytest

from shadowsettle import create_app
from shadowsettle.models import db as _db

@pytest.fixture(scope="session")
def app():
    os.environ["FLASK_ENV"] = "testing"
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _clean_state(app):
    yield
    _db.session.rollback()
    for table in reversed(_db.metadata.sorted_tables):
        _db.session.execute(table.delete())
    _db.session.commit()
    app.extensions.pop("iexec_client", None)

@pytest.fixture()
def no_celery(monkeypatch):
    """Replace .delay on the settlement tasks and record what was enqueued."""
    calls = []

    class DummyAsync:
        id = "fake-task-id"

    def recorder(name):
        def fake_delay(*args):
            calls.append((name, args))
            return DummyAsync()
        return fake_delay

    monkeypatch.setattr("shadowsettle.tasks.settlement_tasks.track_settlement.delay", recorder("track"))
    monkeypatch.setattr("shadowsettle.tasks.settlement_tasks.refresh_treasury.delay", recorder("refresh"))
    return calls

@pytest.fixture()
def settlement_config(app, monkeypatch):
    monkeypatch.setitem(app.config, "SETTLEMENT_RPC_URL", "http://localhost:8545")
    monkeypatch.setitem(app.config, "SETTLEMENT_CONTRACT_ADDRESS", "0x1111111111111111111111111111111111111111")
    monkeypatch.setitem(app.config, "SETTLEMENT_EXECUTOR_PRIVATE_KEY", "0x" + "11" * 32)
    monkeypatch.setitem(app.config, "TEST_USDC_ADDRESS", "0x2222222222222222222222222222222222222222")
    return app.config
