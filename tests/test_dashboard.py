from datetime import datetime

from shadowsettle.services import job_ledger, settlement_service, treasury_service

WALLET = "0xAbCdEf0000000000000000000000000000000001"


def _seed():
    payouts = {"payouts": [{"amount": 10}, {"amount": "2.5"}], "attestation": "0x01"}
    job_ledger.create_job("0xrunning", wallet_address=WALLET, submitted_at=1_700_000_000_000)
    job_ledger.create_job("0xfailed", error="boom", status="failed", submitted_at=1_700_000_001_000)
    job_ledger.create_job("0xdone", wallet_address=WALLET, result=payouts, status="completed",
                          submitted_at=1_700_000_002_000)
    job_ledger.create_job("0xsettled", result=payouts, status="completed", submitted_at=1_700_000_003_000)
    job_ledger.patch_job("0xsettled", {"status": "settled", "settledTxHash": "0xtx", "settledAt": datetime.utcnow()})


def test_stats_without_settlement_config(client):
    _seed()
    rv = client.get("/dashboard/stats")
    assert rv.status_code == 200
    assert rv.get_json() == {
        "totalFundsDeposited": "0",
        "totalFundsDepositedNum": 0,
        "activePools": 1,
        "jobsRunning": 1,
        "settlementsCompleted": 2,
        "settlementsSettled": 1,
    }

def test_stats_uses_cached_treasury(client, settlement_config, monkeypatch):
    treasury_service.save_balance(settlement_config["SETTLEMENT_CONTRACT_ADDRESS"], 1_234_560_000, "1,234.56")

    def no_chain(*args, **kwargs):
        raise AssertionError("cached balance expected")

    monkeypatch.setattr(settlement_service, "read_treasury_balance", no_chain)
    js = client.get("/dashboard/stats").get_json()
    assert js["totalFundsDeposited"] == "1,234.56"
    assert js["totalFundsDepositedNum"] == 1234.56

def test_activity_events(client):
    _seed()
    events = client.get("/dashboard/activity").get_json()
    types = [e["type"] for e in events]
    assert types.count("job_started") == 4
    assert types.count("job_completed") == 2
    assert types.count("settlement_executed") == 1

    timestamps = [e["timestamp"] for e in events]
    assert timestamps == sorted(timestamps, reverse=True)

    executed = next(e for e in events if e["type"] == "settlement_executed")
    assert executed["participants"] == 2
    assert executed["totalPayout"] == 12.5

def test_activity_limit_and_wallet(client):
    _seed()
    assert len(client.get("/dashboard/activity?limit=2").get_json()) == 2
    events = client.get(f"/dashboard/activity?wallet={WALLET}").get_json()
    assert {e["taskId"] for e in events} == {"0xrunning", "0xdone"}

def test_stats_numeric_total_is_exact(client, settlement_config, monkeypatch):
    treasury_service.save_balance(settlement_config["SETTLEMENT_CONTRACT_ADDRESS"], 1, "0.00")
    js = client.get("/dashboard/stats").get_json()
    assert js["totalFundsDeposited"] == "0.00"
    assert js["totalFundsDepositedNum"] == 0.000001
