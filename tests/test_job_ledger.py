import pytest

from shadowsettle.errors import NotFoundError, ValidationError
from shadowsettle.services import job_ledger

WALLET = "0xAbCdEf0000000000000000000000000000000001"
RESULT = {"payouts": [{"address": WALLET, "amount": 5}], "attestation": "0x01"}


def test_create_is_idempotent_and_keeps_first_result():
    job_ledger.create_job("0xtask1", deal_id="0xdeal1", wallet_address=WALLET, result=RESULT, status="completed")
    again = job_ledger.create_job("0xtask1", deal_id="0xother", result={"payouts": [], "attestation": "0x02"}, status="completed")

    assert again.deal_id == "0xdeal1"
    assert again.result == RESULT
    assert len(job_ledger.list_jobs(WALLET)) == 1

def test_create_requires_task_id():
    with pytest.raises(ValidationError):
        job_ledger.create_job("  ")

def test_create_rejects_unknown_status():
    with pytest.raises(ValidationError):
        job_ledger.create_job("0xtask2", status="running")

def test_wallet_is_stored_lowercase():
    job = job_ledger.create_job("0xtask3", wallet_address=WALLET)
    assert job.wallet_address == WALLET.lower()
    assert job.settlement_name == "Settlement"
    assert [j.task_id for j in job_ledger.list_jobs(WALLET.upper().replace("0X", "0x"))] == ["0xtask3"]

def test_list_without_wallet_is_empty():
    job_ledger.create_job("0xtask4", wallet_address=WALLET)
    assert job_ledger.list_jobs(None) == []
    assert job_ledger.list_jobs("") == []

def test_list_newest_first():
    job_ledger.create_job("0xold", wallet_address=WALLET, submitted_at=1_700_000_000_000)
    job_ledger.create_job("0xnew", wallet_address=WALLET, submitted_at=1_700_000_100_000)
    assert [j.task_id for j in job_ledger.list_jobs(WALLET)] == ["0xnew", "0xold"]

def test_patch_unknown_job():
    with pytest.raises(NotFoundError):
        job_ledger.patch_job("0xmissing", {"status": "failed"})

def test_patch_without_fields():
    job_ledger.create_job("0xtask5")
    with pytest.raises(ValidationError):
        job_ledger.patch_job("0xtask5", {"unknown": 1})

def test_patch_invalid_status_leaves_row_untouched():
    job_ledger.create_job("0xtask6")
    with pytest.raises(ValidationError):
        job_ledger.patch_job("0xtask6", {"status": "bogus", "error": "x"})
    assert job_ledger.get_job("0xtask6").error is None

def test_cannot_settle_without_result():
    job_ledger.create_job("0xtask7")
    with pytest.raises(ValidationError):
        job_ledger.mark_settled("0xtask7", "0xtx")

def test_mark_settled_keeps_first_tx():
    job_ledger.create_job("0xtask8", result=RESULT, status="completed")
    job = job_ledger.mark_settled("0xtask8", "0xtx1")
    assert job.status == "settled"
    assert job.settled_tx_hash == "0xtx1"
    assert job.settled_at is not None

    job = job_ledger.patch_job("0xtask8", {"settledTxHash": "0xtx2"})
    assert job.settled_tx_hash == "0xtx1"

def test_updated_at_never_before_submitted_at():
    job = job_ledger.create_job("0xtask9", submitted_at=4_102_444_800_000)  # 2100-01-01
    assert job.updated_at >= job.submitted_at
    job = job_ledger.patch_job("0xtask9", {"error": "boom"})
    assert job.updated_at >= job.submitted_at

def test_job_to_dict_shape():
    job = job_ledger.create_job("0xtask10", deal_id="0xdeal", submitted_at=1_700_000_000_000)
    js = job_ledger.job_to_dict(job)
    assert js["taskId"] == "0xtask10"
    assert js["submittedAt"] == 1_700_000_000_000
    assert js["createdAt"].endswith("Z")
    assert js["settledAt"] is None
