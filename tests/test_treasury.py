from shadowsettle.config import SettlementSettings
from shadowsettle.services import settlement_service, treasury_service

SETTINGS = SettlementSettings(
    rpc_url="http://localhost:8545",
    contract_address="0x1111111111111111111111111111111111111111",
    executor_private_key=None,
    token_address="0x2222222222222222222222222222222222222222",
    chain_id=421614,
    network_name="Arbitrum Sepolia",
    explorer_url="https://sepolia.arbiscan.io",
)


def _chain_balance(monkeypatch, value):
    calls = []

    def fake_read(settings, w3=None):
        calls.append(settings.contract_address)
        return value

    monkeypatch.setattr(settlement_service, "read_treasury_balance", fake_read)
    return calls

def test_first_read_goes_to_chain_and_caches(monkeypatch):
    calls = _chain_balance(monkeypatch, 1_234_567_890)
    out = treasury_service.get_treasury_balance(SETTINGS)
    assert out == {
        "balanceFormatted": "1,234.56",
        "balanceRaw": "1234567890",
        "settlementAddress": SETTINGS.contract_address,
        "source": "chain",
    }

    out = treasury_service.get_treasury_balance(SETTINGS)
    assert out["source"] == "database"
    assert out["balanceRaw"] == "1234567890"
    assert len(calls) == 1

def test_refresh_overwrites_cache(monkeypatch):
    treasury_service.save_balance(SETTINGS.contract_address, 100, "0.00")
    _chain_balance(monkeypatch, 5_000_000)

    out = treasury_service.get_treasury_balance(SETTINGS, force_refresh=True)
    assert out["source"] == "chain"
    assert out["balanceFormatted"] == "5.00"

    rec = treasury_service.get_cached_balance(SETTINGS.contract_address)
    assert rec.balance_raw == "5000000"

def test_without_store_always_reads_chain(monkeypatch):
    calls = _chain_balance(monkeypatch, 1)
    treasury_service.get_treasury_balance(SETTINGS, use_store=False)
    treasury_service.get_treasury_balance(SETTINGS, use_store=False)
    assert len(calls) == 2
    assert treasury_service.get_cached_balance(SETTINGS.contract_address) is None
