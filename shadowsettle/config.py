# shadowsettle/config.py
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from shadowsettle.errors import ConfigurationError

# Compute network presets (iExec). Only bellecour is supported for now.
CHAINS = {
    "bellecour": {
        "rpc_host_url": "https://bellecour.iex.ec",
        "chain_id": 134,
        "hub_address": "0x3eca1B216A7DF1C7689aEb259fFB83ADFB894E7f",
        "market_api_url": "https://api.market.v8-bellecour.iex.ec",
        "ipfs_gateway_url": "https://ipfs-gateway.v8-bellecour.iex.ec",
        "result_proxy_url": "https://result.v8-bellecour.iex.ec",
        "explorer_url": "https://explorer.iex.ec/bellecour",
        "workerpool": "prod-v8-learn.main.pools.iexec.eth",
    },
}

# TEE + SCONE
SCONE_TAG = ("tee", "scone")
TASK_OBSERVATION_TIMEOUT = 10 * 60


def _as_bool(v) -> bool:
    return str(v).lower() in ("1", "true", "yes", "on")


class BaseConfig:
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

    # --- Compute network ---
    IEXEC_PRIVATE_KEY = os.environ.get("IEXEC_PRIVATE_KEY") or os.environ.get("PRIVATE_KEY")
    IEXEC_CHAIN = os.environ.get("IEXEC_CHAIN", "bellecour")
    IEXEC_APP_ADDRESS = os.environ.get("IEXEC_APP_ADDRESS")
    IEXEC_WORKERPOOL = os.environ.get("IEXEC_WORKERPOOL")
    IEXEC_RPC_URL = os.environ.get("IEXEC_RPC_URL")
    TASK_OBSERVATION_TIMEOUT = float(os.environ.get("TASK_OBSERVATION_TIMEOUT", TASK_OBSERVATION_TIMEOUT))
    TASK_POLL_INTERVAL = float(os.environ.get("TASK_POLL_INTERVAL", "5"))
    REQUIRE_IEXEC_CONFIG = True

    # --- Settlement chain ---
    SETTLEMENT_RPC_URL = os.environ.get("SETTLEMENT_RPC_URL") or os.environ.get("ARBITRUM_SEPOLIA_RPC_URL")
    SETTLEMENT_CONTRACT_ADDRESS = os.environ.get("SETTLEMENT_CONTRACT_ADDRESS")
    SETTLEMENT_EXECUTOR_PRIVATE_KEY = (
        os.environ.get("SETTLEMENT_EXECUTOR_PRIVATE_KEY") or os.environ.get("FAUCET_PRIVATE_KEY")
    )
    TEST_USDC_ADDRESS = os.environ.get("TEST_USDC_ADDRESS")
    SETTLEMENT_CHAIN_ID = int(os.environ.get("SETTLEMENT_CHAIN_ID", "421614"))
    SETTLEMENT_NETWORK_NAME = os.environ.get("SETTLEMENT_NETWORK_NAME", "Arbitrum Sepolia")
    SETTLEMENT_EXPLORER_URL = os.environ.get("SETTLEMENT_EXPLORER_URL", "https://sepolia.arbiscan.io")
    WEB3_USE_POA = _as_bool(os.environ.get("WEB3_USE_POA", "false"))

    # --- DB ---
    # Without DATABASE_URL the job store is "not configured"; the in-memory
    # URI only keeps Flask-SQLAlchemy happy.
    STORE_ENABLED = bool(os.environ.get("DATABASE_URL"))
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite://")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _as_bool(os.environ.get("AUTO_CREATE_TABLES", "true"))
    JSON_SORT_KEYS = False


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class ProductionConfig(BaseConfig):
    DEBUG = False
    ENV = "production"


class TestingConfig(BaseConfig):
    TESTING = True
    ENV = "testing"
    REQUIRE_IEXEC_CONFIG = False
    # hermetic: credentials only come from the tests themselves
    IEXEC_PRIVATE_KEY = None
    IEXEC_APP_ADDRESS = None
    SETTLEMENT_RPC_URL = None
    SETTLEMENT_CONTRACT_ADDRESS = None
    SETTLEMENT_EXECUTOR_PRIVATE_KEY = None
    TEST_USDC_ADDRESS = None
    STORE_ENABLED = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    AUTO_CREATE_TABLES = False
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"


@dataclass(frozen=True)
class IExecSettings:
    private_key: str
    chain_name: str
    app_address: str
    rpc_url: str
    chain_id: int
    hub_address: str
    market_api_url: str
    ipfs_gateway_url: str
    result_proxy_url: str
    explorer_url: str
    workerpool: str
    tag: tuple = SCONE_TAG
    observation_timeout: float = TASK_OBSERVATION_TIMEOUT
    poll_interval: float = 5.0
    use_poa: bool = True


def load_iexec_settings(config: Mapping[str, Any]) -> IExecSettings:
    """Build compute-network settings, raising ConfigurationError when incomplete."""
    private_key = config.get("IEXEC_PRIVATE_KEY")
    if not private_key:
        raise ConfigurationError("Missing IEXEC_PRIVATE_KEY or PRIVATE_KEY in environment")

    chain_name = (config.get("IEXEC_CHAIN") or "bellecour").strip().lower()
    chain = CHAINS.get(chain_name)
    if not chain:
        raise ConfigurationError(
            f"Unsupported chain: {chain_name}. Use one of: {', '.join(sorted(CHAINS))}"
        )

    app_address = config.get("IEXEC_APP_ADDRESS")
    if not app_address:
        raise ConfigurationError("Missing IEXEC_APP_ADDRESS in environment")

    return IExecSettings(
        private_key=private_key,
        chain_name=chain_name,
        app_address=app_address,
        rpc_url=config.get("IEXEC_RPC_URL") or chain["rpc_host_url"],
        chain_id=chain["chain_id"],
        hub_address=chain["hub_address"],
        market_api_url=chain["market_api_url"],
        ipfs_gateway_url=chain["ipfs_gateway_url"],
        result_proxy_url=chain["result_proxy_url"],
        explorer_url=chain["explorer_url"],
        workerpool=config.get("IEXEC_WORKERPOOL") or chain["workerpool"],
        observation_timeout=float(config.get("TASK_OBSERVATION_TIMEOUT") or TASK_OBSERVATION_TIMEOUT),
        poll_interval=float(config.get("TASK_POLL_INTERVAL") or 5.0),
    )


@dataclass(frozen=True)
class SettlementSettings:
    rpc_url: str
    contract_address: str
    executor_private_key: Optional[str]
    token_address: Optional[str]
    chain_id: int
    network_name: str
    explorer_url: str
    use_poa: bool = False


def load_settlement_settings(config: Mapping[str, Any], *, require_executor: bool = False) -> SettlementSettings:
    """Settlement chain settings. Reads need RPC + contract, execution also needs the executor key."""
    rpc = config.get("SETTLEMENT_RPC_URL")
    contract_address = config.get("SETTLEMENT_CONTRACT_ADDRESS")
    executor_key = config.get("SETTLEMENT_EXECUTOR_PRIVATE_KEY")

    if require_executor and not (rpc and contract_address and executor_key):
        raise ConfigurationError(
            "On-chain settlement not configured. Set SETTLEMENT_RPC_URL (or ARBITRUM_SEPOLIA_RPC_URL), "
            "SETTLEMENT_CONTRACT_ADDRESS, and SETTLEMENT_EXECUTOR_PRIVATE_KEY (or FAUCET_PRIVATE_KEY)."
        )
    if not (rpc and contract_address):
        raise ConfigurationError(
            "Settlement not configured. Set SETTLEMENT_RPC_URL (or ARBITRUM_SEPOLIA_RPC_URL) "
            "and SETTLEMENT_CONTRACT_ADDRESS."
        )

    return SettlementSettings(
        rpc_url=rpc,
        contract_address=contract_address,
        executor_private_key=executor_key,
        token_address=config.get("TEST_USDC_ADDRESS"),
        chain_id=int(config.get("SETTLEMENT_CHAIN_ID") or 421614),
        network_name=config.get("SETTLEMENT_NETWORK_NAME") or "Arbitrum Sepolia",
        explorer_url=(config.get("SETTLEMENT_EXPLORER_URL") or "https://sepolia.arbiscan.io").rstrip("/"),
        use_poa=bool(config.get("WEB3_USE_POA", False)),
    )
