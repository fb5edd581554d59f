"""
Error taxonomy for the settlement backend.

Every error carries the HTTP status the routes answer with. Callers branch on
the class, never on the message.

- ConfigurationError: missing credentials or endpoints (503)
- ValidationError: malformed caller input, never retried (400)
- NotFoundError: unknown job (404)
- NetworkError / NoCapacityError: transient, retry is up to the caller (500)
- TaskTimeoutError: bounded observation wait exceeded; re-poll the result
  instead of resubmitting (504)
- ResultFormatError: completed task produced an unusable result (500)
- ExecutionError and its contract-level subclasses (500)
"""
from typing import Dict, Optional, Type


class SettlementError(Exception):
    """Base exception for shadowsettle."""
    status_code = 500


class ConfigurationError(SettlementError):
    status_code = 503


class ValidationError(SettlementError):
    status_code = 400


class NotFoundError(SettlementError):
    status_code = 404


class NetworkError(SettlementError):
    """RPC or transport failure talking to the compute network or the chain."""


class NoCapacityError(SettlementError):
    """The workerpool order book had no order for the app and tag."""


class TaskObservationError(SettlementError):
    """The task status stream reported an error."""


class TaskTimeoutError(SettlementError, TimeoutError):
    status_code = 504


class ResultFormatError(SettlementError):
    """A completed task did not produce a readable result.json."""


class ExecutionError(SettlementError):
    """Settlement transaction rejected or failed."""


class InsufficientTreasuryError(ExecutionError):
    default_message = (
        "Insufficient balance in settlement contract. Deposit USDC to the treasury first "
        "(Profile → Deposit USDC)."
    )


class AlreadySettledError(ExecutionError):
    default_message = (
        "This settlement was already executed on-chain. Each attestation can only be used once. "
        "Open a different job or run a new confidential settlement."
    )


class UnauthorizedExecutorError(ExecutionError):
    default_message = (
        "Only the configured executor can call settle. "
        "Check SETTLEMENT_EXECUTOR_PRIVATE_KEY matches the contract executor."
    )


# Settlement contract custom error selectors (first 4 bytes of keccak(signature)).
CONTRACT_ERRORS: Dict[str, Type[ExecutionError]] = {
    "0xf4d678b8": InsufficientTreasuryError,
    "0x17ee279c": AlreadySettledError,
    "0x7fb6be02": UnauthorizedExecutorError,
}


def error_for_selector(data) -> Optional[ExecutionError]:
    """Map revert data (``0x`` + selector + args) to a typed error, or None."""
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None
    cls = CONTRACT_ERRORS.get(data[:10].lower())
    if cls is None:
        return None
    return cls(cls.default_message)
