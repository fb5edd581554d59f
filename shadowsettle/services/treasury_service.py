# shadowsettle/services/treasury_service.py
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from shadowsettle.config import SettlementSettings
from shadowsettle.models import db
from shadowsettle.models.treasury import TreasuryBalance
from shadowsettle.services import settlement_service
from shadowsettle.services.units import format_display

logger = logging.getLogger(__name__)

SOURCE_DATABASE = "database"
SOURCE_CHAIN = "chain"


# ---------------------------
# DB cache access
# ---------------------------

def get_cached_balance(settlement_address: str) -> Optional[TreasuryBalance]:
    return db.session.get(TreasuryBalance, settlement_address.lower())


def save_balance(settlement_address: str, balance_raw: int, balance_formatted: str) -> TreasuryBalance:
    """Upsert the row for this contract. Last write wins."""
    addr = settlement_address.lower()
    now = datetime.utcnow()
    rec = db.session.get(TreasuryBalance, addr)
    if rec:
        rec.balance_raw = str(balance_raw)
        rec.balance_formatted = balance_formatted
        rec.updated_at = now
    else:
        rec = TreasuryBalance(
            settlement_address=addr,
            balance_raw=str(balance_raw),
            balance_formatted=balance_formatted,
            updated_at=now,
        )
        db.session.add(rec)
    db.session.commit()
    return rec


# ---------------------------
# High-level getter
# ---------------------------

def get_treasury_balance(
    settings: SettlementSettings,
    *,
    force_refresh: bool = False,
    use_store: bool = True,
) -> Dict[str, Any]:
    """
    Read-through cache of the settlement contract's token balance.

    - use_store and not force_refresh: stored row if present (source=database)
    - otherwise: chain read, persisted best effort (source=chain)
    """
    address = settings.contract_address

    if use_store and not force_refresh:
        try:
            rec = get_cached_balance(address)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning("treasury cache unavailable, reading chain: %s", e)
            rec = None
        if rec:
            return {
                "balanceFormatted": rec.balance_formatted,
                "balanceRaw": rec.balance_raw,
                "settlementAddress": address,
                "source": SOURCE_DATABASE,
            }

    balance_raw = settlement_service.read_treasury_balance(settings)
    balance_formatted = format_display(balance_raw)
    logger.info("treasury balance from chain raw=%s formatted=%s", balance_raw, balance_formatted)

    if use_store:
        try:
            save_balance(address, balance_raw, balance_formatted)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning("could not persist treasury balance: %s", e)

    return {
        "balanceFormatted": balance_formatted,
        "balanceRaw": str(balance_raw),
        "settlementAddress": address,
        "source": SOURCE_CHAIN,
    }
