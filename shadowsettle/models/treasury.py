from datetime import datetime

from shadowsettle.models import db


class TreasuryBalance(db.Model):
    """Last chain read of the settlement contract's token balance (one row per contract)."""
    __tablename__ = "treasury_balance"

    settlement_address = db.Column(db.String(42), primary_key=True)  # lower-case
    balance_raw = db.Column(db.String(78), nullable=False)  # uint256 as decimal string
    balance_formatted = db.Column(db.String(64), nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
