import uuid
from datetime import datetime

from shadowsettle.models import db
from shadowsettle.models.types import JSONPayload

JOB_STATUSES = ("submitted", "completed", "failed", "settled")
DEFAULT_SETTLEMENT_NAME = "Settlement"


class SettlementJob(db.Model):
    __tablename__ = "jobs"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = db.Column(db.String(66), unique=True, nullable=False)
    deal_id = db.Column(db.String(66), nullable=True)
    wallet_address = db.Column(db.String(42), index=True, nullable=True)  # lower-case
    settlement_name = db.Column(db.String(255), nullable=False, default=DEFAULT_SETTLEMENT_NAME)

    status = db.Column(db.String(20), nullable=False, default="submitted")  # submitted|completed|failed|settled
    result = db.Column(JSONPayload(), nullable=True)  # {payouts: [...], attestation} - written once
    error = db.Column(db.Text, nullable=True)
    dataset_url_override = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    settled_tx_hash = db.Column(db.String(66), nullable=True)
    settled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("idx_jobs_submitted_at", "submitted_at"),
    )

    def __repr__(self):
        return f"<SettlementJob {self.task_id} {self.status}>"
