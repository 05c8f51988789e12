# vera_sync/models/sync_status.py
from datetime import datetime
from vera_sync.models import db
from vera_sync.models.types import HashBytes

PENDING = "pending"
SUBMITTED = "submitted"
VERIFIED = "verified"
ALREADY_VERIFIED = "already_verified"
FAILED = "failed"

STATUSES = (PENDING, SUBMITTED, VERIFIED, ALREADY_VERIFIED, FAILED)
TERMINAL_STATUSES = (VERIFIED, ALREADY_VERIFIED, FAILED)
# failed is terminal for polling but may still be resubmitted
SETTLED_STATUSES = (VERIFIED, ALREADY_VERIFIED)


class SyncStatus(db.Model):
    __tablename__ = "sourcify_sync"

    id = db.Column(db.Integer, primary_key=True)
    chain_id = db.Column(db.BigInteger, nullable=False)
    address = db.Column(HashBytes(), nullable=False)
    verification_id = db.Column(db.String(64), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=False, default=PENDING, index=True)
    error_message = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("chain_id", "address", name="uq_sourcify_sync_chain_address"),
    )

