# vera_sync/models/verified_contract.py
from datetime import datetime
from vera_sync.models import db
from vera_sync.models.types import BigIntId, JSONBCompat


class VerifiedContract(db.Model):
    __tablename__ = "verified_contracts"

    id = db.Column(BigIntId, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    created_by = db.Column(db.String(64), nullable=False, index=True)   # provenance: sourcify, routescan, ...
    updated_by = db.Column(db.String(64), nullable=False)

    deployment_id = db.Column(BigIntId, db.ForeignKey("contract_deployments.id"), nullable=False)
    compilation_id = db.Column(BigIntId, db.ForeignKey("compiled_contracts.id"), nullable=False)

    creation_match = db.Column(db.Boolean, nullable=False)
    creation_values = db.Column(JSONBCompat(), nullable=True)
    creation_transformations = db.Column(JSONBCompat(), nullable=True)
    creation_metadata_match = db.Column(db.Boolean, nullable=True)
    runtime_match = db.Column(db.Boolean, nullable=False)
    runtime_values = db.Column(JSONBCompat(), nullable=True)
    runtime_transformations = db.Column(JSONBCompat(), nullable=True)
    runtime_metadata_match = db.Column(db.Boolean, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("compilation_id", "deployment_id", name="verified_contracts_pseudo_pkey"),
    )


class SourcifyMatch(db.Model):
    """Sourcify-side match summary; only present in the Sourcify store."""
    __tablename__ = "sourcify_matches"

    id = db.Column(BigIntId, primary_key=True)
    verified_contract_id = db.Column(
        BigIntId, db.ForeignKey("verified_contracts.id"), nullable=False, unique=True
    )
    creation_match = db.Column(db.String(16), nullable=True)    # perfect | partial
    runtime_match = db.Column(db.String(16), nullable=True)
    match_metadata = db.Column("metadata", JSONBCompat(), nullable=True)
