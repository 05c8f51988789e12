# vera_sync/models/contract.py
from vera_sync.models import db
from vera_sync.models.types import BigIntId, HashBytes


class Contract(db.Model):
    __tablename__ = "contracts"

    id = db.Column(BigIntId, primary_key=True)
    creation_code_hash = db.Column(HashBytes(), db.ForeignKey("code.code_hash"), nullable=True)
    runtime_code_hash = db.Column(HashBytes(), db.ForeignKey("code.code_hash"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("creation_code_hash", "runtime_code_hash", name="contracts_pseudo_pkey"),
    )


class ContractDeployment(db.Model):
    __tablename__ = "contract_deployments"

    id = db.Column(BigIntId, primary_key=True)
    chain_id = db.Column(db.BigInteger, nullable=False)
    address = db.Column(HashBytes(), nullable=False)
    transaction_hash = db.Column(HashBytes(), nullable=True)
    block_number = db.Column(db.BigInteger, nullable=True)
    transaction_index = db.Column(db.BigInteger, nullable=True)
    deployer = db.Column(HashBytes(), nullable=True)
    contract_id = db.Column(BigIntId, db.ForeignKey("contracts.id"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "chain_id", "address", "transaction_hash", name="contract_deployments_pseudo_pkey"
        ),
        db.Index("contract_deployments_address", "address"),
    )
