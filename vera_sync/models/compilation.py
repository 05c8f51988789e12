# vera_sync/models/compilation.py
from vera_sync.models import db
from vera_sync.models.types import BigIntId, HashBytes, JSONBCompat


class CompiledContract(db.Model):
    __tablename__ = "compiled_contracts"

    id = db.Column(BigIntId, primary_key=True)
    compiler = db.Column(db.String(64), nullable=False)          # solc | vyper
    version = db.Column(db.String(128), nullable=False)
    language = db.Column(db.String(32), nullable=False)          # solidity | vyper
    name = db.Column(db.String(255), nullable=False)
    fully_qualified_name = db.Column(db.String(1024), nullable=True)

    compiler_settings = db.Column(JSONBCompat(), nullable=False)
    compilation_artifacts = db.Column(JSONBCompat(), nullable=True)
    creation_code_artifacts = db.Column(JSONBCompat(), nullable=True)
    runtime_code_artifacts = db.Column(JSONBCompat(), nullable=True)

    # NULL marks a compilation that cannot be verified against a deployment
    creation_code_hash = db.Column(HashBytes(), db.ForeignKey("code.code_hash"), nullable=True)
    runtime_code_hash = db.Column(HashBytes(), db.ForeignKey("code.code_hash"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "compiler", "language", "creation_code_hash", "runtime_code_hash",
            name="compiled_contracts_pseudo_pkey",
        ),
    )


class CompiledContractSource(db.Model):
    __tablename__ = "compiled_contracts_sources"

    id = db.Column(BigIntId, primary_key=True)
    compilation_id = db.Column(BigIntId, db.ForeignKey("compiled_contracts.id"), nullable=False)
    source_hash = db.Column(HashBytes(), db.ForeignKey("sources.source_hash"), nullable=False)
    path = db.Column(db.String(1024), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("compilation_id", "path", name="compiled_contracts_sources_pseudo_pkey"),
    )
