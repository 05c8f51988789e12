# vera_sync/models/code.py
from vera_sync.models import db
from vera_sync.models.types import HashBytes


class Code(db.Model):
    __tablename__ = "code"

    code_hash = db.Column(HashBytes(), primary_key=True)          # sha256 of the bytecode
    code_hash_keccak = db.Column(HashBytes(), nullable=False)
    code = db.Column(HashBytes(), nullable=True)


class Source(db.Model):
    __tablename__ = "sources"

    source_hash = db.Column(HashBytes(), primary_key=True)        # sha256 of the content
    source_hash_keccak = db.Column(HashBytes(), nullable=False)
    content = db.Column(db.Text, nullable=False)
