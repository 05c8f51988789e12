import hashlib
import os

import pytest
from sqlalchemy import insert

from vera_sync import create_app
from vera_sync.models import SourcifyMatch
from vera_sync.models import db as _db
from vera_sync.models.sync_status import SUBMITTED
from vera_sync.services import content_store as store
from vera_sync.services.sourcify_client import SubmissionResult


@pytest.fixture(scope="session")
def app():
    os.environ["FLASK_ENV"] = "testing"
    app = create_app("testing")
    with app.app_context():
        yield app


@pytest.fixture(autouse=True)
def stores(app, tmp_path):
    """Fresh schema in both in-memory stores and an empty checkpoint directory per test."""
    app.config["CHECKPOINT_DIR"] = str(tmp_path / "checkpoints")
    for engine in (_db.engine, _db.engines["sourcify"]):
        _db.metadata.drop_all(engine)
        _db.metadata.create_all(engine)
    yield
    _db.session.remove()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def vera_engine(app):
    return _db.engine


@pytest.fixture()
def sourcify_engine(app):
    return _db.engines["sourcify"]


@pytest.fixture()
def checkpoint_dir(app):
    return app.config["CHECKPOINT_DIR"]


def sha(value) -> bytes:
    if isinstance(value, str):
        value = value.encode()
    return hashlib.sha256(value).digest()


def address_of(n: int) -> bytes:
    return n.to_bytes(20, "big")


def seed_verified_contract(
    engine,
    n,
    created_by="sourcify",
    chain_id=1,
    match=True,
    verifiable=True,
    transaction_hash=True,
    source="contract Shared {}",
):
    """
    Insert one complete verified contract (code, contract, deployment,
    compilation, one source) and return its id. `n` makes the bytecode,
    address and names unique; `source` is shared unless overridden.
    """
    creation = f"creation-{n}".encode()
    runtime = f"runtime-{n}".encode()
    path = f"contracts/C{n}.sol"
    with engine.begin() as conn:
        store.bulk_insert_ignore(conn, "code", [
            {"code_hash": sha(creation), "code_hash_keccak": sha(b"k" + creation), "code": creation},
            {"code_hash": sha(runtime), "code_hash_keccak": sha(b"k" + runtime), "code": runtime},
        ])
        contract_id = store.upsert_and_fetch_id(conn, "contract", {
            "creation_code_hash": sha(creation),
            "runtime_code_hash": sha(runtime),
        })
        deployment_id = store.upsert_and_fetch_id(
            conn,
            "deployment",
            {
                "chain_id": chain_id,
                "address": address_of(n),
                "transaction_hash": sha(f"tx-{n}") if transaction_hash else None,
            },
            {"block_number": 100 + n, "transaction_index": 0, "deployer": address_of(999), "contract_id": contract_id},
        )
        compilation_id = store.upsert_and_fetch_id(
            conn,
            "compilation",
            {
                "compiler": "solc",
                "language": "solidity",
                "creation_code_hash": sha(creation) if verifiable else None,
                "runtime_code_hash": sha(runtime),
            },
            {
                "version": "0.8.26+commit.8a97fa7a",
                "name": f"C{n}",
                "fully_qualified_name": f"{path}:C{n}",
                "compiler_settings": {
                    "optimizer": {"enabled": True, "runs": 200},
                    "compilationTarget": {path: f"C{n}"},
                },
                "compilation_artifacts": {"abi": []},
                "creation_code_artifacts": {},
                "runtime_code_artifacts": {},
            },
        )
        store.bulk_insert_ignore(conn, "source", [
            {"source_hash": sha(source), "source_hash_keccak": sha("k" + source), "content": source},
        ])
        store.bulk_insert_ignore(conn, "compiled_source", [
            {"compilation_id": compilation_id, "source_hash": sha(source), "path": path},
        ])
        vc_id = store.insert_verified_contract(conn, {
            "created_by": created_by,
            "updated_by": created_by,
            "deployment_id": deployment_id,
            "compilation_id": compilation_id,
            "creation_match": True,
            "creation_values": {},
            "creation_transformations": [],
            "creation_metadata_match": True,
            "runtime_match": True,
            "runtime_values": {},
            "runtime_transformations": [],
            "runtime_metadata_match": True,
        })
        if match:
            conn.execute(insert(SourcifyMatch.__table__).values(
                verified_contract_id=vc_id, creation_match="perfect", runtime_match="perfect",
            ))
    return vc_id


@pytest.fixture()
def seed():
    return seed_verified_contract


class FakeSourcifyClient:
    """Stands in for SourcifyClient: canned submission results and job responses."""

    def __init__(self):
        self.submissions = []
        self.polls = []
        self.results = []
        self.default_result = SubmissionResult(status=SUBMITTED, http_status=202, verification_id="xyz")
        self.jobs = {}
        self.closed = False

    def submit_verification(self, chain_id, address, body):
        self.submissions.append((chain_id, address, body))
        result = self.results.pop(0) if self.results else self.default_result
        if isinstance(result, Exception):
            raise result
        return result

    def get_verification_job(self, verification_id):
        self.polls.append(verification_id)
        job = self.jobs[verification_id]
        if isinstance(job, Exception):
            raise job
        return job

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_sourcify():
    return FakeSourcifyClient()
