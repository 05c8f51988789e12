from datetime import datetime

from sqlalchemy import insert

from conftest import address_of
from vera_sync.models import SyncStatus
from vera_sync.services.checkpoint import FileCheckpointStore


def test_checkpoints_default(client):
    rv = client.get("/api/sync/checkpoints")
    assert rv.status_code == 200
    assert rv.json == {"ok": True, "checkpoints": {"replicate": 1, "push": 1}}


def test_checkpoints_after_progress(client, checkpoint_dir):
    FileCheckpointStore(checkpoint_dir, "CURRENT_VERIFIED_CONTRACT").save(120)
    rv = client.get("/api/sync/checkpoints")
    assert rv.json["checkpoints"]["replicate"] == 120


def test_status_of_submitted_contract(client, vera_engine):
    now = datetime(2024, 5, 1, 10, 30)
    with vera_engine.begin() as conn:
        conn.execute(insert(SyncStatus.__table__).values(
            chain_id=1, address=address_of(5), status="submitted", verification_id="xyz",
            attempts=1, created_at=now, updated_at=now,
        ))

    rv = client.get("/api/sync/status/1/0x" + address_of(5).hex())

    assert rv.status_code == 200
    sync = rv.json["sync"]
    assert sync["status"] == "submitted"
    assert sync["verification_id"] == "xyz"
    assert sync["address"] == "0x" + address_of(5).hex()
    assert sync["updated_at"] == "2024-05-01T10:30:00Z"


def test_status_unknown_contract(client):
    rv = client.get("/api/sync/status/1/0x" + address_of(6).hex())
    assert rv.status_code == 404


def test_status_invalid_address(client):
    assert client.get("/api/sync/status/1/0x1234").status_code == 400
    assert client.get("/api/sync/status/1/not-an-address").status_code == 400
