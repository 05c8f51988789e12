# vera_sync/routes/sync_routes.py
from flask import Blueprint, current_app, jsonify
from sqlalchemy import select

from vera_sync.config import SyncSettings
from vera_sync.errors import CheckpointError
from vera_sync.models import db, SyncStatus
from vera_sync.services.checkpoint import FileCheckpointStore

bp = Blueprint("sync", __name__)  # prefix applied in create_app


def _iso(dt):
    return dt.replace(microsecond=0).isoformat() + "Z" if dt else None


def _address_bytes(address: str) -> bytes:
    value = address.lower()
    if value.startswith("0x"):
        value = value[2:]
    raw = bytes.fromhex(value)
    if len(raw) != 20:
        raise ValueError("address must be 20 bytes")
    return raw


@bp.get("/checkpoints")
def checkpoints():
    """
    Sync: current checkpoints (next verified contract id per pipeline)
    ---
    tags:
      - Sync
    responses:
      200:
        description: OK
      500:
        description: Unreadable checkpoint file
    """
    settings = SyncSettings.from_config(current_app.config)
    out = {}
    for pipeline, name in (
        ("replicate", settings.replicate_checkpoint_name),
        ("push", settings.push_checkpoint_name),
    ):
        try:
            out[pipeline] = FileCheckpointStore(settings.checkpoint_dir, name).load()
        except CheckpointError as e:
            return jsonify({"ok": False, "error": str(e)}), 500
    return jsonify({"ok": True, "checkpoints": out}), 200


@bp.get("/status/<int:chain_id>/<address>")
def status(chain_id: int, address: str):
    """
    Sync: Sourcify submission state of one deployment
    ---
    tags:
      - Sync
    parameters:
      - in: path
        name: chain_id
        required: true
        type: integer
        example: 1
      - in: path
        name: address
        required: true
        type: string
        example: "0x00000000219ab540356cBB839Cbe05303d7705Fa"
    responses:
      200:
        description: OK
      400:
        description: Invalid address
      404:
        description: Never submitted
    """
    try:
        raw = _address_bytes(address)
    except ValueError:
        return jsonify({"ok": False, "error": "invalid address"}), 400

    row = db.session.execute(
        select(SyncStatus).where(SyncStatus.chain_id == chain_id, SyncStatus.address == raw)
    ).scalar_one_or_none()
    if not row:
        return jsonify({"ok": False, "error": "not submitted"}), 404

    return jsonify({
        "ok": True,
        "sync": {
            "chain_id": row.chain_id,
            "address": "0x" + row.address.hex(),
            "status": row.status,
            "verification_id": row.verification_id,
            "error_message": row.error_message,
            "attempts": row.attempts,
            "created_at": _iso(row.created_at),
            "updated_at": _iso(row.updated_at),
        },
    }), 200
