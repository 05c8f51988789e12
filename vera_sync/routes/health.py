from flask import Blueprint, jsonify
from sqlalchemy import text

from vera_sync.models import db

bp = Blueprint("health", __name__)


def _ping(engine) -> str:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        return f"error: {e.__class__.__name__}"


@bp.get("/healthz")
def healthz():
    """
    Healthcheck (pings both stores)
    ---
    tags:
      - Health
    responses:
      200:
        description: OK
      503:
        description: A store is unreachable
    """
    stores = {
        "vera": _ping(db.engine),
        "sourcify": _ping(db.engines["sourcify"]),
    }
    ok = all(v == "ok" for v in stores.values())
    return jsonify({"ok": ok, "stores": stores}), 200 if ok else 503
