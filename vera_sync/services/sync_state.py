# vera_sync/services/sync_state.py
"""
SyncStatus persistence. The engine is the only writer of `sourcify_sync`.

Status only moves forward: once a row is `verified` or `already_verified`
no write touches it again. Every POST to the Sourcify server is preceded
by a claim that moves the row to `pending`; only the claim owner sends.
`failed` rows can be claimed again by a resubmission.
"""
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.engine import Connection

from vera_sync.models import SyncStatus
from vera_sync.models.sync_status import FAILED, PENDING, SETTLED_STATUSES, SUBMITTED
from vera_sync.services.content_store import insert_ignore
from vera_sync.services.retry import RetryPolicy

sync_table = SyncStatus.__table__

# a pending claim older than this was left behind by a crashed worker
STALE_PENDING_AFTER_S = 600.0


def serialize_error(error: Any) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, str):
        return error
    return json.dumps(error, default=str, sort_keys=True)


def get_status(conn: Connection, chain_id: int, address: bytes) -> Optional[Dict[str, Any]]:
    t = sync_table
    row = conn.execute(
        select(t).where(t.c.chain_id == chain_id, t.c.address == address)
    ).mappings().first()
    return dict(row) if row else None


def claim_submission(
    conn: Connection,
    chain_id: int,
    address: bytes,
    resubmit: bool = False,
    now: Optional[datetime] = None,
    stale_after_s: float = STALE_PENDING_AFTER_S,
) -> bool:
    """
    Reserve (chain_id, address) for one POST to the Sourcify server.

    The caller whose insert or conditional update took effect owns the
    submission; everyone else must not send. A `pending` claim older than
    `stale_after_s` belongs to a worker that died before recording the
    outcome and can be taken over. `failed` rows are only claimed with
    `resubmit`.
    """
    now = now or datetime.utcnow()
    t = sync_table
    inserted = conn.execute(
        insert_ignore(conn, t, ("chain_id", "address")).values(
            chain_id=chain_id,
            address=address,
            status=PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
    )
    if inserted.rowcount > 0:
        return True

    reclaimable = [
        and_(t.c.status == PENDING, t.c.updated_at <= now - timedelta(seconds=stale_after_s)),
    ]
    if resubmit:
        reclaimable.append(t.c.status == FAILED)
    result = conn.execute(
        update(t)
        .where(t.c.chain_id == chain_id, t.c.address == address, or_(*reclaimable))
        .values(status=PENDING, updated_at=now)
    )
    return result.rowcount > 0


def record_submission(
    conn: Connection,
    chain_id: int,
    address: bytes,
    status: str,
    verification_id: Optional[str] = None,
    error: Any = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Store the outcome of a submission attempt for (chain_id, address) and
    count the attempt. Returns False when the row had already settled, in
    which case nothing is written.
    """
    now = now or datetime.utcnow()
    t = sync_table
    conn.execute(
        insert_ignore(conn, t, ("chain_id", "address")).values(
            chain_id=chain_id,
            address=address,
            status=PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
    )
    result = conn.execute(
        update(t)
        .where(
            t.c.chain_id == chain_id,
            t.c.address == address,
            t.c.status.not_in(SETTLED_STATUSES),
        )
        .values(
            status=status,
            verification_id=verification_id,
            error_message=serialize_error(error),
            attempts=t.c.attempts + 1,
            updated_at=now,
        )
    )
    return result.rowcount > 0


def transition(
    conn: Connection,
    sync_id: int,
    status: str,
    error: Any = None,
    expected: str = SUBMITTED,
    now: Optional[datetime] = None,
) -> bool:
    """Move one row from `expected` to `status`. Returns False if the row moved on meanwhile."""
    t = sync_table
    values = {"status": status, "updated_at": now or datetime.utcnow()}
    if error is not None:
        values["error_message"] = serialize_error(error)
    result = conn.execute(
        update(t).where(t.c.id == sync_id, t.c.status == expected).values(**values)
    )
    return result.rowcount > 0


def fetch_submitted(conn: Connection, after_id: int, limit: int) -> List[Dict[str, Any]]:
    """Submitted rows with a job id, keyset-paginated by id."""
    t = sync_table
    stmt = (
        select(t)
        .where(t.c.status == SUBMITTED, t.c.verification_id.is_not(None), t.c.id > after_id)
        .order_by(t.c.id.asc())
        .limit(limit)
    )
    return [dict(r) for r in conn.execute(stmt).mappings()]


def fetch_retryable(
    conn: Connection,
    policy: RetryPolicy,
    now: datetime,
    after_id: int,
    limit: int,
    stale_after_s: float = STALE_PENDING_AFTER_S,
) -> List[Dict[str, Any]]:
    """
    Failed rows with attempts left whose backoff has elapsed, plus pending
    claims abandoned by a worker that never recorded the outcome.
    """
    if policy.max_attempts < 1:
        return []
    t = sync_table
    due = [
        and_(t.c.attempts == n, t.c.updated_at <= policy.latest_eligible_update(n, now))
        for n in range(1, policy.max_attempts)
    ]
    # rows recorded as failed before any attempt was counted
    due.append(t.c.attempts < 1)
    abandoned = and_(
        t.c.status == PENDING,
        t.c.attempts < policy.max_attempts,
        t.c.updated_at <= now - timedelta(seconds=stale_after_s),
    )
    stmt = (
        select(t)
        .where(t.c.id > after_id, or_(and_(t.c.status == FAILED, or_(*due)), abandoned))
        .order_by(t.c.id.asc())
        .limit(limit)
    )
    return [dict(r) for r in conn.execute(stmt).mappings()]
