# vera_sync/services/reconciler.py
"""
Reconciliation of Sourcify verification jobs.

Rows in `sourcify_sync` with status `submitted` carry the Sourcify job id.
Polling `GET /v2/verify/{jobId}` settles them:

    completed with contract.match        -> verified
    error.customCode == already_verified -> already_verified
    completed with an error, 4xx         -> failed (error body kept verbatim)
    still running, 5xx, transport error  -> unchanged, polled next pass
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.engine import Engine

from vera_sync.errors import SourcifyApiError
from vera_sync.models.sync_status import ALREADY_VERIFIED, FAILED, SUBMITTED, VERIFIED
from vera_sync.services import sync_state
from vera_sync.services.sourcify_client import JobResponse, SourcifyClient
from vera_sync.services.verification_request import hex_address

logger = logging.getLogger(__name__)

ALREADY_VERIFIED_CODE = "already_verified"


def _error_code(error: Any) -> Optional[str]:
    if isinstance(error, dict):
        return error.get("customCode")
    return None


def classify_job(job: JobResponse) -> Tuple[str, Any]:
    """Return (status, error) for a job-status response; SUBMITTED means keep waiting."""
    body = job.body or {}
    error = body.get("error")

    if _error_code(error) == ALREADY_VERIFIED_CODE or body.get("customCode") == ALREADY_VERIFIED_CODE:
        return ALREADY_VERIFIED, None

    if job.ok:
        if not body.get("isJobCompleted"):
            return SUBMITTED, None
        contract = body.get("contract") or {}
        if error is None and contract.get("match") is not None:
            return VERIFIED, None
        return FAILED, error if error is not None else body

    if 400 <= job.http_status < 500:
        return FAILED, error if error is not None else body
    return SUBMITTED, None


class ReconciliationPoller:
    def __init__(
        self,
        engine: Engine,
        client: SourcifyClient,
        batch_size: int = 50,
        request_delay: float = 0.0,
        should_stop: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.client = client
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.should_stop = should_stop or (lambda: False)
        self.sleep = sleep

    def run(self) -> Dict[str, int]:
        """Poll every submitted row once. Returns a count per resulting status."""
        counts: Dict[str, int] = {}
        after_id = 0
        while not self.should_stop():
            with self.engine.connect() as conn:
                rows = sync_state.fetch_submitted(conn, after_id, self.batch_size)
            if not rows:
                break
            for row in rows:
                status = self.poll(row)
                counts[status] = counts.get(status, 0) + 1
                if self.request_delay > 0:
                    self.sleep(self.request_delay)
            after_id = rows[-1]["id"]
        if counts:
            logger.info("Reconciliation pass finished", extra={"outcomes": counts})
        return counts

    def poll(self, row: Dict[str, Any]) -> str:
        """Check one submitted row. Returns its status after the check."""
        log_extra = {
            "chain_id": row["chain_id"],
            "address": hex_address(row["address"]),
            "verification_id": row["verification_id"],
        }
        try:
            job = self.client.get_verification_job(row["verification_id"])
        except SourcifyApiError as e:
            logger.warning("Could not check verification status", extra={**log_extra, "error": str(e)})
            return SUBMITTED

        status, error = classify_job(job)
        if status == SUBMITTED:
            logger.debug("Verification still pending", extra=log_extra)
            return SUBMITTED

        with self.engine.begin() as conn:
            moved = sync_state.transition(conn, row["id"], status, error=error)
        if not moved:
            logger.info("Sync row changed while polling, leaving it", extra=log_extra)
            return SUBMITTED

        if status == FAILED:
            logger.error("Verification failed", extra={**log_extra, "error": error})
        elif status == ALREADY_VERIFIED:
            logger.info("Verification is already verified", extra=log_extra)
        else:
            logger.info("Verification completed", extra={**log_extra, "match": job.body["contract"]["match"]})
        return status
