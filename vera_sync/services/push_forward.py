# vera_sync/services/push_forward.py
"""
Batch push of VerA verified contracts to the Sourcify server.

One pass:
  1. poll every submitted job (ReconciliationPoller),
  2. resubmit failed rows that the retry policy allows,
  3. submit new verified contracts above the checkpoint that have no
     sync row yet, then advance the checkpoint batch by batch.

API calls are sequential by default with a fixed delay between requests.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.engine import Engine

from vera_sync.models import ContractDeployment, SyncStatus, VerifiedContract
from vera_sync.models.sync_status import ALREADY_VERIFIED
from vera_sync.services import sync_state
from vera_sync.services.batching import (
    ALREADY_PRESENT,
    FAILED,
    SKIPPED,
    SUBMITTED,
    BatchRunner,
    RunSummary,
)
from vera_sync.services.checkpoint import FileCheckpointStore
from vera_sync.services.reconciler import ReconciliationPoller
from vera_sync.services.retry import RetryPolicy
from vera_sync.services.submission import VerificationSubmitter

logger = logging.getLogger(__name__)

PIPELINE = "push"


@dataclass
class PushSummary:
    reconciled: Dict[str, int] = field(default_factory=dict)
    retried: Dict[str, int] = field(default_factory=dict)
    batch: Optional[RunSummary] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "reconciled": dict(self.reconciled),
            "retried": dict(self.retried),
            "batch": self.batch.as_dict() if self.batch else None,
        }


def _outcome(result) -> str:
    if result is None:
        return SKIPPED
    if result.status == ALREADY_VERIFIED:
        return ALREADY_PRESENT
    if result.accepted:
        return SUBMITTED
    return FAILED


class SourcifyPusher:
    def __init__(
        self,
        engine: Engine,
        submitter: VerificationSubmitter,
        poller: ReconciliationPoller,
        checkpoint: FileCheckpointStore,
        created_by: Sequence[str] = ("routescan",),
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = 50,
        parallelism: int = 1,
        request_delay: float = 0.1,
        should_stop: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.submitter = submitter
        self.poller = poller
        self.created_by = tuple(created_by)
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.should_stop = should_stop or (lambda: False)
        self.sleep = sleep
        self.runner = BatchRunner(
            name=PIPELINE,
            checkpoint=checkpoint,
            fetch_batch=self.fetch_batch,
            process_item=self.process_row,
            batch_size=batch_size,
            parallelism=parallelism,
            item_delay=request_delay,
            should_stop=self.should_stop,
            sleep=sleep,
        )

    def run(self, now: Optional[datetime] = None) -> PushSummary:
        summary = PushSummary()
        summary.reconciled = self.poller.run()
        summary.retried = self.retry_failed(now or datetime.utcnow())
        summary.batch = self.runner.run()
        logger.info("Push pass finished", extra=summary.as_dict())
        return summary

    def fetch_batch(self, cursor: int, limit: int) -> List[Dict[str, Any]]:
        """VerA verified contracts >= cursor of a pushed provenance and without a sync row."""
        vc = VerifiedContract.__table__
        cd = ContractDeployment.__table__
        ss = SyncStatus.__table__
        stmt = (
            select(vc.c.id, vc.c.created_by, cd.c.chain_id, cd.c.address)
            .select_from(
                vc.join(cd, vc.c.deployment_id == cd.c.id).outerjoin(
                    ss, (ss.c.chain_id == cd.c.chain_id) & (ss.c.address == cd.c.address)
                )
            )
            .where(
                vc.c.id >= cursor,
                ss.c.id.is_(None),
                cd.c.transaction_hash.is_not(None),
                vc.c.created_by.in_(self.created_by),
            )
            .order_by(vc.c.id.asc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    def process_row(self, row: Dict[str, Any]) -> str:
        return _outcome(self.submitter.submit(row["id"]))

    def retry_failed(self, now: datetime) -> Dict[str, int]:
        """Resubmit failed rows whose backoff elapsed and that have attempts left."""
        counts: Dict[str, int] = {}
        after_id = 0
        while not self.should_stop():
            with self.engine.connect() as conn:
                rows = sync_state.fetch_retryable(conn, self.retry_policy, now, after_id, self.batch_size)
            if not rows:
                break
            for row in rows:
                outcome = self._retry_one(row)
                counts[outcome] = counts.get(outcome, 0) + 1
                if self.request_delay > 0:
                    self.sleep(self.request_delay)
            after_id = rows[-1]["id"]
        return counts

    def _retry_one(self, row: Dict[str, Any]) -> str:
        verified_contract_id = self._latest_verified_contract(row["chain_id"], row["address"])
        if verified_contract_id is None:
            logger.warning(
                "No verified contract left for failed sync row",
                extra={"chain_id": row["chain_id"], "sync_id": row["id"]},
            )
            return SKIPPED
        try:
            return _outcome(self.submitter.submit(verified_contract_id, resubmit=True))
        except Exception:
            logger.exception(
                "Resubmission failed",
                extra={"verified_contract_id": verified_contract_id, "chain_id": row["chain_id"]},
            )
            return FAILED

    def _latest_verified_contract(self, chain_id: int, address: bytes):
        vc = VerifiedContract.__table__
        cd = ContractDeployment.__table__
        stmt = (
            select(vc.c.id)
            .select_from(vc.join(cd, vc.c.deployment_id == cd.c.id))
            .where(
                cd.c.chain_id == chain_id,
                cd.c.address == address,
                cd.c.transaction_hash.is_not(None),
                vc.c.created_by.in_(self.created_by),
            )
            .order_by(vc.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()


def make_pusher(runtime, should_stop=None, batch_size=None) -> SourcifyPusher:
    settings = runtime.settings
    batch_size = batch_size or settings.push_batch_size
    submitter = VerificationSubmitter(runtime.vera_engine, runtime.client)
    poller = ReconciliationPoller(
        runtime.vera_engine,
        runtime.client,
        batch_size=batch_size,
        request_delay=settings.push_request_delay,
        should_stop=should_stop,
    )
    return SourcifyPusher(
        engine=runtime.vera_engine,
        submitter=submitter,
        poller=poller,
        checkpoint=runtime.checkpoint(settings.push_checkpoint_name),
        created_by=settings.push_created_by,
        retry_policy=settings.retry,
        batch_size=batch_size,
        parallelism=settings.push_parallelism,
        request_delay=settings.push_request_delay,
        should_stop=should_stop,
    )
