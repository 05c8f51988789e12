# vera_sync/services/batching.py
"""
Checkpointed batch loop shared by the replicator and the push-forward pass.

    LOAD_CHECKPOINT -> FETCH_BATCH -> (empty? -> DONE) -> PROCESS_BATCH
        -> COMMIT_CHECKPOINT -> FETCH_BATCH ...

Every item of a batch reaches a terminal outcome (success or a logged
failure) before the checkpoint moves to max(id) + 1. A crash in between
replays the whole batch on restart, which is safe because item processing
is idempotent.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

INSERTED = "inserted"
SUBMITTED = "submitted"
ALREADY_PRESENT = "already_present"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class RunSummary:
    pipeline: str
    start_checkpoint: int
    checkpoint: int
    batches: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)
    stopped: bool = False

    @property
    def processed(self) -> int:
        return sum(self.outcomes.values())

    def count(self, outcome: str) -> int:
        return self.outcomes.get(outcome, 0)

    def add(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "start_checkpoint": self.start_checkpoint,
            "checkpoint": self.checkpoint,
            "batches": self.batches,
            "processed": self.processed,
            "outcomes": dict(self.outcomes),
            "stopped": self.stopped,
        }


class BatchRunner:
    """
    fetch_batch(cursor, limit) -> rows ordered by "id" ascending
    process_item(row) -> outcome string; exceptions count as FAILED
    """

    def __init__(
        self,
        name: str,
        checkpoint,
        fetch_batch: Callable[[int, int], List[Dict[str, Any]]],
        process_item: Callable[[Dict[str, Any]], str],
        batch_size: int,
        parallelism: int = 1,
        item_delay: float = 0.0,
        should_stop: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.name = name
        self.checkpoint = checkpoint
        self.fetch_batch = fetch_batch
        self.process_item = process_item
        self.batch_size = batch_size
        self.parallelism = max(1, int(parallelism))
        self.item_delay = item_delay
        self.should_stop = should_stop or (lambda: False)
        self.sleep = sleep

    def run(self) -> RunSummary:
        cursor = self.checkpoint.load()
        summary = RunSummary(pipeline=self.name, start_checkpoint=cursor, checkpoint=cursor)
        logger.info("Starting batch run", extra={"pipeline": self.name, "checkpoint": cursor})

        while True:
            if self.should_stop():
                summary.stopped = True
                logger.info("Stop requested, leaving batch loop", extra={"pipeline": self.name, "checkpoint": cursor})
                break

            started = time.monotonic()
            rows = self.fetch_batch(cursor, self.batch_size)
            if not rows:
                break

            for outcome in self._process_batch(rows):
                summary.add(outcome)

            cursor = max(int(r["id"]) for r in rows) + 1
            self.checkpoint.save(cursor)
            summary.batches += 1
            summary.checkpoint = cursor

            elapsed = time.monotonic() - started
            logger.info(
                "Batch committed",
                extra={
                    "pipeline": self.name,
                    "checkpoint": cursor,
                    "batch_size": len(rows),
                    "rate": round(len(rows) / elapsed, 2) if elapsed > 0 else None,
                },
            )

        logger.info("Batch run finished", extra=summary.as_dict())
        return summary

    def _process_batch(self, rows: List[Dict[str, Any]]) -> List[str]:
        if self.parallelism == 1:
            return [self._run_item(row) for row in rows]
        with ThreadPoolExecutor(
            max_workers=min(self.parallelism, len(rows)),
            thread_name_prefix=f"vera-sync-{self.name}",
        ) as executor:
            # leaving the block waits for every item
            return list(executor.map(self._run_item, rows))

    def _run_item(self, row: Dict[str, Any]) -> str:
        try:
            return self.process_item(row)
        except Exception:
            logger.exception(
                "Item failed", extra={"pipeline": self.name, "verified_contract_id": row.get("id")}
            )
            return FAILED
        finally:
            if self.item_delay > 0:
                self.sleep(self.item_delay)
