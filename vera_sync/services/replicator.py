# vera_sync/services/replicator.py
"""
Copy verified contracts from the Sourcify store into the VerA store.

Each source row is written in its own VerA transaction: code, contract,
deployment, compilation, sources and finally the verified contract. Every
write is an insert-if-absent, so replaying a batch after a crash creates no
duplicates.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from vera_sync.errors import MissingClosureError
from vera_sync.services import content_store as store
from vera_sync.services.batching import (
    ALREADY_PRESENT,
    INSERTED,
    SKIPPED,
    BatchRunner,
    RunSummary,
)
from vera_sync.services.checkpoint import FileCheckpointStore
from vera_sync.services.verification_request import hex_address

logger = logging.getLogger(__name__)

PIPELINE = "replicate"

_COMPILATION_FIELDS = (
    "version",
    "name",
    "fully_qualified_name",
    "compiler_settings",
    "compilation_artifacts",
    "creation_code_artifacts",
    "runtime_code_artifacts",
)

_VERIFIED_CONTRACT_FIELDS = (
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
    "creation_match",
    "creation_values",
    "creation_transformations",
    "creation_metadata_match",
    "runtime_match",
    "runtime_values",
    "runtime_transformations",
    "runtime_metadata_match",
)


class BatchReplicator:
    def __init__(
        self,
        source_engine: Engine,
        target_engine: Engine,
        checkpoint: FileCheckpointStore,
        batch_size: int = 200,
        parallelism: int = 8,
        should_stop=None,
    ):
        self.source_engine = source_engine
        self.target_engine = target_engine
        self.runner = BatchRunner(
            name=PIPELINE,
            checkpoint=checkpoint,
            fetch_batch=self.fetch_batch,
            process_item=self.process_row,
            batch_size=batch_size,
            parallelism=parallelism,
            should_stop=should_stop,
        )

    def run(self) -> RunSummary:
        return self.runner.run()

    def fetch_batch(self, cursor: int, limit: int) -> List[Dict[str, Any]]:
        with self.source_engine.connect() as conn:
            return store.fetch_replicable_batch(conn, cursor, limit)

    def process_row(self, row: Dict[str, Any]) -> str:
        verified_contract_id = row["id"]
        with self.source_engine.connect() as src:
            closure = store.fetch_compilation_closure(src, verified_contract_id)
            if closure is None:
                raise MissingClosureError(verified_contract_id, "deployment, contract or compilation row is missing")

            log_extra = {
                "verified_contract_id": verified_contract_id,
                "chain_id": closure.deployment["chain_id"],
                "address": hex_address(closure.deployment["address"]),
            }
            if not closure.is_verifiable:
                logger.info("Skipping contract with null creation_code_hash", extra=log_extra)
                return SKIPPED

            code_rows = self._fetch_code_rows(src, closure)
            sources = store.fetch_compilation_sources(src, closure.compilation["id"])

        with self.target_engine.begin() as dst:
            new_id = self._write_closure(dst, closure, code_rows, sources)

        if new_id is None:
            logger.info("Already pushed", extra=log_extra)
            return ALREADY_PRESENT
        logger.info("Pushed", extra={**log_extra, "new_verified_contract_id": new_id})
        return INSERTED

    def _fetch_code_rows(self, src, closure) -> List[Dict[str, Any]]:
        hashes = [
            closure.compilation["creation_code_hash"],
            closure.compilation["runtime_code_hash"],
            closure.contract["creation_code_hash"],
            closure.contract["runtime_code_hash"],
        ]
        rows = []
        for code_hash in dict.fromkeys(h for h in hashes if h is not None):
            code = store.fetch_code_by_hash(src, code_hash)
            if code is None:
                raise MissingClosureError(
                    closure.verified_contract_id, f"code 0x{code_hash.hex()} not found"
                )
            rows.append(code)
        return rows

    def _write_closure(self, dst, closure, code_rows, sources) -> Optional[int]:
        deployment = closure.deployment
        contract = closure.contract
        compilation = closure.compilation
        verified = closure.verified_contract

        store.insert_code(dst, code_rows)

        contract_id = store.upsert_and_fetch_id(
            dst,
            "contract",
            {
                "creation_code_hash": contract["creation_code_hash"],
                "runtime_code_hash": contract["runtime_code_hash"],
            },
        )

        deployment_id = store.upsert_and_fetch_id(
            dst,
            "deployment",
            {
                "chain_id": deployment["chain_id"],
                "address": deployment["address"],
                "transaction_hash": deployment["transaction_hash"],
            },
            {
                "block_number": deployment["block_number"],
                "transaction_index": deployment["transaction_index"],
                "deployer": deployment["deployer"],
                "contract_id": contract_id,
            },
        )

        compilation_id = store.upsert_and_fetch_id(
            dst,
            "compilation",
            {
                "compiler": compilation["compiler"],
                "language": compilation["language"],
                "creation_code_hash": compilation["creation_code_hash"],
                "runtime_code_hash": compilation["runtime_code_hash"],
            },
            {k: compilation[k] for k in _COMPILATION_FIELDS},
        )

        unique_sources = {}
        for s in sources:
            unique_sources.setdefault(
                s["source_hash"],
                {
                    "source_hash": s["source_hash"],
                    "source_hash_keccak": s["source_hash_keccak"],
                    "content": s["content"],
                },
            )
        store.bulk_insert_ignore(dst, "source", unique_sources.values())
        store.bulk_insert_ignore(
            dst,
            "compiled_source",
            [
                {"compilation_id": compilation_id, "source_hash": s["source_hash"], "path": s["path"]}
                for s in sources
            ],
        )

        values = {k: verified[k] for k in _VERIFIED_CONTRACT_FIELDS}
        values.update(deployment_id=deployment_id, compilation_id=compilation_id)
        return store.insert_verified_contract(dst, values)


def make_replicator(runtime, should_stop=None, batch_size=None) -> BatchReplicator:
    settings = runtime.settings
    return BatchReplicator(
        source_engine=runtime.sourcify_engine,
        target_engine=runtime.vera_engine,
        checkpoint=runtime.checkpoint(settings.replicate_checkpoint_name),
        batch_size=batch_size or settings.replicate_batch_size,
        parallelism=settings.replicate_parallelism,
        should_stop=should_stop,
    )
