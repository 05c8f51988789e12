# vera_sync/services/submission.py
"""
Submit one VerA verified contract to the Sourcify server and record the
outcome in `sourcify_sync`. Used by the notification forwarder and by the
push-forward pass.

    build request -> claim (chain, address) -> POST -> record outcome

The claim is taken in its own transaction before the POST, so two
submitters racing on the same deployment send at most one request.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine

from vera_sync.errors import MissingClosureError, SourcifyApiError
from vera_sync.models.sync_status import FAILED
from vera_sync.services import content_store as store
from vera_sync.services import sync_state
from vera_sync.services.sourcify_client import SourcifyClient, SubmissionResult
from vera_sync.services.verification_request import build_verification_request, hex_address

logger = logging.getLogger(__name__)


class VerificationSubmitter:
    def __init__(self, engine: Engine, client: SourcifyClient):
        self.engine = engine
        self.client = client

    def submit(self, verified_contract_id, resubmit: bool = False) -> Optional[SubmissionResult]:
        """
        Returns the Sourcify response, or None when nothing was sent: the
        compilation is not verifiable, or another submitter holds or
        settled (chain, address). `resubmit` allows claiming a failed row.

        A transport error is recorded as `failed` (so the retry policy sees
        it) and re-raised.
        """
        with self.engine.connect() as conn:
            closure = store.fetch_compilation_closure(conn, verified_contract_id)
            if closure is None:
                raise MissingClosureError(verified_contract_id)

            chain_id = closure.deployment["chain_id"]
            raw_address = closure.deployment["address"]
            address = hex_address(raw_address)
            log_extra = {
                "verified_contract_id": verified_contract_id,
                "chain_id": chain_id,
                "address": address,
            }

            if not closure.is_verifiable:
                logger.info("Skipping contract with null creation_code_hash", extra=log_extra)
                return None

            links = store.fetch_source_links(conn, closure.compilation["id"])
            contents = store.fetch_sources_by_hashes(conn, [link["source_hash"] for link in links])
            missing = [link["path"] for link in links if link["source_hash"] not in contents]
            if missing:
                raise MissingClosureError(verified_contract_id, f"sources not found: {missing}")
            sources = {link["path"]: contents[link["source_hash"]] for link in links}

        body = build_verification_request(closure, sources)

        with self.engine.begin() as conn:
            claimed = sync_state.claim_submission(conn, chain_id, raw_address, resubmit=resubmit)
        if not claimed:
            logger.info("Contract already handed to Sourcify, not submitting again", extra=log_extra)
            return None

        logger.debug(
            "Contract's information fetched, submitting to Sourcify",
            extra={**log_extra, "contract_identifier": body["contractIdentifier"]},
        )
        try:
            result = self.client.submit_verification(chain_id, address, body)
        except SourcifyApiError as e:
            self._record(chain_id, raw_address, FAILED, error=str(e))
            logger.warning("Could not reach Sourcify, recorded as failed", extra={**log_extra, "error": str(e)})
            raise

        self._record(
            chain_id,
            raw_address,
            result.status,
            verification_id=result.verification_id,
            error=result.error if result.status == FAILED else None,
        )

        if result.accepted:
            logger.info(
                "Submitted to Sourcify",
                extra={**log_extra, "status": result.status, "verification_id": result.verification_id},
            )
        else:
            logger.warning(
                "Sourcify rejected the submission",
                extra={**log_extra, "http_status": result.http_status, "error": result.error},
            )
        return result

    def _record(self, chain_id, raw_address, status, verification_id=None, error=None) -> None:
        with self.engine.begin() as conn:
            sync_state.record_submission(
                conn,
                chain_id,
                raw_address,
                status=status,
                verification_id=verification_id,
                error=error,
                now=datetime.utcnow(),
            )
