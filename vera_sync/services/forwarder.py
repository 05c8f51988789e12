# vera_sync/services/forwarder.py
import logging
from typing import Any, Dict, Optional

from vera_sync.services.sourcify_client import SubmissionResult
from vera_sync.services.submission import VerificationSubmitter

logger = logging.getLogger(__name__)

REQUIRED_PAYLOAD_KEYS = ("id", "created_by", "deployment_id", "compilation_id")


class NotificationForwarder:
    """
    Handles `new_verified_contract` notifications from the VerA store.

    Contracts inserted by Sourcify itself are dropped so the two systems do
    not feed each other. Every other contract is submitted to the Sourcify
    server. A failure is logged and the handler returns normally: one bad
    event must never end the subscription.
    """

    def __init__(self, submitter: VerificationSubmitter, self_created_by: str = "sourcify"):
        self.submitter = submitter
        self.self_created_by = self_created_by

    def __call__(self, payload: Dict[str, Any]) -> Optional[SubmissionResult]:
        return self.handle_notification(payload)

    def handle_notification(self, payload: Dict[str, Any]) -> Optional[SubmissionResult]:
        verified_contract_id = payload.get("id") if isinstance(payload, dict) else None
        logger.info(
            "Received notification in 'new_verified_contract'",
            extra={"verified_contract_id": verified_contract_id},
        )
        try:
            return self._forward(payload)
        except Exception:
            logger.exception(
                "Failed to forward verified contract",
                extra={"verified_contract_id": verified_contract_id},
            )
            return None

    def _forward(self, payload: Dict[str, Any]) -> Optional[SubmissionResult]:
        if not isinstance(payload, dict):
            raise ValueError(f"notification payload must be a JSON object, got {type(payload).__name__}")
        missing = [k for k in REQUIRED_PAYLOAD_KEYS if k not in payload]
        if missing:
            raise ValueError(f"notification payload is missing {missing}")

        if payload["created_by"] == self.self_created_by:
            logger.info(
                "Contract inserted by Sourcify, skipping",
                extra={"verified_contract_id": payload["id"]},
            )
            return None

        return self.submitter.submit(int(payload["id"]))
