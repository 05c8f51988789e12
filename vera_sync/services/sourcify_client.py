# vera_sync/services/sourcify_client.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from vera_sync.errors import SourcifyApiError
from vera_sync.models.sync_status import ALREADY_VERIFIED, FAILED, SUBMITTED

logger = logging.getLogger(__name__)

DEFAULT_SOURCIFY_SERVER_URL = "https://sourcify.dev/server"


@dataclass
class SubmissionResult:
    status: str                      # submitted | already_verified | failed
    http_status: int
    verification_id: Optional[str] = None
    error: Any = None

    @property
    def accepted(self) -> bool:
        return self.status in (SUBMITTED, ALREADY_VERIFIED)


@dataclass
class JobResponse:
    http_status: int
    body: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300


def _json_body(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {"error": resp.text or f"HTTP {resp.status_code}"}
    return data if isinstance(data, dict) else {"error": data}


class SourcifyClient:
    """Thin client for the Sourcify server v2 verification endpoints."""

    def __init__(self, base_url: str = DEFAULT_SOURCIFY_SERVER_URL, timeout: float = 20, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "vera-sync")

    def submit_verification(self, chain_id: int, address: str, body: Dict[str, Any]) -> SubmissionResult:
        """
        POST /v2/verify/{chainId}/{address}.

        202 -> submitted with the job id (failed if it carries none),
        409 -> already verified, anything else -> failed with the error
        body. Transport errors raise SourcifyApiError.
        """
        url = f"{self.base_url}/v2/verify/{chain_id}/{address}"
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourcifyApiError(f"POST {url} failed: {e}") from e

        data = _json_body(resp)
        if resp.status_code == 202 and not data.get("verificationId"):
            # without a job id the submission can never be polled
            return SubmissionResult(status=FAILED, http_status=resp.status_code, error=data)
        if resp.status_code == 202:
            return SubmissionResult(
                status=SUBMITTED,
                http_status=resp.status_code,
                verification_id=data.get("verificationId"),
            )
        if resp.status_code == 409:
            return SubmissionResult(status=ALREADY_VERIFIED, http_status=resp.status_code, error=data)
        return SubmissionResult(
            status=FAILED,
            http_status=resp.status_code,
            error=data.get("error") or data or f"HTTP {resp.status_code}",
        )

    def get_verification_job(self, verification_id: str) -> JobResponse:
        """GET /v2/verify/{verificationId}. Transport errors raise SourcifyApiError."""
        url = f"{self.base_url}/v2/verify/{verification_id}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourcifyApiError(f"GET {url} failed: {e}") from e
        return JobResponse(http_status=resp.status_code, body=_json_body(resp))

    def close(self) -> None:
        self.session.close()
