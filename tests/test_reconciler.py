import pytest

from vera_sync.errors import SourcifyApiError
from vera_sync.models.sync_status import ALREADY_VERIFIED, FAILED, SUBMITTED, VERIFIED
from vera_sync.services.reconciler import ReconciliationPoller, classify_job
from vera_sync.services.sourcify_client import JobResponse
from vera_sync.services.submission import VerificationSubmitter


@pytest.mark.parametrize(
    "job, expected",
    [
        (JobResponse(200, {"isJobCompleted": True, "contract": {"match": "perfect"}}), VERIFIED),
        (JobResponse(200, {"isJobCompleted": True, "contract": {"match": "partial"}}), VERIFIED),
        (JobResponse(200, {"isJobCompleted": False}), SUBMITTED),
        (JobResponse(200, {"isJobCompleted": True, "error": {"customCode": "no_match"}}), FAILED),
        (JobResponse(200, {"isJobCompleted": True, "error": {"customCode": "already_verified"}}), ALREADY_VERIFIED),
        (JobResponse(409, {"customCode": "already_verified"}), ALREADY_VERIFIED),
        (JobResponse(404, {"customCode": "job_not_found"}), FAILED),
        (JobResponse(503, {"error": "maintenance"}), SUBMITTED),
    ],
)
def test_classify_job(job, expected):
    status, _ = classify_job(job)
    assert status == expected


def test_failed_job_keeps_error_verbatim():
    error = {"customCode": "no_match", "message": "runtime bytecode differs"}
    status, kept = classify_job(JobResponse(200, {"isJobCompleted": True, "error": error}))
    assert status == FAILED
    assert kept == error


def test_transport_error_leaves_row_submitted(vera_engine, seed, fake_sourcify):
    vc_id = seed(vera_engine, 1, created_by="routescan")
    VerificationSubmitter(vera_engine, fake_sourcify).submit(vc_id)
    fake_sourcify.jobs["xyz"] = SourcifyApiError("connection reset")

    assert ReconciliationPoller(vera_engine, fake_sourcify).run() == {SUBMITTED: 1}


def test_poller_honours_stop_request(vera_engine, seed, fake_sourcify):
    vc_id = seed(vera_engine, 1, created_by="routescan")
    VerificationSubmitter(vera_engine, fake_sourcify).submit(vc_id)

    poller = ReconciliationPoller(vera_engine, fake_sourcify, should_stop=lambda: True)
    assert poller.run() == {}
    assert fake_sourcify.polls == []
