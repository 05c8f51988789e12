# vera_sync/errors.py


class SyncError(Exception):
    """Base class for errors raised by the synchronization engine."""


class MissingClosureError(SyncError):
    """A verified contract references rows that are not in the store.

    The source data itself is the defect, so the item is skipped and never
    retried.
    """

    def __init__(self, verified_contract_id, detail: str = ""):
        self.verified_contract_id = verified_contract_id
        msg = f"incomplete closure for verified contract {verified_contract_id}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class CheckpointError(SyncError):
    """The checkpoint resource is unreadable or a write would move it backwards."""


class SourcifyApiError(SyncError):
    """Transport-level failure talking to the Sourcify server."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class FatalSyncError(SyncError):
    """Unrecoverable error: the process shuts down and exits with status 1."""
