# vera_sync/tasks/sync_tasks.py
import logging

from celery import shared_task
from flask import current_app

from vera_sync.services.push_forward import make_pusher
from vera_sync.services.replicator import make_replicator
from vera_sync.services.runtime import SyncRuntime

logger = logging.getLogger(__name__)


def _run(factory, batch_size=None):
    runtime = SyncRuntime.from_app(current_app._get_current_object())
    try:
        return factory(runtime, batch_size=batch_size).run().as_dict()
    finally:
        # engines belong to the worker's Flask app and stay open between runs
        runtime.client.close()


@shared_task(name="sync.replicate", ignore_result=False)
def replicate(batch_size=None):
    """Sourcify store -> VerA store, until no rows remain above the checkpoint."""
    return _run(make_replicator, batch_size)


@shared_task(name="sync.push_forward", ignore_result=False)
def push_forward(batch_size=None):
    """Reconcile submitted jobs, retry failures and submit new VerA contracts."""
    return _run(make_pusher, batch_size)
