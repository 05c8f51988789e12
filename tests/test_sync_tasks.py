from vera_sync.models.sync_status import SUBMITTED
from vera_sync.services import runtime as runtime_module
from vera_sync.services.checkpoint import FileCheckpointStore
from vera_sync.tasks import sync_tasks


def test_replicate_task_returns_summary(sourcify_engine, checkpoint_dir, seed):
    seed(sourcify_engine, 1)
    seed(sourcify_engine, 2)

    result = sync_tasks.replicate.run(batch_size=5)

    assert result["outcomes"] == {"inserted": 2}
    assert FileCheckpointStore(checkpoint_dir, "CURRENT_VERIFIED_CONTRACT").load() == 3


def test_push_task_uses_configured_client(vera_engine, seed, fake_sourcify, monkeypatch):
    seed(vera_engine, 1, created_by="routescan")
    original = runtime_module.SyncRuntime.from_app.__func__

    def with_fake_client(cls, app, client=None):
        return original(cls, app, client=fake_sourcify)

    monkeypatch.setattr(runtime_module.SyncRuntime, "from_app", classmethod(with_fake_client))

    result = sync_tasks.push_forward.run()

    assert result["batch"]["outcomes"] == {SUBMITTED: 1}
    assert fake_sourcify.closed
