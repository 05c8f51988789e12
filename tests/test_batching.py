import pytest

from vera_sync.services.batching import FAILED, INSERTED, BatchRunner
from vera_sync.services.checkpoint import FileCheckpointStore


def _source(ids):
    def fetch(cursor, limit):
        return [{"id": i} for i in ids if i >= cursor][:limit]
    return fetch


def test_checkpoint_follows_last_id_of_each_batch(tmp_path):
    cp = FileCheckpointStore(tmp_path, "replicate")
    saved = []
    original_save = cp.save

    def recording_save(value):
        saved.append(value)
        original_save(value)

    cp.save = recording_save
    runner = BatchRunner("replicate", cp, _source([1, 2, 5, 9, 10]), lambda row: INSERTED, batch_size=2)

    summary = runner.run()

    assert saved == [3, 10, 11]
    assert summary.batches == 3
    assert summary.count(INSERTED) == 5
    assert summary.as_dict()["checkpoint"] == 11


def test_exceptions_count_as_failed(tmp_path):
    def process(row):
        if row["id"] == 2:
            raise RuntimeError("bad row")
        return INSERTED

    summary = BatchRunner(
        "replicate", FileCheckpointStore(tmp_path, "replicate"), _source([1, 2, 3]), process,
        batch_size=10, parallelism=2,
    ).run()

    assert summary.count(FAILED) == 1
    assert summary.count(INSERTED) == 2
    assert summary.checkpoint == 4


def test_stop_request_ends_after_current_batch(tmp_path):
    processed = []

    def process(row):
        processed.append(row["id"])
        return INSERTED

    runner = BatchRunner(
        "push", FileCheckpointStore(tmp_path, "push"), _source([1, 2, 3, 4]), process,
        batch_size=2, should_stop=lambda: len(processed) >= 2,
    )
    summary = runner.run()

    assert processed == [1, 2]
    assert summary.stopped
    assert FileCheckpointStore(tmp_path, "push").load() == 3


def test_item_delay_between_items(tmp_path):
    sleeps = []
    BatchRunner(
        "push", FileCheckpointStore(tmp_path, "push"), _source([1, 2]), lambda row: INSERTED,
        batch_size=5, item_delay=0.1, sleep=sleeps.append,
    ).run()
    assert sleeps == [0.1, 0.1]


def test_batch_size_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        BatchRunner("push", FileCheckpointStore(tmp_path, "push"), _source([]), lambda row: INSERTED, batch_size=0)
