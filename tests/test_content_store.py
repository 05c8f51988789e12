from sqlalchemy import func, select

from conftest import address_of, sha
from vera_sync.models import Code, Source, VerifiedContract
from vera_sync.services import content_store as store


def _count(engine, model):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(model.__table__)).scalar_one()


def test_upsert_returns_same_id_for_same_natural_key(vera_engine):
    key = {"creation_code_hash": sha("a"), "runtime_code_hash": sha("b")}
    with vera_engine.begin() as conn:
        first = store.upsert_and_fetch_id(conn, "contract", key)
        second = store.upsert_and_fetch_id(conn, "contract", key)
        other = store.upsert_and_fetch_id(conn, "contract", {**key, "runtime_code_hash": sha("c")})
    assert first == second
    assert other != first


def test_upsert_rejects_incomplete_natural_key(vera_engine):
    import pytest

    with vera_engine.begin() as conn, pytest.raises(ValueError):
        store.upsert_and_fetch_id(conn, "contract", {"runtime_code_hash": sha("b")})


def test_bulk_insert_ignore_skips_existing_rows(vera_engine):
    rows = [
        {"source_hash": sha("x"), "source_hash_keccak": sha("kx"), "content": "x"},
        {"source_hash": sha("y"), "source_hash_keccak": sha("ky"), "content": "y"},
    ]
    with vera_engine.begin() as conn:
        store.bulk_insert_ignore(conn, "source", rows[:1])
        store.bulk_insert_ignore(conn, "source", rows)
        assert store.bulk_insert_ignore(conn, "source", []) == 0
    assert _count(vera_engine, Source) == 2


def test_seeded_contract_closure(vera_engine, seed):
    vc_id = seed(vera_engine, 7)
    with vera_engine.connect() as conn:
        closure = store.fetch_compilation_closure(conn, vc_id)
        sources = store.fetch_compilation_sources(conn, closure.compilation["id"])
        code = store.fetch_code_by_hash(conn, sha(b"runtime-7"))

    assert closure.verified_contract_id == vc_id
    assert closure.deployment["address"] == address_of(7)
    assert isinstance(closure.deployment["address"], bytes)
    assert closure.compilation["name"] == "C7"
    assert closure.is_verifiable
    assert [s["path"] for s in sources] == ["contracts/C7.sol"]
    assert code["code"] == b"runtime-7"


def test_closure_missing_returns_none(vera_engine):
    with vera_engine.connect() as conn:
        assert store.fetch_compilation_closure(conn, 12345) is None


def test_insert_verified_contract_twice_returns_none(vera_engine, seed):
    vc_id = seed(vera_engine, 1)
    with vera_engine.begin() as conn:
        row = conn.execute(select(VerifiedContract.__table__).where(VerifiedContract.id == vc_id)).mappings().one()
        values = {k: v for k, v in row.items() if k != "id"}
        assert store.insert_verified_contract(conn, values) is None
    assert _count(vera_engine, VerifiedContract) == 1


def test_shared_source_stored_once(vera_engine, seed):
    seed(vera_engine, 1)
    seed(vera_engine, 2)
    assert _count(vera_engine, Source) == 1
    assert _count(vera_engine, Code) == 4


def test_replicable_batch_filters(sourcify_engine, seed):
    seed(sourcify_engine, 1)
    seed(sourcify_engine, 2, match=False)
    seed(sourcify_engine, 3, transaction_hash=False)
    seed(sourcify_engine, 4)

    with sourcify_engine.connect() as conn:
        assert [r["id"] for r in store.fetch_replicable_batch(conn, 1, 10)] == [1, 4]
        assert [r["id"] for r in store.fetch_replicable_batch(conn, 2, 10)] == [4]
        assert [r["id"] for r in store.fetch_replicable_batch(conn, 1, 1)] == [1]
