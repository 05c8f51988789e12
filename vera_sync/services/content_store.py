# vera_sync/services/content_store.py
"""
Read/write access to a verified-contracts store (Sourcify or VerA).

Both stores share the same table layout, so every function takes the
SQLAlchemy `Connection` to work on. Writes never open their own transaction:
callers wrap one logical unit (one verified contract) in `engine.begin()`
and the insert-then-select pairs below run inside it.

Content-addressed rows (code, sources, contracts, compilations) are only
ever inserted if absent. A conflict on the natural key is not an error, it
means the row is already there.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import Table, select
from sqlalchemy.engine import Connection

from vera_sync.models import (
    Code,
    CompiledContract,
    CompiledContractSource,
    Contract,
    ContractDeployment,
    Source,
    SourcifyMatch,
    VerifiedContract,
)

logger = logging.getLogger(__name__)


# entity kind -> (table, natural key columns)
ENTITIES: Dict[str, Tuple[Table, Tuple[str, ...]]] = {
    "code": (Code.__table__, ("code_hash",)),
    "source": (Source.__table__, ("source_hash",)),
    "contract": (Contract.__table__, ("creation_code_hash", "runtime_code_hash")),
    "deployment": (ContractDeployment.__table__, ("chain_id", "address", "transaction_hash")),
    "compilation": (
        CompiledContract.__table__,
        ("compiler", "language", "creation_code_hash", "runtime_code_hash"),
    ),
    "compiled_source": (CompiledContractSource.__table__, ("compilation_id", "path")),
    "verified_contract": (VerifiedContract.__table__, ("compilation_id", "deployment_id")),
}

_CLOSURE_PARTS = (
    ("verified_contract", VerifiedContract.__table__),
    ("deployment", ContractDeployment.__table__),
    ("contract", Contract.__table__),
    ("compilation", CompiledContract.__table__),
)


@dataclass
class CompilationClosure:
    """The rows needed to copy or re-verify one verified contract."""

    verified_contract: Dict[str, Any]
    deployment: Dict[str, Any]
    contract: Dict[str, Any]
    compilation: Dict[str, Any]

    @property
    def verified_contract_id(self):
        return self.verified_contract["id"]

    @property
    def is_verifiable(self) -> bool:
        return self.compilation.get("creation_code_hash") is not None


def _entity(kind: str) -> Tuple[Table, Tuple[str, ...]]:
    try:
        return ENTITIES[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind}") from None


def insert_ignore(conn: Connection, table: Table, index_elements: Sequence[str]):
    """INSERT ... ON CONFLICT (index_elements) DO NOTHING for the connection's dialect."""
    dialect = conn.dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"ON CONFLICT is not supported for dialect {dialect!r}")
    return insert(table).on_conflict_do_nothing(index_elements=list(index_elements))


# ---------------------------
# Writes
# ---------------------------

def upsert_and_fetch_id(
    conn: Connection,
    kind: str,
    natural_key: Mapping[str, Any],
    payload: Optional[Mapping[str, Any]] = None,
):
    """
    Insert the row if its natural key is absent, then return the id of the
    row holding that natural key (new or pre-existing).
    """
    table, key_columns = _entity(kind)
    missing = set(key_columns) - set(natural_key)
    if missing:
        raise ValueError(f"{kind}: natural key is missing {sorted(missing)}")

    row = {**(payload or {}), **natural_key}
    conn.execute(insert_ignore(conn, table, key_columns).values(row))

    stmt = select(table.c.id).where(*[table.c[col] == natural_key[col] for col in key_columns])
    return conn.execute(stmt).scalar_one()


def bulk_insert_ignore(conn: Connection, kind: str, rows: Iterable[Mapping[str, Any]]) -> int:
    """
    Insert all rows in one multi-row statement; rows whose natural key already
    exists are skipped. Returns the number of rows sent.
    """
    rows = [dict(r) for r in rows]
    if not rows:
        return 0
    table, key_columns = _entity(kind)
    conn.execute(insert_ignore(conn, table, key_columns).values(rows))
    return len(rows)


def insert_code(conn: Connection, rows: Iterable[Mapping[str, Any]]) -> int:
    """Insert bytecode rows (code_hash, code_hash_keccak, code) that are not stored yet."""
    return bulk_insert_ignore(
        conn,
        "code",
        [{"code_hash": r["code_hash"], "code_hash_keccak": r["code_hash_keccak"], "code": r["code"]} for r in rows],
    )


def insert_verified_contract(conn: Connection, values: Mapping[str, Any]):
    """
    Insert a verified contract. Returns the new id, or None when a row for
    (compilation_id, deployment_id) already exists.
    """
    table, key_columns = _entity("verified_contract")
    stmt = insert_ignore(conn, table, key_columns).values(dict(values)).returning(table.c.id)
    return conn.execute(stmt).scalar_one_or_none()


# ---------------------------
# Reads
# ---------------------------

def fetch_code_by_hash(conn: Connection, code_hash: bytes) -> Optional[Dict[str, Any]]:
    t = Code.__table__
    row = conn.execute(select(t).where(t.c.code_hash == code_hash)).mappings().first()
    return dict(row) if row else None


def fetch_sources_by_hashes(conn: Connection, hashes: Iterable[bytes]) -> Dict[bytes, str]:
    """Return {source_hash: content} for the hashes that exist, in one query."""
    unique = list(dict.fromkeys(hashes))
    if not unique:
        return {}
    t = Source.__table__
    rows = conn.execute(select(t.c.source_hash, t.c.content).where(t.c.source_hash.in_(unique)))
    return {r.source_hash: r.content for r in rows}


def fetch_source_links(conn: Connection, compilation_id) -> List[Dict[str, Any]]:
    """(path, source_hash) pairs of a compilation, ordered by path."""
    t = CompiledContractSource.__table__
    stmt = (
        select(t.c.path, t.c.source_hash)
        .where(t.c.compilation_id == compilation_id)
        .order_by(t.c.path)
    )
    return [dict(r) for r in conn.execute(stmt).mappings()]


def fetch_compilation_sources(conn: Connection, compilation_id) -> List[Dict[str, Any]]:
    """Full source rows (hash, keccak hash, content) joined with their path."""
    ccs = CompiledContractSource.__table__
    s = Source.__table__
    stmt = (
        select(ccs.c.path, s.c.source_hash, s.c.source_hash_keccak, s.c.content)
        .select_from(ccs.join(s, ccs.c.source_hash == s.c.source_hash))
        .where(ccs.c.compilation_id == compilation_id)
        .order_by(ccs.c.path)
    )
    return [dict(r) for r in conn.execute(stmt).mappings()]


def fetch_compilation_closure(conn: Connection, verified_contract_id) -> Optional[CompilationClosure]:
    """
    Verified contract + deployment + contract + compilation in one round
    trip. Returns None when any of the joined rows is missing.
    """
    vc = VerifiedContract.__table__
    cd = ContractDeployment.__table__
    c = Contract.__table__
    cc = CompiledContract.__table__

    columns = [
        col.label(f"{prefix}__{col.name}")
        for prefix, table in _CLOSURE_PARTS
        for col in table.c
    ]
    stmt = (
        select(*columns)
        .select_from(
            vc.join(cd, vc.c.deployment_id == cd.c.id)
            .join(c, cd.c.contract_id == c.c.id)
            .join(cc, vc.c.compilation_id == cc.c.id)
        )
        .where(vc.c.id == verified_contract_id)
    )
    row = conn.execute(stmt).mappings().first()
    if row is None:
        return None

    parts: Dict[str, Dict[str, Any]] = {prefix: {} for prefix, _ in _CLOSURE_PARTS}
    for key, value in row.items():
        prefix, _, name = key.partition("__")
        parts[prefix][name] = value
    return CompilationClosure(**parts)


def fetch_replicable_batch(conn: Connection, cursor: int, limit: int) -> List[Dict[str, Any]]:
    """
    Sourcify verified contracts with id >= cursor that carry a Sourcify match
    on both creation and runtime code, a deployment transaction hash and
    creation bytecode. Ordered by id ascending.
    """
    vc = VerifiedContract.__table__
    sm = SourcifyMatch.__table__
    cd = ContractDeployment.__table__
    c = Contract.__table__
    code = Code.__table__

    stmt = (
        select(vc)
        .select_from(
            sm.join(vc, vc.c.id == sm.c.verified_contract_id)
            .join(cd, vc.c.deployment_id == cd.c.id)
            .join(c, cd.c.contract_id == c.c.id)
            .join(code, code.c.code_hash == c.c.creation_code_hash)
        )
        .where(
            sm.c.creation_match.is_not(None),
            sm.c.runtime_match.is_not(None),
            cd.c.transaction_hash.is_not(None),
            code.c.code.is_not(None),
            vc.c.id >= cursor,
        )
        .order_by(vc.c.id.asc())
        .limit(limit)
    )
    return [dict(r) for r in conn.execute(stmt).mappings()]
