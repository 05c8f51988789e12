# vera_sync/models/types.py
from sqlalchemy.types import TypeDecorator
from sqlalchemy import JSON, BigInteger, Integer, LargeBinary


class JSONBCompat(TypeDecorator):
    """
    JSONB on PostgreSQL, generic JSON on SQLite and others.
    Lets the same models run in tests (sqlite://) and in production
    (postgresql://).
    """
    impl = JSON
    cache_ok = True

    def __init__(self, **jsonb_kwargs):
        super().__init__()
        self._jsonb_kwargs = jsonb_kwargs

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB(**self._jsonb_kwargs))
        return dialect.type_descriptor(JSON())


class HashBytes(TypeDecorator):
    """
    BYTEA for hashes, addresses and bytecode. Always hands back `bytes`,
    never the `memoryview` psycopg2 returns for BYTEA columns.
    """
    impl = LargeBinary
    cache_ok = True

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return bytes(value)


# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntId = BigInteger().with_variant(Integer(), "sqlite")
