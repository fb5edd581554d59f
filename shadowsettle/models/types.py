# shadowsettle/models/types.py
from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator


class JSONPayload(TypeDecorator):
    """
    Task result payloads: JSONB on PostgreSQL, plain JSON elsewhere so the
    same models run on sqlite:// in tests.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())
