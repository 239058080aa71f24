"""
Column types for ordered lists of typed records.

Values are validated with pydantic when written and when read back, so a
malformed history entry fails loudly at the storage boundary instead of
leaking an untyped dict into the engine.
"""

from pydantic import BaseModel, TypeAdapter
from sqlalchemy.types import JSON, TypeDecorator


class RecordList(TypeDecorator):
    """JSON array of ``record_type`` instances, order preserved."""

    impl = JSON
    cache_ok = True

    def __init__(self, record_type: type[BaseModel], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.record_type = record_type
        self._adapter = TypeAdapter(list[record_type])

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        records = self._adapter.validate_python(list(value))
        return self._adapter.dump_python(records, mode="json")

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        return self._adapter.validate_python(value)


class IdList(TypeDecorator):
    """JSON array of integer ids, order preserved."""

    impl = JSON
    cache_ok = True

    _adapter = TypeAdapter(list[int])

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return self._adapter.validate_python(list(value), strict=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        return self._adapter.validate_python(value, strict=True)
