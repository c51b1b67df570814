"""Column types mapped to ARRAY/JSONB on PostgreSQL and plain JSON on SQLite (tests)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.types import TypeDecorator


class StringArray(TypeDecorator):
    """Ordered list of strings, e.g. the assessment points of a request."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(Text))
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Optional[List[str]], dialect) -> Optional[List[str]]:
        if value is None:
            return None
        return [str(v) for v in value]

    def process_result_value(self, value: Optional[Any], dialect) -> Optional[List[str]]:
        if value is None:
            return None
        return [str(v) for v in value] if isinstance(value, (list, tuple)) else []


class JSONObjectList(TypeDecorator):
    """List of JSON objects (sources, structured items). NULL reads back as []."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Optional[List[Dict[str, Any]]], dialect) -> List[Dict[str, Any]]:
        if value is None:
            return []
        return [dict(v) for v in value]

    def process_result_value(self, value: Optional[Any], dialect) -> List[Dict[str, Any]]:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, dict)]
