"""Database layer - engine, base classes and column types."""

from procurement_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from procurement_kernel.db.types import LongText, Name, ShortCode, StatusCode

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "ShortCode",
    "StatusCode",
    "Name",
    "LongText",
]
