"""Database layer - engine, base classes and column types."""

from replenishment_kernel.db.base import (
    UUID,
    Base,
    EvidenceList,
    TrackedBase,
    UTCDateTime,
    UUIDString,
)
from replenishment_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from replenishment_kernel.db.types import LongText, Money, ShortCode, Sku

__all__ = [
    "build_engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "EvidenceList",
    "UUID",
    "Money",
    "Sku",
    "ShortCode",
    "LongText",
]
