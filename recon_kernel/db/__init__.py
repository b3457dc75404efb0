"""Database layer - engine, declarative base and column types."""

from recon_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from recon_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
