"""Database layer - engine, base classes and column types."""

from incentive_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from incentive_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from incentive_kernel.db.types import ZERO, round_money, to_decimal

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "ZERO",
    "to_decimal",
    "round_money",
]
