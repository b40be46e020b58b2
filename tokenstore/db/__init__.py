"""Database package."""

from tokenstore.db.postgres import (
    AsyncSessionLocal,
    close_database,
    create_session_factory,
    engine,
    init_database,
)

__all__ = [
    "AsyncSessionLocal",
    "close_database",
    "create_session_factory",
    "engine",
    "init_database",
]
