"""Database session and metadata helpers."""

from .session import (
    Base,
    build_sessionmaker,
    create_engine,
    dispose_engine,
    get_engine,
    get_sessionmaker,
    init_db,
)

__all__ = [
    "Base",
    "build_sessionmaker",
    "create_engine",
    "dispose_engine",
    "get_engine",
    "get_sessionmaker",
    "init_db",
]
