"""Hourglass database layer: Base, engine, session factory, exceptions."""

from hourglass.db.base import Base
from hourglass.db.engine import DATABASE_URL_ENV, create_engine, normalize_url
from hourglass.db.exceptions import ConfigurationError, DatabaseError
from hourglass.db.session import create_session_factory

__all__ = [
    "Base",
    "DATABASE_URL_ENV",
    "ConfigurationError",
    "DatabaseError",
    "create_engine",
    "create_session_factory",
    "normalize_url",
]
