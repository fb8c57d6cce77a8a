"""Async engine creation for the execution record store."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from hourglass.db.exceptions import ConfigurationError

DATABASE_URL_ENV = "HOURGLASS_DATABASE_URL"

_ASYNC_PREFIX = "postgresql+asyncpg://"


def normalize_url(url: str) -> str:
    """Return ``url`` with the asyncpg driver; only PostgreSQL is supported."""
    u = url.strip()
    if not u:
        raise ConfigurationError(f"Database URL not set. Set {DATABASE_URL_ENV} or database.url.")
    for prefix in ("postgresql://", "postgres://"):
        if u.startswith(prefix):
            return _ASYNC_PREFIX + u[len(prefix) :]
    if u.startswith(_ASYNC_PREFIX):
        return u
    raise ConfigurationError(
        "Database URL must be PostgreSQL (postgresql:// or postgresql+asyncpg://)."
    )


def create_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_timeout: float = 30.0,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine; no connection is opened until first use.

    Raises:
        ConfigurationError: URL missing or not PostgreSQL.
    """
    return create_async_engine(
        normalize_url(database_url),
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )
