"""Engine and session factories.

Query functions take an ``AsyncSession``; callers obtain one from the
factory built here and open a fresh session per unit of work:

    >>> engine = get_engine(config.database)
    >>> sessions = get_session_factory(engine)
    >>> async with sessions() as session:
    ...     repository = await get_repository_by_name(session, "api")
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from deploybot.config import DatabaseConfig


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create the async engine described by ``config``.

    SQLite URLs get the driver's default pool, which rejects the sizing
    arguments used for server databases.
    """
    options: dict[str, Any] = {"echo": config.echo}
    if not config.url.startswith("sqlite"):
        options.update(pool_size=config.pool_size, max_overflow=config.max_overflow)
    return create_async_engine(config.url, **options)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for ``engine``.

    Objects stay loaded after commit (``expire_on_commit=False``) so query
    results can be used once their session is closed.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
