"""
Database engine and request-scoped sessions.

WHY: Every billing request runs in one AsyncSession. State transitions take
row locks (``SELECT ... FOR UPDATE``) that are held until that session
commits, so the session lifetime is also the lock lifetime.

HOW: Routes that call the payment gateway commit the local change
themselves before the network call. The commit at the end of ``get_db``
then only covers what came after (for example a customer id stored by the
gateway adapter).
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from saas_billing.core.config import settings


engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    # Requests waiting on a pool slot fail instead of queueing forever
    pool_timeout=settings.DATABASE_POOL_TIMEOUT_SECONDS,
)

# expire_on_commit=False: routes serialize subscriptions after committing
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding the request's session.

    Commits when the handler returns. Any exception rolls back the open
    transaction and releases its row locks; work a handler already
    committed is kept.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
