from collections.abc import Awaitable, Callable

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from articlehub.config import Settings


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine for ``settings.DATABASE_URL`` (no connection is opened yet)."""
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )
    install_sqlite_foreign_keys(engine)
    return engine


def install_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """
    Turn on ``PRAGMA foreign_keys`` for every SQLite connection of *engine*.

    SQLite ignores ON DELETE CASCADE unless the pragma is set per
    connection; article and user deletes rely on those cascades to clear
    ``article_tags`` rows and an author's articles.  No-op for other
    dialects.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_AFTER_COMMIT_KEY = "after_commit"


def after_commit(session: AsyncSession, callback: Callable[[], Awaitable[None]]) -> None:
    """
    Run *callback* once the session's current transaction has committed.

    Cache invalidation goes through here: purging before the commit lets a
    concurrent reader re-cache the old row in between.  Callbacks are
    dropped when the transaction rolls back.
    """
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


async def commit(session: AsyncSession) -> None:
    """Commit *session*, then run the callbacks registered with ``after_commit``."""
    await session.commit()
    for callback in session.info.pop(_AFTER_COMMIT_KEY, []):
        await callback()


async def get_db(request: Request):
    """
    Yield one session per request from the app's own session factory.

    The transaction is committed after the handler returns and rolled back
    on any exception, so every multi-statement write in a request (e.g. an
    article plus its newly created tags) lands atomically.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await commit(session)
        except Exception:
            session.info.pop(_AFTER_COMMIT_KEY, None)
            await session.rollback()
            raise
