"""
Papir Backend — Database Session Management
============================================

What:  Async SQLAlchemy engine, session factory, FastAPI dependency and the
       translation of driver errors into application exceptions.
How:   Creates an async engine (pooled for PostgreSQL, plain for SQLite),
       provides a session dependency that commits on success and rolls back
       on error.
Who:   Used by route handlers via FastAPI's dependency injection system and
       by the `papir` CLI through `async_session_factory`.
When:  Engine is created at module import; sessions are created per-request
       (or per CLI command).

Connection Pooling Strategy (PostgreSQL):
    pool_size:         Persistent connections for normal load
    max_overflow:      Temporary connections for traffic spikes
    pool_pre_ping:     Validates connections before use (catches stale connections)
    pool_recycle=3600: Recycles connections every hour
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.exceptions import PapirError, StoreUnavailableError, UpstreamError


def _engine_options(database_url: str) -> Dict[str, Any]:
    """Pool options only apply to server databases; SQLite uses its own pool."""
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit, so services
# can return ORM rows that routes serialize after the session has committed.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object, which Alembic reads for migrations and the
    test suite uses to create tables in an in-memory SQLite database.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler (services flush their changes)
        3. On success: commits the transaction
        4. On error: rolls back the transaction
        5. Always: closes the session (returns connection to pool)

    Raises:
        StoreUnavailableError if the commit cannot reach the database;
        any other exception is propagated to the global error handler.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise translate_db_error(e, "commit") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Error Translation ─────────────────────────────────────────────────────
def translate_db_error(exc: SQLAlchemyError, operation: str) -> PapirError:
    """
    Map a SQLAlchemy error onto the application taxonomy.

    Connection-level failures (refused, dropped, pool exhausted) become
    StoreUnavailableError (503); every other driver error becomes
    UpstreamError (500). The original message is kept in `context` only.
    """
    context = {"operation": operation, "error_type": type(exc).__name__, "error": str(exc)}
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return StoreUnavailableError(context=context)
    return UpstreamError(message="Database operation failed", context=context)


def is_unique_violation(exc: SQLAlchemyError) -> bool:
    """
    True when an IntegrityError was caused by a unique constraint.

    PostgreSQL reports SQLSTATE 23505 (exposed as `sqlstate` by asyncpg and
    `pgcode` by psycopg); SQLite only reports it in the message text.
    """
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == "23505":
        return True
    text = str(orig if orig is not None else exc).lower()
    return "unique" in text or "duplicate key" in text


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown and at the end of CLI commands.
    """
    await engine.dispose()
