import asyncio
import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator
from sqlalchemy import DateTime, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)

from .config import DATABASE_URL, DB_RETRY_ATTEMPTS, DB_RETRY_DELAY
from .exceptions import DatabaseConnectionError, DatabaseTimeoutError

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored and returned in UTC.

    SQLite drops tzinfo on the way back; values are re-tagged as UTC so that
    comparisons against the clock never mix naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Take the write lock when a transaction opens.

    SQLite has no row locks; BEGIN IMMEDIATE serializes writers so that
    concurrent reservations queue up instead of failing with SQLITE_BUSY.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str = DATABASE_URL, **kwargs) -> AsyncEngine:
    """Create an async engine with dialect-appropriate settings"""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        options = {"connect_args": {"timeout": 30}}
        options.update(kwargs)
        sqlite_engine = create_async_engine(database_url, **options)
        _configure_sqlite(sqlite_engine)
        return sqlite_engine

    options = {
        "echo": False,
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,  # reconnect every hour
        "pool_pre_ping": True,
    }
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def build_sessionmaker(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
async_session = build_sessionmaker(engine)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = 2.0,
    exceptions: tuple = None,
) -> Callable[[F], F]:
    """
    Retry decorator for transient database failures

    Args:
        max_attempts: Attempts before giving up (defaults to config)
        delay: Initial delay between attempts (defaults to config)
        backoff_factor: Delay multiplier
        exceptions: Exception types that trigger a retry
    """
    if max_attempts is None:
        max_attempts = DB_RETRY_ATTEMPTS

    if delay is None:
        delay = DB_RETRY_DELAY

    if exceptions is None:
        exceptions = (
            OperationalError,
            DisconnectionError,
            TimeoutError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
        )

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts - 1:
                        break

                    logger.warning(
                        f"Database operation failed (attempt {attempt + 1}/{max_attempts}): {str(e)}",
                        extra={
                            "function": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "exception_type": type(e).__name__,
                        },
                    )

                    await asyncio.sleep(current_delay)
                    current_delay *= backoff_factor

            logger.error(
                f"Database operation failed after {max_attempts} attempts: {str(last_exception)}",
                extra={
                    "function": func.__name__,
                    "max_attempts": max_attempts,
                    "final_exception": str(last_exception),
                },
            )

            if isinstance(
                last_exception,
                (
                    ConnectionFailureError,
                    ConnectionDoesNotExistError,
                    DisconnectionError,
                ),
            ):
                raise DatabaseConnectionError(
                    f"Database connection failed after {max_attempts} attempts"
                )
            elif isinstance(last_exception, TimeoutError):
                raise DatabaseTimeoutError(func.__name__, 30)
            else:
                raise last_exception

        return async_wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a database session
    """
    session = async_session()
    try:
        yield session
    except Exception as e:
        await session.rollback()
        logger.error(f"Session error: {str(e)}")
        raise
    finally:
        await session.close()


class DatabaseManager:
    """Engine-level operations used at startup and shutdown"""

    def __init__(self, bind: AsyncEngine = None):
        self._engine = bind

    @property
    def engine(self) -> AsyncEngine:
        return self._engine or engine

    @db_retry()
    async def create_tables(self):
        """Create all tables"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {str(e)}")
            raise

    @db_retry()
    async def check_connection(self):
        """Run SELECT 1 against the database"""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection check successful")
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {str(e)}")
            raise DatabaseConnectionError("Database connection check failed")

    async def close_connections(self):
        """Dispose of the connection pool"""
        try:
            await self.engine.dispose()
            logger.info("Database connections closed successfully")
        except SQLAlchemyError as e:
            logger.error(f"Error closing database connections: {str(e)}")


db_manager = DatabaseManager()


class TransactionManager:
    """Runs an operation and commits, rolling back on any failure"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def execute(self, operation: Callable, *args, **kwargs):
        try:
            result = await operation(self.session, *args, **kwargs)
            await self.session.commit()
            return result
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Transaction failed: {str(e)}")
            raise


async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    """
    Run `operation(session, ...)` in a transaction that commits on success
    """
    transaction_manager = TransactionManager(session)
    return await transaction_manager.execute(operation, *args, **kwargs)


def db_operation(func: F) -> F:
    """
    Decorator for crud operations: debug tracing and error logging
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        operation_name = func.__name__

        try:
            logger.debug(f"Starting database operation: {operation_name}")
            result = await func(*args, **kwargs)
            logger.debug(f"Database operation completed: {operation_name}")
            return result

        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {operation_name}: {str(e)}",
                extra={"operation": operation_name, "exception_type": type(e).__name__},
            )
            raise

    return wrapper
