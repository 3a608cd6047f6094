# 📄 File: billing_engine/shared/infrastructure/database/session.py
#
# 🧭 Purpose (Layman Explanation):
# Manages database sessions (like conversations with the database) ensuring each request
# or background job gets its own clean session and that half-finished work is rolled back.
#
# 🧪 Purpose (Technical Summary):
# Async SQLAlchemy session management with dependency injection for FastAPI,
# commit/rollback per unit of work, and context managers for jobs and middleware.
#
# 🔗 Dependencies:
# - sqlalchemy.ext.asyncio (AsyncSession, async_sessionmaker)
# - billing_engine/shared/infrastructure/database/connection.py (database engine)
#
# 🔄 Connected Modules / Calls From:
# - API route dependencies (get_db_session)
# - api/middleware/idempotency.py (separate session for idempotency records)
# - background_jobs/scheduler.py (database_session)

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import exc
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from billing_engine.shared.core.exceptions import BillingEngineException, DatabaseError, TransactionError
from billing_engine.shared.infrastructure.database.connection import get_database_engine

logger = logging.getLogger(__name__)


class DatabaseSessionManager:
    """
    Manages database sessions with transaction handling and automatic cleanup.
    """

    def __init__(self):
        self._session_factory: Optional[async_sessionmaker] = None

    def initialize(self, engine: Optional[AsyncEngine] = None) -> None:
        """Initialize the session factory with a database engine."""
        engine = engine or get_database_engine()
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Keep objects accessible after commit
            autoflush=True,
        )
        logger.info("Database session factory initialized successfully")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        Yields:
            AsyncSession: Database session

        Raises:
            DatabaseError: If the session cannot be created or a query fails
            TransactionError: If an unexpected error aborts the transaction
        """
        if self._session_factory is None:
            raise DatabaseError("Session manager not initialized")

        session: AsyncSession = self._session_factory()

        try:
            yield session
            await session.commit()

        except BillingEngineException:
            await session.rollback()
            raise

        except exc.SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error occurred, transaction rolled back: {e}")
            raise DatabaseError(f"Database operation failed: {e}")

        except Exception as e:
            await session.rollback()
            logger.error(f"Unexpected error occurred, transaction rolled back: {e}")
            raise TransactionError(f"Transaction failed: {e}")

        finally:
            await session.close()

    def is_initialized(self) -> bool:
        return self._session_factory is not None


# Global session manager instance
session_manager = DatabaseSessionManager()


def initialize_sessions(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize the global database session manager."""
    session_manager.initialize(engine)


# FastAPI dependency for getting database sessions
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides database sessions.

    Usage:
        @router.post("/subscriptions")
        async def create_subscription(
            data: SubscriptionCreate,
            db: AsyncSession = Depends(get_db_session)
        ):
            ...
    """
    async with session_manager.get_session() as session:
        yield session


@asynccontextmanager
async def database_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside of FastAPI route handlers.

    Example:
        async with database_session() as db:
            subscription = await SubscriptionRepositoryImpl(db).get_by_id(subscription_id)
    """
    async with session_manager.get_session() as session:
        yield session
