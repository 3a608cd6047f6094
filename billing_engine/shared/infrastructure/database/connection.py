# 📄 File: billing_engine/shared/infrastructure/database/connection.py
#
# 🧭 Purpose (Layman Explanation):
# Manages the connection to the billing database, making sure we can talk to our data storage
# and share a small pool of connections between requests and background jobs.
#
# 🧪 Purpose (Technical Summary):
# Async SQLAlchemy engine management with connection pooling, health checks and the shared
# declarative Base. PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) for local runs and tests.
#
# 🔗 Dependencies:
# - sqlalchemy (async engine)
# - billing_engine/shared/config/settings.py (database configuration)
# - asyncpg / aiosqlite (async drivers)
#
# 🔄 Connected Modules / Calls From:
# - billing_engine/shared/infrastructure/database/session.py (session management)
# - All module database models (Base)
# - billing_engine/main.py (startup/shutdown), api/v1/health.py (health check)

import logging
from typing import Any, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from billing_engine.shared.config.settings import get_settings

logger = logging.getLogger(__name__)

# Shared declarative base for every table in the engine
Base = declarative_base()


def import_models() -> None:
    """Import every module's ORM models so they register on Base.metadata."""
    from billing_engine.modules.idempotency.infrastructure.database import models as idempotency_models  # noqa: F401
    from billing_engine.modules.payments.infrastructure.database import models as payment_models  # noqa: F401
    from billing_engine.modules.subscriptions.infrastructure.database import models as subscription_models  # noqa: F401


class DatabaseConnectionManager:
    """
    Manages database connections with connection pooling
    and health monitoring.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.settings = get_settings()
        self.database_url = database_url or self.settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._health_check_query = text("SELECT 1")

    def _build_connection_params(self) -> Dict[str, Any]:
        """Build SQLAlchemy connection parameters from settings."""
        if self.database_url.startswith("sqlite"):
            params: Dict[str, Any] = {
                "url": self.database_url,
                "echo": self.settings.DEBUG,
                "connect_args": {"check_same_thread": False},
            }
            # In-memory databases live as long as their single connection
            if ":memory:" in self.database_url or self.database_url.endswith("://"):
                params["poolclass"] = StaticPool
            return params

        return {
            "url": self.database_url,
            "echo": self.settings.DEBUG,
            "pool_pre_ping": True,  # Validate connections before use
            "pool_recycle": self.settings.DB_POOL_RECYCLE,
            "pool_size": self.settings.DB_POOL_SIZE,
            "max_overflow": self.settings.DB_MAX_OVERFLOW,
            "pool_timeout": self.settings.DB_POOL_TIMEOUT,
            "connect_args": {
                "server_settings": {
                    "application_name": "billing_engine",
                    "jit": "off"
                },
                "command_timeout": 60,
            }
        }

    async def initialize(self) -> None:
        """Initialize database engine with connection pooling."""
        if self._engine is not None:
            logger.warning("Database engine already initialized")
            return

        try:
            logger.info("Initializing database connection pool...")
            self._engine = create_async_engine(**self._build_connection_params())
            self._register_connection_events()

            health = await self.health_check()
            if health["status"] != "healthy":
                raise RuntimeError(health.get("error", "Database connectivity test failed"))

            logger.info("Database connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database connection: {e}")
            if self._engine is not None:
                await self._engine.dispose()
                self._engine = None
            raise

    def _register_connection_events(self) -> None:
        """Register SQLAlchemy connection event listeners."""
        if self._engine is None or not self.database_url.startswith("sqlite"):
            return

        # The driver's implicit BEGIN breaks SAVEPOINT; take over transaction start
        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # IMMEDIATE: concurrent sessions queue on the busy timeout instead of failing on lock upgrade
        @event.listens_for(self._engine.sync_engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    async def create_all(self) -> None:
        """Create every table known to Base. Used by tests and local SQLite runs."""
        if self._engine is None:
            raise RuntimeError("Database not initialized")
        import_models()
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def health_check(self) -> Dict[str, Any]:
        """Run a trivial query against the database."""
        if self._engine is None:
            return {"status": "unhealthy", "error": "Database not initialized"}

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(self._health_check_query)
                result.scalar()
            return {"status": "healthy"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

    async def close(self) -> None:
        """Dispose of the engine and all pooled connections."""
        if self._engine is None:
            logger.warning("Database not initialized, nothing to close")
            return

        logger.info("Closing database connection...")
        await self._engine.dispose()
        self._engine = None
        logger.info("Database connection closed successfully")

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None


# Global database manager instance
db_manager = DatabaseConnectionManager()


async def init_database() -> bool:
    """
    Initialize database connection and verify connectivity.

    Local SQLite databases get their tables created on startup; PostgreSQL
    schemas are managed by the Alembic migrations.
    """
    await db_manager.initialize()
    if db_manager.database_url.startswith("sqlite"):
        await db_manager.create_all()
    return True


async def close_database() -> None:
    """Close the global database connection manager."""
    await db_manager.close()


def get_database_engine() -> AsyncEngine:
    """
    Get the database engine instance.

    Raises:
        RuntimeError: If database is not initialized
    """
    if not db_manager.is_initialized:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    return db_manager.engine


async def database_health_check() -> Dict[str, Any]:
    return await db_manager.health_check()
