import asyncio
import logging

from sqlalchemy import inspect

from app.core.config import ENVIRONMENT
from app.core.database import DatabaseManager, Base, db_manager as default_manager
from app.core.exceptions import DatabaseError, ConfigurationError

# Register every table on Base.metadata
import app.staff.models  # noqa: F401
import app.students.models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_database(manager: DatabaseManager = None):
    """Create tables if they are missing"""
    manager = manager or default_manager
    try:
        logger.info("Starting database initialization...")

        await manager.check_connection()
        logger.info("Database connection verified")

        await manager.create_tables()
        logger.info("Database tables created/verified")

        logger.info("Database initialization completed successfully")

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def verify_database_setup(manager: DatabaseManager = None):
    """Check that every mapped table exists"""
    manager = manager or default_manager
    try:
        logger.info("Verifying database setup...")

        async with manager.engine.connect() as conn:
            existing = await conn.run_sync(
                lambda sync_conn: set(inspect(sync_conn).get_table_names())
            )

        missing = sorted(set(Base.metadata.tables) - existing)
        if missing:
            raise DatabaseError(
                f"Missing tables: {', '.join(missing)}", {"missing": missing}
            )

        logger.info(f"Database verification passed: {len(existing)} tables found")
        return True

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        raise DatabaseError(f"Database verification failed: {str(e)}")


async def reset_database(manager: DatabaseManager = None):
    """Drop and recreate every table (development/testing only)"""
    manager = manager or default_manager

    if ENVIRONMENT not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    try:
        logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST!")

        async with manager.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        logger.info("All tables dropped")

        await init_database(manager)

        logger.info("Database reset completed")

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Database reset failed: {e}")
        raise DatabaseError(f"Database reset failed: {str(e)}")


if __name__ == "__main__":
    import sys

    async def main():
        if len(sys.argv) > 1:
            command = sys.argv[1]

            if command == "init":
                await init_database()
            elif command == "verify":
                await verify_database_setup()
            elif command == "reset":
                await reset_database()
            else:
                print(f"Unknown command: {command}")
                print("Available commands: init, verify, reset")
                sys.exit(1)
        else:
            await init_database()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
