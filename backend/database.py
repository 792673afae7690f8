"""
SQLite database setup for the channel catalog.
Stores sources and their channel records.
"""
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import CONFIG_DIR

logger = logging.getLogger(__name__)

# Database file location
CATALOG_DB_FILE = CONFIG_DIR / "catalog.db"

# SQLAlchemy Base for model declarations
Base = declarative_base()

# Engine and session factory (initialized on startup)
_engine = None
_SessionLocal = None


def get_database_url() -> str:
    """Get the SQLite database URL."""
    return f"sqlite:///{CATALOG_DB_FILE}"


def enable_sqlite_foreign_keys(engine) -> None:
    """Turn on FK enforcement so source deletes cascade at the SQL level too."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db() -> None:
    """Initialize the database, creating tables if they don't exist."""
    global _engine, _SessionLocal

    try:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        logger.debug("Config directory ensured: %s", CONFIG_DIR)

        database_url = get_database_url()
        logger.info("Initializing catalog database at %s", CATALOG_DB_FILE)

        _engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,  # Set to True for SQL debugging
        )
        enable_sqlite_foreign_keys(_engine)

        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

        # Import models to register them with Base
        from models import Source, Channel  # noqa: F401

        Base.metadata.create_all(bind=_engine)
        logger.info("Catalog database initialized successfully")
    except Exception as e:
        logger.exception("Failed to initialize database: %s", e)
        raise


def get_session():
    """Get a database session. Use as context manager or close manually."""
    if _SessionLocal is None:
        logger.error("Attempted to get database session before initialization")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()

