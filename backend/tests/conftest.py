"""
Pytest configuration and shared fixtures for backend tests.
"""
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test config directory before importing modules
os.environ["CONFIG_DIR"] = "/tmp/catalog_test_config"

# Ensure test config directory exists
Path("/tmp/catalog_test_config").mkdir(parents=True, exist_ok=True)

from database import Base, enable_sqlite_foreign_keys
from models import Source, Channel  # noqa: F401 - registers tables


@pytest.fixture(scope="function")
def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    enable_sqlite_foreign_keys(engine)
    # Create all tables
    Base.metadata.create_all(bind=engine)
    yield engine
    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session(test_engine):
    """Create a test database session."""
    # expire_on_commit=False allows accessing object attributes after commit/close
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)
    session = TestSessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_services():
    """Drop process-wide services and settings so each test builds its own."""
    import cache
    import config
    import fetch_pipeline
    import liveness_prober
    import manifest_resolver

    def _reset():
        config.clear_settings_cache()
        cache.set_cache(None)
        fetch_pipeline.set_fetcher(None)
        manifest_resolver.set_resolver(None)
        liveness_prober.set_prober(None)

    _reset()
    yield
    _reset()


@pytest.fixture(scope="function")
async def async_client(test_session, test_engine):
    """
    Create an async test client for the FastAPI app.
    Patches database module internals so endpoints calling get_session()
    receive sessions bound to the in-memory test engine.
    """
    from httpx import AsyncClient, ASGITransport
    import database
    from main import app

    original_session_local = database._SessionLocal
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False)
    database._SessionLocal = TestSessionLocal

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        database._SessionLocal = original_session_local


@pytest.fixture
def sample_source(test_session):
    """A text source with two channels."""
    from tests.fixtures.factories import create_channel, create_source
    source = create_source(test_session, name="Sample Source")
    create_channel(test_session, source_id=source.id, name="Sun TV HD", group="Tamil")
    create_channel(test_session, source_id=source.id, name="CNN", group="News")
    return source


# Pytest-asyncio configuration
@pytest.fixture(scope="session")
def event_loop_policy():
    """Use the default event loop policy."""
    import asyncio
    return asyncio.DefaultEventLoopPolicy()
