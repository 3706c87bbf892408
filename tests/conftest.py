"""
LineupTV Test Configuration

Shared fixtures and configuration for all tests.
"""

import os
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

import lineuptv.config as config_module
from lineuptv.config import InfiniteScheduleConfig
from lineuptv.database.connection import get_db
from lineuptv.database.models.base import Base
from lineuptv.main import create_app
from lineuptv.scheduling.pools import InMemoryPoolProvider
from lineuptv.scheduling.programs import SchedulerProgram
from lineuptv.services.infinite_schedule_service import (
    InfiniteScheduleService,
    get_pool_provider,
    set_pool_provider,
)

from tests.fixtures.factories import ProgramFactory


# ============ Database Fixtures ============


@pytest.fixture(scope="function")
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """Create a new database session for each test."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    session = SessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(scope="function")
def db(db_session: Session) -> Generator[Session, None, None]:
    """Alias for db_session."""
    yield db_session


# ============ Content Fixtures ============


@pytest.fixture
def programs() -> List[SchedulerProgram]:
    """Two shows, a custom show, movies and a filler list."""
    return (
        ProgramFactory.show("alpha", 6, minutes=22)
        + ProgramFactory.show("beta", 4, minutes=44)
        + ProgramFactory.custom_show("marathon", 3, minutes=30)
        + [ProgramFactory.movie(f"Movie {i}", minutes=95, program_id=f"movie-{i}") for i in range(3)]
        + [ProgramFactory.filler("bumpers", seconds=s, program_id=f"bumper-{s}") for s in (15, 30, 45)]
    )


@pytest.fixture
def pool_provider(programs: List[SchedulerProgram]) -> InMemoryPoolProvider:
    return InMemoryPoolProvider(programs)


@pytest.fixture
def infinite_config() -> InfiniteScheduleConfig:
    return InfiniteScheduleConfig()


@pytest.fixture
def service(
    db_session: Session,
    pool_provider: InMemoryPoolProvider,
    infinite_config: InfiniteScheduleConfig,
) -> InfiniteScheduleService:
    return InfiniteScheduleService(db_session, pools=pool_provider, config=infinite_config)


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture(scope="function")
def app(db_session: Session, pool_provider: InMemoryPoolProvider) -> FastAPI:
    """Create a test FastAPI application."""
    app = create_app()

    # Override the database dependency
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pool_provider] = lambda: pool_provider

    return app


@pytest.fixture(scope="function")
def client(app: FastAPI) -> TestClient:
    """Create a synchronous test client without running the app lifespan."""
    return TestClient(app)


# ============ Temporary File Fixtures ============


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="function")
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_file = temp_dir / "config.yaml"
    config_content = """
server:
  host: "127.0.0.1"
  port: 8421
  debug: true

database:
  url: "sqlite:///:memory:"

logging:
  level: "DEBUG"

infinite:
  buffer_days: 3
  slot_selection: "weighted"
"""
    config_file.write_text(config_content)
    return config_file


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables and cached config for each test."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("LINEUPTV_"):
            del os.environ[key]
    config_module._config = None

    yield

    os.environ.clear()
    os.environ.update(original_env)
    config_module._config = None
    set_pool_provider(None)


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
