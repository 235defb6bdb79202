"""Test configuration and fixtures."""

from typing import Generator

import pytest
import pytest_asyncio
from sqlalchemy.orm import Session, sessionmaker

from royalty_indexer.config import Settings
from royalty_indexer.db.base import create_db_engine, init_database
from royalty_indexer.graph.source import InMemoryArtifactSource
from royalty_indexer.runtime import Runtime, build_runtime


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        sweep_enabled=False,
        artifact_source_url=None,
    )


@pytest.fixture
def engine():
    """Fresh in-memory database for each test."""
    engine = create_db_engine("sqlite://")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def source() -> InMemoryArtifactSource:
    return InMemoryArtifactSource()


@pytest_asyncio.fixture
async def runtime(session_factory, source, settings) -> Runtime:
    """Processor, ledger and sweep over the in-memory database."""
    rt = build_runtime(session_factory=session_factory, source=source, settings=settings)
    yield rt
    await rt.close()
