"""Shared fixtures: default shortcode registry and an in-memory SQLite store."""

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from epistemic_core.db.session import init_db, make_engine
from epistemic_markers.registry import ShortcodeRegistry
from epistemic_markers.store.repository import AnnotationStore
from sync_pipeline.stages.orchestrator import DocumentSyncOrchestrator, SyncConfig


@pytest.fixture
def registry():
    return ShortcodeRegistry.default()


@pytest.fixture
def engine():
    engine = make_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def store(session):
    return AnnotationStore(session)


@pytest.fixture
def orchestrator(store, registry):
    return DocumentSyncOrchestrator(store, registry, SyncConfig(author="tester"))
