# tests/conftest.py

"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleet_engine.container import build_container
from fleet_engine.core.events import MemoryAuditSink
from fleet_engine.infrastructure.memory.repository import (
    InMemoryJobRepository,
    InMemoryNodeRepository,
    InMemoryPortRepository,
)
from fleet_engine.infrastructure.postgres import models  # noqa: F401
from fleet_engine.infrastructure.postgres.database import drop_db, get_session_factory, init_db

from tests.helpers import FixedClock


# -------------------------
# Database
# -------------------------

@pytest.fixture
def test_engine():
    """Fresh in-memory SQLite database per test, shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return get_session_factory(test_engine)


# -------------------------
# Services
# -------------------------

@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def audit():
    return MemoryAuditSink()


@pytest.fixture
def container(test_session_factory, audit, clock):
    """Services over SQLite-backed repositories."""
    return build_container(session_factory=test_session_factory, audit_sink=audit, clock=clock)


@pytest.fixture
def memory_container(audit, clock):
    """Services over thread-locked in-memory repositories."""
    ports = InMemoryPortRepository()
    return build_container(
        job_repository=InMemoryJobRepository(),
        node_repository=InMemoryNodeRepository(ports),
        port_repository=ports,
        audit_sink=audit,
        clock=clock,
    )


@pytest.fixture
def dispatcher(container):
    return container.dispatcher


@pytest.fixture
def lease_manager(container):
    return container.lease_manager


@pytest.fixture
def node_manager(container):
    return container.node_manager


@pytest.fixture
def provisioning(container):
    return container.provisioning


@pytest.fixture
def registered(node_manager):
    """(node, secret) for a freshly registered node."""
    return node_manager.register_node("node-1", ["game"])


@pytest.fixture
def node(registered):
    return registered[0]


@pytest.fixture
def pool(lease_manager, node):
    """Ten-port pool [10000, 10009] on the node."""
    return lease_manager.create_pool(node.node_id, "game", 10000, 10009)
