# fleet_engine/container.py

"""Dependency injection container - wires all services together."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from fleet_engine.config import settings
from fleet_engine.core.events import AuditSink, LoggingAuditSink, MultiAuditSink
from fleet_engine.core.models import utcnow
from fleet_engine.core.repository import JobRepository, NodeRepository, PortRepository
from fleet_engine.core.service import JobDispatcher
from fleet_engine.infrastructure.postgres.job_repository import PostgresJobRepository
from fleet_engine.infrastructure.postgres.node_repository import PostgresNodeRepository
from fleet_engine.infrastructure.postgres.port_repository import PostgresPortRepository
from fleet_engine.node_manager.service import NodeManagerService
from fleet_engine.ports.lease_manager import PortLeaseManager
from fleet_engine.provisioning.service import ProvisioningService


@dataclass
class Container:
    job_repository: JobRepository
    node_repository: NodeRepository
    port_repository: PortRepository
    audit_sink: AuditSink
    dispatcher: JobDispatcher
    lease_manager: PortLeaseManager
    node_manager: NodeManagerService
    provisioning: ProvisioningService


def build_container(
    session_factory: Optional[sessionmaker] = None,
    job_repository: Optional[JobRepository] = None,
    node_repository: Optional[NodeRepository] = None,
    port_repository: Optional[PortRepository] = None,
    audit_sink: Optional[AuditSink] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Container:
    """Wire services over the given repositories (PostgreSQL ones by default)."""

    # ============================================
    # REPOSITORIES
    # ============================================
    job_repository = job_repository or PostgresJobRepository(session_factory)
    node_repository = node_repository or PostgresNodeRepository(session_factory)
    port_repository = port_repository or PostgresPortRepository(session_factory)

    # ============================================
    # EVENTS
    # ============================================
    audit_sink = audit_sink or MultiAuditSink([LoggingAuditSink()])

    # ============================================
    # SERVICES
    # ============================================
    dispatcher = JobDispatcher(job_repository, audit_sink, clock)

    lease_manager = PortLeaseManager(
        port_repository,
        node_repository,
        audit_sink,
        clock,
        max_attempts=settings.port_allocation_attempts,
    )

    node_manager = NodeManagerService(
        node_repo=node_repository,
        dispatcher=dispatcher,
        audit_sink=audit_sink,
        clock=clock,
        release_repository=settings.agent_release_repository,
    )

    provisioning = ProvisioningService(
        node_repo=node_repository,
        lease_manager=lease_manager,
        dispatcher=dispatcher,
        audit_sink=audit_sink,
        clock=clock,
    )

    return Container(
        job_repository=job_repository,
        node_repository=node_repository,
        port_repository=port_repository,
        audit_sink=audit_sink,
        dispatcher=dispatcher,
        lease_manager=lease_manager,
        node_manager=node_manager,
        provisioning=provisioning,
    )


_container: Optional[Container] = None


def get_container() -> Container:
    """Process-wide container, built on first use."""
    global _container
    if _container is None:
        _container = build_container()
    return _container
