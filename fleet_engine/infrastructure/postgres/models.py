# fleet_engine/infrastructure/postgres/models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, Enum as SQLEnum, Index, ForeignKey
)

from fleet_engine.core.models import JobStatus, utcnow
from fleet_engine.infrastructure.postgres.database import Base
from fleet_engine.ports.models import PortProtocol


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ============================================
# NODES
# ============================================

class NodeORM(Base):
    """Managed node table."""

    __tablename__ = "nodes"

    node_id = Column(String(32), primary_key=True)
    name = Column(String(255), nullable=True)
    roles = Column(JSON, nullable=False, default=list)

    status = Column(String(50), nullable=False, default="offline", index=True)
    secret_hash = Column(String(64), nullable=False)

    last_heartbeat_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    last_heartbeat_ip = Column(String(64), nullable=True)
    last_heartbeat_version = Column(String(64), nullable=True)
    last_heartbeat_stats = Column(JSON, nullable=True)

    # "metadata" is reserved on declarative classes
    node_metadata = Column("metadata", JSON, nullable=True)

    disk_scan_interval_seconds = Column(Integer, nullable=False, default=180)
    disk_warning_percent = Column(Integer, nullable=False, default=85)
    disk_hard_block_percent = Column(Integer, nullable=False, default=120)
    disk_protect_threshold_percent = Column(Integer, nullable=False, default=5)
    disk_protect_override_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<NodeORM(node_id={self.node_id}, name={self.name}, status={self.status})>"


# ============================================
# JOBS
# ============================================

class JobORM(Base):
    """
    Job queue table.

    Indexes:
    - seq primary key gives insertion order (tie-break for equal created_at)
    - (agent_id, status, created_at) for the per-node poll
    - (job_type, created_at) for latest-job lookups
    """

    __tablename__ = "jobs"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(32), nullable=False, unique=True, index=True)

    job_type = Column(String(100), nullable=False)
    agent_id = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(
        SQLEnum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    locked_by = Column(String(64), nullable=True)

    # Result reported by the node
    result_status = Column(String(20), nullable=True)
    result_output = Column(JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_jobs_agent_status_created', 'agent_id', 'status', 'created_at'),
        Index('ix_jobs_type_created', 'job_type', 'created_at'),
    )

    def __repr__(self) -> str:
        return (
            f"<JobORM(job_id={self.job_id}, type={self.job_type}, "
            f"agent_id={self.agent_id}, status={self.status.value})>"
        )


# ============================================
# PORT POOLS
# ============================================

class PortPoolORM(Base):
    """Port pool table. lease_version is bumped by every allocation."""

    __tablename__ = "port_pools"

    pool_id = Column(String(32), primary_key=True)
    node_id = Column(String(32), ForeignKey('nodes.node_id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    start_port = Column(Integer, nullable=False)
    end_port = Column(Integer, nullable=False)
    protocol = Column(
        SQLEnum(PortProtocol, name="port_protocol"),
        nullable=False,
        default=PortProtocol.BOTH,
    )

    lease_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# ============================================
# PORT BLOCKS
# ============================================

class PortBlockORM(Base):
    """Port block (lease) table."""

    __tablename__ = "port_blocks"

    block_id = Column(String(32), primary_key=True)
    pool_id = Column(String(32), ForeignKey('port_pools.pool_id'), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)

    ports = Column(JSON, nullable=False, default=list)
    start_port = Column(Integer, nullable=False)
    end_port = Column(Integer, nullable=False)

    # At most one block per workload
    workload_id = Column(String(64), nullable=True, unique=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_port_blocks_pool_start', 'pool_id', 'start_port'),
    )
