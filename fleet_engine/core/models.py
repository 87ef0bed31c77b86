"""Core job models (dispatch queue)."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """32 hex characters, the identifier format used for nodes, jobs and blocks."""
    return secrets.token_hex(16)


class JobStatus(Enum):
    """Job state machine."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)


@dataclass
class JobResult:
    """Outcome reported by the node."""

    status: JobStatus
    output: Dict[str, Any] = field(default_factory=dict)
    completed_at: Optional[datetime] = None


@dataclass
class Job:
    """A typed unit of work addressed to exactly one node via payload["agent_id"]."""

    # Identity
    job_id: str
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    # State
    status: JobStatus = JobStatus.QUEUED
    locked_by: Optional[str] = None
    result: Optional[JobResult] = None

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Insertion order, assigned by the repository
    seq: Optional[int] = None

    @property
    def node_id(self) -> str:
        value = self.payload.get("agent_id")
        return value if isinstance(value, str) else ""

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES
