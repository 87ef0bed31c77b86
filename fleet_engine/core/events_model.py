"""Audit event models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from fleet_engine.core.masking import mask_payload
from fleet_engine.core.models import utcnow


@dataclass
class AuditEvent:
    """Write-only audit record."""

    event_type: str
    subject_id: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def _at(now: Optional[datetime]) -> datetime:
        return now or utcnow()

    # -------------------------
    # JOBS
    # -------------------------

    @staticmethod
    def job_queued(job, now: Optional[datetime] = None):
        return AuditEvent(
            event_type="job.queued",
            subject_id=job.job_id,
            timestamp=AuditEvent._at(now),
            metadata={
                "agent_id": job.node_id,
                "type": job.job_type,
                "payload": mask_payload(job.payload),
            },
        )

    @staticmethod
    def job_assigned(job, now: Optional[datetime] = None):
        return AuditEvent(
            event_type="job.assigned",
            subject_id=job.job_id,
            timestamp=AuditEvent._at(now),
            metadata={"agent_id": job.locked_by, "type": job.job_type},
        )

    @staticmethod
    def job_completed(job, now: Optional[datetime] = None):
        return AuditEvent(
            event_type="job.completed",
            subject_id=job.job_id,
            timestamp=AuditEvent._at(now),
            metadata={
                "agent_id": job.node_id,
                "type": job.job_type,
                "status": job.status.value,
                "output": mask_payload(job.result.output if job.result else {}),
            },
        )

    # -------------------------
    # NODES
    # -------------------------

    @staticmethod
    def node_event(event_type: str, node_id: str, metadata: Dict[str, Any], now: Optional[datetime] = None):
        return AuditEvent(
            event_type=event_type,
            subject_id=node_id,
            timestamp=AuditEvent._at(now),
            metadata=mask_payload(metadata),
        )

    # -------------------------
    # PORT BLOCKS
    # -------------------------

    @staticmethod
    def port_block_event(event_type: str, block, now: Optional[datetime] = None, **extra):
        metadata = {
            "port_block_id": block.block_id,
            "pool_id": block.pool_id,
            "customer_id": block.customer_id,
            "workload_id": block.workload_id,
            "ports": list(block.ports),
        }
        metadata.update(extra)
        return AuditEvent(
            event_type=event_type,
            subject_id=block.block_id,
            timestamp=AuditEvent._at(now),
            metadata=metadata,
        )

    # -------------------------
    # PROVISIONING
    # -------------------------

    @staticmethod
    def instance_event(event_type: str, workload_id: str, metadata: Dict[str, Any], now: Optional[datetime] = None):
        return AuditEvent(
            event_type=event_type,
            subject_id=workload_id,
            timestamp=AuditEvent._at(now),
            metadata=metadata,
        )
