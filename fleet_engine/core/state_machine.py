# fleet_engine/core/state_machine.py

from datetime import datetime
from typing import Any, Dict, Optional

from fleet_engine.core.errors import JobInvalidStateError
from fleet_engine.core.models import Job, JobResult, JobStatus, utcnow


ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {
        JobStatus.RUNNING,
    },
    JobStatus.RUNNING: {
        JobStatus.SUCCEEDED,
        JobStatus.FAILED,
    },
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}


class JobStateMachine:
    @staticmethod
    def transition(
        job: Job,
        new_status: JobStatus,
        *,
        now: Optional[datetime] = None,
    ) -> Job:
        now = now or utcnow()
        current = job.status

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise JobInvalidStateError(
                f"Invalid job status transition from {current.value} to {new_status.value}"
            )

        job.status = new_status
        job.updated_at = now
        return job

    @staticmethod
    def start(job: Job, node_id: str, *, now: Optional[datetime] = None) -> Job:
        JobStateMachine.transition(job, JobStatus.RUNNING, now=now)
        job.locked_by = node_id
        return job

    @staticmethod
    def finish(
        job: Job,
        status: JobStatus,
        output: Dict[str, Any],
        *,
        completed_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Job:
        if not status.is_terminal:
            raise JobInvalidStateError(f"{status.value} is not a terminal status")

        now = now or utcnow()
        JobStateMachine.transition(job, status, now=now)
        job.result = JobResult(status=status, output=dict(output), completed_at=completed_at or now)
        job.locked_by = None
        return job
