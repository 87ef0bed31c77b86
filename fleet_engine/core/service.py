"""Job dispatcher - durable per-node work queue."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from fleet_engine.core.errors import (
    FleetValidationError,
    JobInvalidStateError,
    JobNodeMismatch,
    JobNotFound,
)
from fleet_engine.core.events import AuditSink, NullAuditSink
from fleet_engine.core.events_model import AuditEvent
from fleet_engine.core.models import Job, JobStatus, new_id, utcnow
from fleet_engine.core.repository import JobRepository
from fleet_engine.core.state_machine import JobStateMachine
from fleet_engine.core.validation import validate_limit, validate_new_job

logger = logging.getLogger(__name__)


RESULT_STATUS_ALIASES = {
    "success": JobStatus.SUCCEEDED,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
}


def parse_result_status(status: str) -> JobStatus:
    try:
        return RESULT_STATUS_ALIASES[str(status).strip().lower()]
    except KeyError:
        raise FleetValidationError(f"Invalid job result status: {status!r}") from None


class JobDispatcher:
    """
    Enqueues jobs for nodes and applies the results they report.

    Delivery is pull-based: nothing here contacts a node. A job that is never
    polled stays queued; there is no timeout and no automatic retry.
    """

    def __init__(
        self,
        repository: JobRepository,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._audit = audit_sink or NullAuditSink()
        self._clock = clock

    # -------------------------
    # ENQUEUE
    # -------------------------

    def enqueue(self, job_type: str, payload: Dict[str, Any]) -> Job:
        """Persist a queued job. The job is the durable record; auditing follows it."""
        validate_new_job(job_type, payload)

        now = self._clock()
        job = Job(
            job_id=new_id(),
            job_type=job_type,
            payload=dict(payload),
            status=JobStatus.QUEUED,
            created_at=now,
            updated_at=now,
        )
        job = self._repo.create(job)
        logger.info(f"[dispatcher] queued {job.job_type} {job.job_id} for node {job.node_id}")

        self._audit.emit([AuditEvent.job_queued(job, now)])
        return job

    def enqueue_unique(
        self,
        job_type: str,
        payload: Dict[str, Any],
        guard_types: Optional[Sequence[str]] = None,
    ) -> Tuple[Job, bool]:
        """
        Enqueue unless the node's most recent job of guard_types is still in flight.

        Returns (job, created). When skipped, job is the in-flight one.
        """
        validate_new_job(job_type, payload)
        types = list(guard_types) if guard_types else [job_type]

        latest = self._repo.find_latest_for_node_and_types(payload["agent_id"], types, 1)
        if latest and latest[0].is_active:
            existing = latest[0]
            logger.info(
                f"[dispatcher] skip {job_type} for node {existing.node_id}: "
                f"{existing.job_type} {existing.job_id} is {existing.status.value}"
            )
            return existing, False

        return self.enqueue(job_type, payload), True

    # -------------------------
    # NODE POLL
    # -------------------------

    def poll(self, node_id: str, limit: Optional[int] = None) -> List[Job]:
        """Queued jobs addressed to the node, in creation order."""
        if limit is not None:
            validate_limit(limit)
        return self._repo.list_queued_for_node(node_id, limit)

    def mark_running(self, job_id: str, node_id: str) -> Job:
        """QUEUED -> RUNNING, locked to the node that received it."""
        job = self.get(job_id)
        self._assert_addressed_to(job, node_id)

        now = self._clock()
        JobStateMachine.start(job, node_id, now=now)
        self._repo.update(job, expected_status=JobStatus.QUEUED)

        self._audit.emit([AuditEvent.job_assigned(job, now)])
        return job

    def claim_for_node(self, node_id: str, limit: int) -> List[Job]:
        """Poll and mark running in one step; jobs lost to a racing poll are skipped."""
        claimed = []
        for job in self.poll(node_id, limit):
            try:
                claimed.append(self.mark_running(job.job_id, node_id))
            except JobInvalidStateError:
                logger.info(f"[dispatcher] job {job.job_id} left queued state before claim")
        return claimed

    # -------------------------
    # RESULT
    # -------------------------

    def record_result(
        self,
        job_id: str,
        node_id: str,
        status: str,
        output: Optional[Dict[str, Any]] = None,
        completed_at: Optional[datetime] = None,
    ) -> Job:
        """Apply a node-reported terminal result. Terminal jobs are never reopened."""
        result_status = parse_result_status(status)
        if output is not None and not isinstance(output, dict):
            raise FleetValidationError("output must be a dict")

        job = self.get(job_id)
        self._assert_addressed_to(job, node_id)

        if job.status.is_terminal:
            raise JobInvalidStateError(f"Job {job_id} already finished ({job.status.value})")
        if job.status != JobStatus.RUNNING:
            raise JobInvalidStateError(f"Job {job_id} is not running ({job.status.value})")
        if job.locked_by and job.locked_by != node_id:
            raise JobNodeMismatch(f"Job {job_id} is locked by {job.locked_by}, not {node_id}")

        now = self._clock()
        JobStateMachine.finish(job, result_status, output or {}, completed_at=completed_at, now=now)
        self._repo.update(job, expected_status=JobStatus.RUNNING)
        logger.info(f"[dispatcher] job {job.job_id} {job.status.value} on node {node_id}")

        self._audit.emit([AuditEvent.job_completed(job, now)])
        return job

    # -------------------------
    # QUERIES
    # -------------------------

    def get(self, job_id: str) -> Job:
        job = self._repo.get(job_id)
        if not job:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    def find_latest_by_type(self, job_type: str, limit: int) -> List[Job]:
        return self._repo.find_latest_by_type(job_type, validate_limit(limit))

    def find_latest_for_node_and_types(
        self,
        node_id: str,
        types: Sequence[str],
        limit: int,
    ) -> List[Job]:
        return self._repo.find_latest_for_node_and_types(node_id, list(types), validate_limit(limit))

    def latest_job_index(self, node_ids: Iterable[str], types: Sequence[str]) -> Dict[str, Job]:
        """
        Most recently created job per node among the given types.

        A queued job created after a succeeded one is the current state, so
        ordering is by creation, never by last update.
        """
        if not types:
            return {}

        index: Dict[str, Job] = {}
        for node_id in dict.fromkeys(node_ids):
            latest = self._repo.find_latest_for_node_and_types(node_id, list(types), 1)
            if latest:
                index[node_id] = latest[0]
        return index

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    @staticmethod
    def _assert_addressed_to(job: Job, node_id: str) -> None:
        if job.node_id != node_id:
            raise JobNodeMismatch(f"Job {job.job_id} is addressed to {job.node_id}, not {node_id}")
