# fleet_engine/infrastructure/postgres/job_repository.py

"""PostgreSQL job repository using SQLAlchemy."""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleet_engine.core.errors import (
    AlreadyExists,
    JobInvalidStateError,
    JobNotFound,
    PersistenceError,
)
from fleet_engine.core.models import Job, JobResult, JobStatus
from fleet_engine.core.repository import JobRepository
from fleet_engine.infrastructure.postgres.database import get_session_factory
from fleet_engine.infrastructure.postgres.models import JobORM, as_utc

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def orm_to_job(orm: JobORM) -> Job:
    """Convert ORM model to domain model."""
    result = None
    if orm.result_status:
        result = JobResult(
            status=JobStatus(orm.result_status),
            output=orm.result_output or {},
            completed_at=as_utc(orm.completed_at),
        )

    return Job(
        job_id=orm.job_id,
        job_type=orm.job_type,
        payload=dict(orm.payload or {}),
        status=orm.status,
        locked_by=orm.locked_by,
        result=result,
        created_at=as_utc(orm.created_at),
        updated_at=as_utc(orm.updated_at),
        seq=orm.seq,
    )


def job_to_orm(job: Job) -> JobORM:
    """Convert domain model to ORM model."""
    return JobORM(
        job_id=job.job_id,
        job_type=job.job_type,
        agent_id=job.node_id,
        payload=job.payload,
        status=job.status,
        locked_by=job.locked_by,
        result_status=job.result.status.value if job.result else None,
        result_output=job.result.output if job.result else None,
        completed_at=job.result.completed_at if job.result else None,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


# ============================================
# Repository Implementation
# ============================================

class PostgresJobRepository(JobRepository):
    """PostgreSQL implementation using SQLAlchemy with dependency injection."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # CREATE
    # -------------------------

    def create(self, job: Job) -> Job:
        session = self._get_session()
        try:
            orm = job_to_orm(job)
            session.add(orm)
            session.commit()
            job.seq = orm.seq
            logger.debug(f"[postgres] create job {job.job_id} seq={job.seq}")
            return job
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExists(f"Job {job.job_id} already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create job: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, job_id: str) -> Optional[Job]:
        session = self._get_session()
        try:
            orm = session.query(JobORM).filter(JobORM.job_id == job_id).first()
            return orm_to_job(orm) if orm else None
        finally:
            session.close()

    # -------------------------
    # UPDATE (status guarded)
    # -------------------------

    def update(self, job: Job, expected_status: JobStatus) -> None:
        """
        Conditional write: only applies while the stored status is still
        expected_status, so two racing writers cannot both win.
        """
        session = self._get_session()
        try:
            updated = session.query(JobORM).filter(
                JobORM.job_id == job.job_id,
                JobORM.status == expected_status,
            ).update(
                {
                    JobORM.status: job.status,
                    JobORM.locked_by: job.locked_by,
                    JobORM.result_status: job.result.status.value if job.result else None,
                    JobORM.result_output: job.result.output if job.result else None,
                    JobORM.completed_at: job.result.completed_at if job.result else None,
                    JobORM.updated_at: job.updated_at,
                },
                synchronize_session=False,
            )

            if updated != 1:
                session.rollback()
                exists = session.query(JobORM.seq).filter(JobORM.job_id == job.job_id).first()
                if not exists:
                    raise JobNotFound(f"Job {job.job_id} not found")
                raise JobInvalidStateError(
                    f"Job {job.job_id} is no longer {expected_status.value}"
                )

            session.commit()
            logger.debug(f"[postgres] update job {job.job_id} -> {job.status.value}")
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update job: {e}") from e
        finally:
            session.close()

    # -------------------------
    # QUERIES
    # -------------------------

    def list_queued_for_node(self, node_id: str, limit: Optional[int] = None) -> List[Job]:
        session = self._get_session()
        try:
            query = session.query(JobORM).filter(
                JobORM.agent_id == node_id,
                JobORM.status == JobStatus.QUEUED,
            ).order_by(
                JobORM.created_at.asc(),
                JobORM.seq.asc(),
            )
            if limit is not None:
                query = query.limit(limit)

            return [orm_to_job(orm) for orm in query.all()]
        finally:
            session.close()

    def find_latest_by_type(self, job_type: str, limit: int) -> List[Job]:
        session = self._get_session()
        try:
            orms = session.query(JobORM).filter(
                JobORM.job_type == job_type,
            ).order_by(
                JobORM.created_at.desc(),
                JobORM.seq.desc(),
            ).limit(limit).all()

            return [orm_to_job(orm) for orm in orms]
        finally:
            session.close()

    def find_latest_for_node_and_types(
        self,
        node_id: str,
        types: Sequence[str],
        limit: int,
    ) -> List[Job]:
        session = self._get_session()
        try:
            query = session.query(JobORM).filter(JobORM.agent_id == node_id)
            if types:
                query = query.filter(JobORM.job_type.in_(list(types)))

            orms = query.order_by(
                JobORM.created_at.desc(),
                JobORM.seq.desc(),
            ).limit(limit).all()

            return [orm_to_job(orm) for orm in orms]
        finally:
            session.close()
