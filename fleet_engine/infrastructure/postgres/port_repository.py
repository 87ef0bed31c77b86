# fleet_engine/infrastructure/postgres/port_repository.py

"""PostgreSQL port pool / port block repository."""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleet_engine.core.errors import (
    AlreadyExists,
    ConcurrencyError,
    FleetError,
    PersistenceError,
    PortBlockNotFound,
    PortPoolNotFound,
    WorkloadAlreadyBound,
)
from fleet_engine.core.repository import AllocationPlanner, BlockMutator, PortRepository
from fleet_engine.infrastructure.postgres.database import get_session_factory
from fleet_engine.infrastructure.postgres.models import PortBlockORM, PortPoolORM, as_utc
from fleet_engine.ports.models import PortBlock, PortPool

logger = logging.getLogger(__name__)


# ============================================
# Mapping Functions
# ============================================

def orm_to_pool(orm: PortPoolORM) -> PortPool:
    return PortPool(
        pool_id=orm.pool_id,
        node_id=orm.node_id,
        name=orm.name,
        start_port=orm.start_port,
        end_port=orm.end_port,
        protocol=orm.protocol,
        lease_version=orm.lease_version,
        created_at=as_utc(orm.created_at),
    )


def pool_to_orm(pool: PortPool) -> PortPoolORM:
    return PortPoolORM(
        pool_id=pool.pool_id,
        node_id=pool.node_id,
        name=pool.name,
        start_port=pool.start_port,
        end_port=pool.end_port,
        protocol=pool.protocol,
        lease_version=pool.lease_version,
        created_at=pool.created_at,
    )


def orm_to_block(orm: PortBlockORM) -> PortBlock:
    return PortBlock(
        block_id=orm.block_id,
        pool_id=orm.pool_id,
        customer_id=orm.customer_id,
        ports=[int(port) for port in orm.ports or []],
        workload_id=orm.workload_id,
        assigned_at=as_utc(orm.assigned_at),
        released_at=as_utc(orm.released_at),
        created_at=as_utc(orm.created_at),
        updated_at=as_utc(orm.updated_at),
    )


def block_to_orm(block: PortBlock) -> PortBlockORM:
    orm = PortBlockORM(block_id=block.block_id, created_at=block.created_at)
    _copy_block(block, orm)
    return orm


def _copy_block(block: PortBlock, orm: PortBlockORM) -> None:
    orm.pool_id = block.pool_id
    orm.customer_id = block.customer_id
    orm.ports = list(block.ports)
    orm.start_port = block.start_port
    orm.end_port = block.end_port
    orm.workload_id = block.workload_id
    orm.assigned_at = block.assigned_at
    orm.released_at = block.released_at
    orm.updated_at = block.updated_at


# ============================================
# Repository Implementation
# ============================================

class PostgresPortRepository(PortRepository):
    """
    Allocation locks the pool row (SELECT ... FOR UPDATE) and bumps its
    lease_version with a compare-and-set, so a writer that planned against a
    stale snapshot fails with ConcurrencyError instead of double-leasing.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # POOLS
    # -------------------------

    def create_pool(self, pool: PortPool) -> None:
        session = self._get_session()
        try:
            session.add(pool_to_orm(pool))
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExists(f"Port pool {pool.pool_id} already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create port pool: {e}") from e
        finally:
            session.close()

    def get_pool(self, pool_id: str) -> Optional[PortPool]:
        session = self._get_session()
        try:
            orm = session.get(PortPoolORM, pool_id)
            return orm_to_pool(orm) if orm else None
        finally:
            session.close()

    def list_pools_for_node(self, node_id: str) -> List[PortPool]:
        session = self._get_session()
        try:
            orms = session.query(PortPoolORM).filter(
                PortPoolORM.node_id == node_id
            ).order_by(
                PortPoolORM.start_port.asc(),
                PortPoolORM.pool_id.asc(),
            ).all()
            return [orm_to_pool(orm) for orm in orms]
        finally:
            session.close()

    # -------------------------
    # BLOCKS (read)
    # -------------------------

    def get_block(self, block_id: str) -> Optional[PortBlock]:
        session = self._get_session()
        try:
            orm = session.get(PortBlockORM, block_id)
            return orm_to_block(orm) if orm else None
        finally:
            session.close()

    def list_blocks(self, pool_id: str) -> List[PortBlock]:
        session = self._get_session()
        try:
            return self._blocks_of_pool(session, pool_id)
        finally:
            session.close()

    def list_customer_blocks(self, customer_id: str) -> List[PortBlock]:
        session = self._get_session()
        try:
            orms = session.query(PortBlockORM).filter(
                PortBlockORM.customer_id == customer_id
            ).order_by(
                PortBlockORM.created_at.asc(),
                PortBlockORM.start_port.asc(),
            ).all()
            return [orm_to_block(orm) for orm in orms]
        finally:
            session.close()

    def find_by_workload(self, workload_id: str) -> Optional[PortBlock]:
        session = self._get_session()
        try:
            orm = session.query(PortBlockORM).filter(
                PortBlockORM.workload_id == workload_id
            ).first()
            return orm_to_block(orm) if orm else None
        finally:
            session.close()

    # -------------------------
    # BLOCKS (write, pool locked)
    # -------------------------

    def allocate(self, pool_id: str, planner: AllocationPlanner) -> List[PortBlock]:
        session = self._get_session()
        try:
            pool_orm = self._lock_pool(session, pool_id)
            version = pool_orm.lease_version

            new_blocks = planner(orm_to_pool(pool_orm), self._blocks_of_pool(session, pool_id))

            self._bump_version(session, pool_id, version)
            for block in new_blocks:
                self._require_workload_free(session, block)
                session.add(block_to_orm(block))

            session.commit()
            logger.debug(f"[postgres] pool {pool_id} v{version + 1}: +{len(new_blocks)} block(s)")
            return new_blocks
        except FleetError:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            raise ConcurrencyError(f"Conflicting write on pool {pool_id}: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to allocate in pool {pool_id}: {e}") from e
        finally:
            session.close()

    def modify_block(self, block_id: str, mutator: BlockMutator) -> PortBlock:
        session = self._get_session()
        try:
            existing = session.get(PortBlockORM, block_id)
            if not existing:
                raise PortBlockNotFound(f"Port block {block_id} not found")

            pool_id = existing.pool_id
            pool_orm = self._lock_pool(session, pool_id)
            version = pool_orm.lease_version

            # Re-read under the lock
            session.refresh(existing)
            blocks = self._blocks_of_pool(session, pool_id)
            block = next(b for b in blocks if b.block_id == block_id)
            siblings = [b for b in blocks if b.block_id != block_id]

            mutator(block, orm_to_pool(pool_orm), siblings)
            self._require_workload_free(session, block)

            self._bump_version(session, pool_id, version)
            _copy_block(block, existing)

            session.commit()
            return block
        except FleetError:
            session.rollback()
            raise
        except IntegrityError as e:
            session.rollback()
            raise ConcurrencyError(f"Conflicting write on port block {block_id}: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update port block {block_id}: {e}") from e
        finally:
            session.close()

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    @staticmethod
    def _lock_pool(session: Session, pool_id: str) -> PortPoolORM:
        pool_orm = session.query(PortPoolORM).filter(
            PortPoolORM.pool_id == pool_id
        ).with_for_update().first()
        if not pool_orm:
            raise PortPoolNotFound(f"Port pool {pool_id} not found")
        return pool_orm

    @staticmethod
    def _bump_version(session: Session, pool_id: str, expected_version: int) -> None:
        updated = session.query(PortPoolORM).filter(
            PortPoolORM.pool_id == pool_id,
            PortPoolORM.lease_version == expected_version,
        ).update(
            {PortPoolORM.lease_version: expected_version + 1},
            synchronize_session=False,
        )
        if updated != 1:
            raise ConcurrencyError(f"Port pool {pool_id} changed during allocation")

    @staticmethod
    def _require_workload_free(session: Session, block: PortBlock) -> None:
        if block.workload_id is None:
            return
        other = session.query(PortBlockORM).filter(
            PortBlockORM.workload_id == block.workload_id,
            PortBlockORM.block_id != block.block_id,
        ).first()
        if other:
            raise WorkloadAlreadyBound(block.workload_id, other.block_id)

    @staticmethod
    def _blocks_of_pool(session: Session, pool_id: str) -> List[PortBlock]:
        orms = session.query(PortBlockORM).filter(
            PortBlockORM.pool_id == pool_id
        ).order_by(
            PortBlockORM.start_port.asc(),
            PortBlockORM.created_at.asc(),
        ).all()
        return [orm_to_block(orm) for orm in orms]
