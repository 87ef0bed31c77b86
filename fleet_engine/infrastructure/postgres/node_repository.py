# fleet_engine/infrastructure/postgres/node_repository.py

"""PostgreSQL node repository."""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fleet_engine.core.errors import AlreadyExists, FleetError, NodeInUseError, NodeNotFound, PersistenceError
from fleet_engine.core.repository import NodeRepository
from fleet_engine.infrastructure.postgres.database import get_session_factory
from fleet_engine.infrastructure.postgres.models import NodeORM, PortBlockORM, PortPoolORM, as_utc
from fleet_engine.node_manager.models import Node

logger = logging.getLogger(__name__)


def node_to_orm(node: Node) -> NodeORM:
    """Convert node domain model to ORM."""
    orm = NodeORM(node_id=node.node_id, created_at=node.created_at)
    _copy_to_orm(node, orm)
    return orm


def _copy_to_orm(node: Node, orm: NodeORM) -> None:
    orm.name = node.name
    orm.roles = list(node.roles)
    orm.status = node.status
    orm.secret_hash = node.secret_hash
    orm.last_heartbeat_at = node.last_heartbeat_at
    orm.last_seen_at = node.last_seen_at
    orm.last_heartbeat_ip = node.last_heartbeat_ip
    orm.last_heartbeat_version = node.last_heartbeat_version
    orm.last_heartbeat_stats = node.last_heartbeat_stats
    orm.node_metadata = node.metadata
    orm.disk_scan_interval_seconds = node.disk_scan_interval_seconds
    orm.disk_warning_percent = node.disk_warning_percent
    orm.disk_hard_block_percent = node.disk_hard_block_percent
    orm.disk_protect_threshold_percent = node.disk_protect_threshold_percent
    orm.disk_protect_override_until = node.disk_protect_override_until
    orm.updated_at = node.updated_at


def orm_to_node(orm: NodeORM) -> Node:
    """Convert ORM to node domain model."""
    return Node(
        node_id=orm.node_id,
        name=orm.name,
        roles=list(orm.roles or []),
        status=orm.status,
        secret_hash=orm.secret_hash,
        last_heartbeat_at=as_utc(orm.last_heartbeat_at),
        last_seen_at=as_utc(orm.last_seen_at),
        last_heartbeat_ip=orm.last_heartbeat_ip,
        last_heartbeat_version=orm.last_heartbeat_version,
        last_heartbeat_stats=orm.last_heartbeat_stats,
        metadata=orm.node_metadata,
        disk_scan_interval_seconds=orm.disk_scan_interval_seconds,
        disk_warning_percent=orm.disk_warning_percent,
        disk_hard_block_percent=orm.disk_hard_block_percent,
        disk_protect_threshold_percent=orm.disk_protect_threshold_percent,
        disk_protect_override_until=as_utc(orm.disk_protect_override_until),
        created_at=as_utc(orm.created_at),
        updated_at=as_utc(orm.updated_at),
    )


class PostgresNodeRepository(NodeRepository):
    """Repository for managed nodes."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    def create(self, node: Node) -> None:
        """Register a new node."""
        session = self._get_session()
        try:
            session.add(node_to_orm(node))
            session.commit()
            logger.debug(f"[postgres] registered node {node.node_id} ({node.name})")
        except IntegrityError as e:
            session.rollback()
            raise AlreadyExists(f"Node {node.node_id} already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to create node: {e}") from e
        finally:
            session.close()

    def get(self, node_id: str) -> Optional[Node]:
        session = self._get_session()
        try:
            orm = session.get(NodeORM, node_id)
            return orm_to_node(orm) if orm else None
        finally:
            session.close()

    def update(self, node: Node) -> None:
        session = self._get_session()
        try:
            orm = session.get(NodeORM, node.node_id)
            if not orm:
                raise NodeNotFound(f"Node {node.node_id} not found")

            _copy_to_orm(node, orm)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update node: {e}") from e
        finally:
            session.close()

    def list_all(self) -> List[Node]:
        session = self._get_session()
        try:
            orms = session.query(NodeORM).order_by(
                NodeORM.created_at.asc(),
                NodeORM.node_id.asc(),
            ).all()
            return [orm_to_node(orm) for orm in orms]
        finally:
            session.close()

    def delete(self, node_id: str) -> None:
        """Remove the node together with its pools and their blocks."""
        session = self._get_session()
        try:
            orm = session.get(NodeORM, node_id)
            if not orm:
                raise NodeNotFound(f"Node {node_id} not found")

            # Same pool locks as allocate/modify_block, so no block gets bound mid-delete
            pool_ids = [
                row.pool_id for row in
                session.query(PortPoolORM).filter(
                    PortPoolORM.node_id == node_id
                ).order_by(PortPoolORM.pool_id).with_for_update().all()
            ]
            if pool_ids:
                assigned = session.query(PortBlockORM).filter(
                    PortBlockORM.pool_id.in_(pool_ids),
                    PortBlockORM.workload_id.isnot(None),
                ).count()
                if assigned:
                    raise NodeInUseError(f"Node {node_id} still has {assigned} assigned port block(s)")

                session.query(PortBlockORM).filter(
                    PortBlockORM.pool_id.in_(pool_ids)
                ).delete(synchronize_session=False)
                session.query(PortPoolORM).filter(
                    PortPoolORM.pool_id.in_(pool_ids)
                ).delete(synchronize_session=False)

            session.delete(orm)
            session.commit()
            logger.debug(f"[postgres] deleted node {node_id} and {len(pool_ids)} pool(s)")
        except FleetError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to delete node: {e}") from e
        finally:
            session.close()
