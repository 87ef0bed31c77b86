"""Node manager service."""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from fleet_engine.core.errors import (
    AuthenticationError,
    FleetValidationError,
    NodeNotFound,
)
from fleet_engine.core.events import AuditSink, NullAuditSink
from fleet_engine.core.events_model import AuditEvent
from fleet_engine.core.models import Job, new_id, utcnow
from fleet_engine.core.repository import NodeRepository
from fleet_engine.core.service import JobDispatcher
from fleet_engine.disk.protection import (
    DiskProtectionState,
    override_until,
    protection_state,
    update_disk_stat,
    validate_disk_settings,
)
from fleet_engine.node_manager.liveness import (
    DEFAULT_THRESHOLDS,
    LivenessThresholds,
    resolve_status,
)
from fleet_engine.node_manager.models import LivenessState, Node, NodeLiveness, normalize_roles
from fleet_engine.node_manager.updates import (
    AGENT_UPDATE_JOB_TYPES,
    build_update_payload,
    resolve_update_job_type,
)

logger = logging.getLogger(__name__)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


@dataclass
class NodeOverview:
    """Admin listing row: the node plus everything derived from it."""
    node: Node
    liveness: NodeLiveness
    disk: DiskProtectionState
    update_job: Optional[Job] = None


class NodeManagerService:
    """Registration, heartbeats, disk policy and agent updates for nodes."""

    def __init__(
        self,
        node_repo: NodeRepository,
        dispatcher: JobDispatcher,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        thresholds: LivenessThresholds = DEFAULT_THRESHOLDS,
        release_repository: str = "",
    ):
        self._node_repo = node_repo
        self._dispatcher = dispatcher
        self._audit = audit_sink or NullAuditSink()
        self._clock = clock
        self._thresholds = thresholds
        self._release_repository = release_repository

    # ============================================
    # NODE REGISTRATION
    # ============================================

    def register_node(self, name: Optional[str] = None, roles: Optional[List[str]] = None) -> Tuple[Node, str]:
        """
        Register a node and mint its secret.

        The plain secret is returned once; only its SHA-256 is stored.
        """
        now = self._clock()
        secret = secrets.token_urlsafe(32)
        node = Node(
            node_id=new_id(),
            name=name.strip() if name and name.strip() else None,
            roles=normalize_roles(roles or []),
            secret_hash=hash_secret(secret),
            created_at=now,
            updated_at=now,
        )
        self._node_repo.create(node)

        logger.info(f"[node_manager] registered node {node.node_id} ({node.name})")
        self._audit.emit([
            AuditEvent.node_event("node.registered", node.node_id, {"name": node.name, "roles": node.roles}, now)
        ])
        return node, secret

    def authenticate(self, node_id: str, secret: str) -> Node:
        node = self._node_repo.get(node_id) if node_id else None
        if node is None or not secret:
            raise AuthenticationError("Invalid node credentials")

        if not hmac.compare_digest(node.secret_hash, hash_secret(secret)):
            logger.warning(f"[node_manager] rejected credentials for node {node_id}")
            raise AuthenticationError("Invalid node credentials")
        return node

    def get_node(self, node_id: str) -> Node:
        node = self._node_repo.get(node_id)
        if not node:
            raise NodeNotFound(f"Node {node_id} not found")
        return node

    # ============================================
    # HEARTBEAT
    # ============================================

    def record_heartbeat(
        self,
        node_id: str,
        stats: Optional[Dict[str, Any]] = None,
        version: str = "",
        ip: Optional[str] = None,
        roles: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Node:
        if stats is not None and not isinstance(stats, dict):
            raise FleetValidationError("stats must be a dict")
        if metadata is not None and not isinstance(metadata, dict):
            raise FleetValidationError("metadata must be a dict")

        node = self.get_node(node_id)
        now = now or self._clock()

        node.record_heartbeat(
            stats=stats or {},
            version=version or "",
            ip=ip,
            roles=roles,
            metadata=metadata,
            status=status,
            now=now,
        )
        self._node_repo.update(node)

        logger.debug(f"[node_manager] heartbeat from {node_id} status={node.status}")
        self._audit.emit([
            AuditEvent.node_event(
                "node.heartbeat",
                node_id,
                {"status": node.status, "version": node.last_heartbeat_version, "ip": ip},
                now,
            )
        ])
        return node

    # ============================================
    # DISK POLICY
    # ============================================

    def record_disk_stat(
        self,
        node_id: str,
        free_bytes: int,
        free_percent: float,
        checked_at: Optional[datetime] = None,
    ) -> DiskProtectionState:
        if isinstance(free_bytes, bool) or not isinstance(free_bytes, int) or free_bytes < 0:
            raise FleetValidationError("free_bytes must be a non-negative integer")
        if isinstance(free_percent, bool) or not isinstance(free_percent, (int, float)):
            raise FleetValidationError("free_percent must be a number")
        if not 0 <= free_percent <= 100:
            raise FleetValidationError("free_percent must be between 0 and 100")

        node = self.get_node(node_id)
        now = self._clock()
        checked_at = checked_at or now

        previous, current = update_disk_stat(node, free_bytes, float(free_percent), checked_at)
        node.updated_at = now
        self._node_repo.update(node)

        if previous != current:
            if current:
                logger.warning(
                    f"[node_manager] node {node_id} entered disk protect mode "
                    f"({free_percent:.1f}% free, threshold {node.disk_protect_threshold_percent}%)"
                )
            else:
                logger.info(f"[node_manager] node {node_id} left disk protect mode ({free_percent:.1f}% free)")

            self._audit.emit([
                AuditEvent.node_event(
                    "node.disk_protection_changed",
                    node_id,
                    {
                        "active": current,
                        "free_percent": float(free_percent),
                        "threshold_percent": node.disk_protect_threshold_percent,
                    },
                    now,
                )
            ])

        return protection_state(node, now)

    def update_disk_settings(
        self,
        node_id: str,
        scan_interval_seconds: int,
        warning_percent: int,
        hard_block_percent: int,
        protect_threshold_percent: int,
    ) -> Node:
        validate_disk_settings(
            scan_interval_seconds,
            warning_percent,
            hard_block_percent,
            protect_threshold_percent,
        )

        node = self.get_node(node_id)
        node.disk_scan_interval_seconds = scan_interval_seconds
        node.disk_warning_percent = warning_percent
        node.disk_hard_block_percent = hard_block_percent
        node.disk_protect_threshold_percent = protect_threshold_percent
        node.updated_at = self._clock()
        self._node_repo.update(node)

        logger.info(f"[node_manager] disk settings updated for node {node_id}")
        self._audit.emit([
            AuditEvent.node_event(
                "node.disk_settings_updated",
                node_id,
                {
                    "scan_interval_seconds": scan_interval_seconds,
                    "warning_percent": warning_percent,
                    "hard_block_percent": hard_block_percent,
                    "protect_threshold_percent": protect_threshold_percent,
                },
                node.updated_at,
            )
        ])
        return node

    def set_protection_override(self, node_id: str, minutes: int, now: Optional[datetime] = None) -> Node:
        """Replace the override window; minutes <= 0 clears it."""
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise FleetValidationError("override minutes must be an integer")

        node = self.get_node(node_id)
        now = now or self._clock()

        node.disk_protect_override_until = override_until(now, minutes)
        node.updated_at = now
        self._node_repo.update(node)

        until = node.disk_protect_override_until
        logger.info(f"[node_manager] disk protection override for node {node_id} until {until}")
        self._audit.emit([
            AuditEvent.node_event(
                "node.disk_override_updated",
                node_id,
                {"override_until": until.isoformat() if until else None, "minutes": minutes},
                now,
            )
        ])
        return node

    # ============================================
    # LISTING
    # ============================================

    def liveness(self, node: Node, now: Optional[datetime] = None) -> NodeLiveness:
        return resolve_status(node, now or self._clock(), self._thresholds)

    def list_nodes_with_status(self, now: Optional[datetime] = None) -> List[NodeOverview]:
        now = now or self._clock()
        nodes = self._node_repo.list_all()
        update_jobs = self._dispatcher.latest_job_index(
            [n.node_id for n in nodes],
            AGENT_UPDATE_JOB_TYPES,
        )

        return [
            NodeOverview(
                node=node,
                liveness=self.liveness(node, now),
                disk=protection_state(node, now),
                update_job=update_jobs.get(node.node_id),
            )
            for node in nodes
        ]

    def node_overview(self, node_id: str, now: Optional[datetime] = None) -> NodeOverview:
        node = self.get_node(node_id)
        now = now or self._clock()
        update_jobs = self._dispatcher.latest_job_index([node_id], AGENT_UPDATE_JOB_TYPES)
        return NodeOverview(
            node=node,
            liveness=self.liveness(node, now),
            disk=protection_state(node, now),
            update_job=update_jobs.get(node_id),
        )

    # ============================================
    # DELETION
    # ============================================

    def delete_node(self, node_id: str) -> None:
        """Remove a node with its pools. Refused while any of its blocks is bound to a workload."""
        self._node_repo.delete(node_id)
        logger.info(f"[node_manager] deleted node {node_id}")
        self._audit.emit([AuditEvent.node_event("node.deleted", node_id, {}, self._clock())])

    # ============================================
    # AGENT UPDATES
    # ============================================

    def queue_agent_updates(
        self,
        latest_version: str,
        repository: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Job]:
        """
        Queue an agent update for every reachable node running an older agent.

        Nodes with an update job still queued or running are skipped, so
        calling this repeatedly never stacks jobs.
        """
        repository = repository if repository is not None else self._release_repository
        now = now or self._clock()
        queued: List[Job] = []

        for node in self._node_repo.list_all():
            if self.liveness(node, now).state == LivenessState.OFFLINE:
                continue

            payload = build_update_payload(node, latest_version, repository)
            if payload is None:
                continue

            job, created = self._dispatcher.enqueue_unique(
                resolve_update_job_type(node),
                payload,
                guard_types=AGENT_UPDATE_JOB_TYPES,
            )
            if not created:
                continue

            queued.append(job)
            self._audit.emit([
                AuditEvent.node_event(
                    "node.agent_update_queued",
                    node.node_id,
                    {"job_id": job.job_id, "version": payload["version"], "asset_name": payload["asset_name"]},
                    now,
                )
            ])

        logger.info(f"[node_manager] queued {len(queued)} agent update(s) for version {latest_version}")
        return queued
