"""Provisioning workflow: admission -> port lease -> firewall job -> audit."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fleet_engine.core.errors import (
    FleetValidationError,
    NodeNotFound,
    NotFoundError,
    WorkloadAlreadyBound,
)
from fleet_engine.core.events import AuditSink, NullAuditSink
from fleet_engine.core.events_model import AuditEvent
from fleet_engine.core.models import Job, utcnow
from fleet_engine.core.repository import NodeRepository
from fleet_engine.core.service import JobDispatcher
from fleet_engine.disk.protection import require_provisioning_allowed
from fleet_engine.ports.lease_manager import PortLeaseManager
from fleet_engine.ports.models import PortBlock

logger = logging.getLogger(__name__)


FIREWALL_OPEN_JOB = "firewall.open_ports"
FIREWALL_CLOSE_JOB = "firewall.close_ports"


@dataclass
class ProvisioningResult:
    block: PortBlock
    job: Job


class ProvisioningService:
    """
    Binds a workload to a port block on a node and asks the node to open the ports.

    Checks run in a fixed order and each one fails before anything durable
    is written: node lookup, disk admission, port block, assignment, job.
    """

    def __init__(
        self,
        node_repo: NodeRepository,
        lease_manager: PortLeaseManager,
        dispatcher: JobDispatcher,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._node_repo = node_repo
        self._leases = lease_manager
        self._dispatcher = dispatcher
        self._audit = audit_sink or NullAuditSink()
        self._clock = clock

    # ============================================
    # PROVISION
    # ============================================

    def provision_instance(
        self,
        node_id: str,
        customer_id: str,
        workload_id: str,
        port_count: int = 1,
        port_block_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ProvisioningResult:
        if not workload_id:
            raise FleetValidationError("workload_id is required")
        if not customer_id:
            raise FleetValidationError("customer_id is required")

        now = now or self._clock()

        node = self._node_repo.get(node_id)
        if not node:
            raise NodeNotFound(f"Node {node_id} not found")

        require_provisioning_allowed(node, now)

        bound = self._leases.find_by_workload(workload_id)
        if bound is not None:
            raise WorkloadAlreadyBound(workload_id, bound.block_id)

        if port_block_id:
            self._leases.reserve_existing(port_block_id, customer_id, node_id)
            block = self._leases.assign(port_block_id, workload_id)
        else:
            block = self._leases.allocate_for_node(node_id, customer_id, port_count, workload_id)

        job = self._dispatcher.enqueue(FIREWALL_OPEN_JOB, {
            "agent_id": node_id,
            "instance_id": workload_id,
            "port_block_id": block.block_id,
            "ports": block.ports_csv(),
        })

        logger.info(
            f"[provisioning] workload {workload_id} on node {node_id} "
            f"got ports {block.ports_csv()} (job {job.job_id})"
        )
        self._audit.emit([
            AuditEvent.instance_event(
                "instance.provisioned",
                workload_id,
                {
                    "node_id": node_id,
                    "customer_id": customer_id,
                    "port_block_id": block.block_id,
                    "ports": list(block.ports),
                    "job_id": job.job_id,
                },
                now,
            )
        ])
        return ProvisioningResult(block=block, job=job)

    # ============================================
    # DEPROVISION
    # ============================================

    def deprovision_instance(self, workload_id: str, now: Optional[datetime] = None) -> ProvisioningResult:
        """Release the workload's block and ask its node to close the ports."""
        now = now or self._clock()

        block = self._leases.find_by_workload(workload_id)
        if block is None:
            raise NotFoundError(f"No port block bound to workload {workload_id}")

        pool = self._leases.get_pool(block.pool_id)
        released = self._leases.release_instance(block.block_id)

        job = self._dispatcher.enqueue(FIREWALL_CLOSE_JOB, {
            "agent_id": pool.node_id,
            "instance_id": workload_id,
            "port_block_id": released.block_id,
            "ports": released.ports_csv(),
        })

        logger.info(f"[provisioning] workload {workload_id} released ports {released.ports_csv()}")
        self._audit.emit([
            AuditEvent.instance_event(
                "instance.deprovisioned",
                workload_id,
                {
                    "node_id": pool.node_id,
                    "port_block_id": released.block_id,
                    "job_id": job.job_id,
                },
                now,
            )
        ])
        return ProvisioningResult(block=released, job=job)
