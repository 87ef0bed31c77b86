"""Port pool & lease manager - race-free port block allocation."""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from fleet_engine.core.errors import (
    ConcurrencyError,
    FleetValidationError,
    NodeNotFound,
    PortBlockAlreadyAssigned,
    PortBlockNodeMismatch,
    PortBlockNotFound,
    PortBlockOwnershipError,
    PortPoolExhausted,
    PortPoolNotFound,
    PortRangeOverlap,
    ResourceExhausted,
    WorkloadAlreadyBound,
)
from fleet_engine.core.events import AuditSink, NullAuditSink
from fleet_engine.core.events_model import AuditEvent
from fleet_engine.core.models import new_id, utcnow
from fleet_engine.core.repository import NodeRepository, PortRepository
from fleet_engine.ports.models import MAX_PORT, MIN_PORT, PortBlock, PortPool, PortProtocol

logger = logging.getLogger(__name__)


# ============================================
# PLANNING (pure, runs under the pool lock)
# ============================================

def held_ports(blocks: List[PortBlock], exclude_block_id: Optional[str] = None) -> Dict[int, str]:
    """Map of port -> holding block id for every block that has not been released."""
    held: Dict[int, str] = {}
    for block in blocks:
        if block.block_id == exclude_block_id or not block.holds_ports:
            continue
        for port in block.ports:
            held[port] = block.block_id
    return held


def first_fit(pool: PortPool, held: Dict[int, str], port_count: int) -> Optional[List[int]]:
    """Lowest-start contiguous run of port_count free ports inside the pool."""
    run: List[int] = []
    for port in range(pool.start_port, pool.end_port + 1):
        if port in held:
            run = []
            continue
        run.append(port)
        if len(run) == port_count:
            return run
    return None


def _require_positive(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise FleetValidationError(f"{name} must be a positive integer")
    return value


def _require_id(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise FleetValidationError(f"{name} is required")
    return value


class PortLeaseManager:
    """
    Leases port blocks from per-node pools.

    Allocation is first-fit: the lowest-start run of free ports wins, so
    results are deterministic and auditable. A port is free when no
    unreleased block of the pool contains it.
    """

    def __init__(
        self,
        port_repo: PortRepository,
        node_repo: NodeRepository,
        audit_sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 5,
    ):
        self._repo = port_repo
        self._node_repo = node_repo
        self._audit = audit_sink or NullAuditSink()
        self._clock = clock
        self._max_attempts = max(1, max_attempts)

    # ============================================
    # POOLS
    # ============================================

    def create_pool(
        self,
        node_id: str,
        name: str,
        start_port: int,
        end_port: int,
        protocol: PortProtocol = PortProtocol.BOTH,
    ) -> PortPool:
        if not self._node_repo.get(node_id):
            raise NodeNotFound(f"Node {node_id} not found")
        if not name or not name.strip():
            raise FleetValidationError("pool name is required")
        if not (MIN_PORT <= start_port <= end_port <= MAX_PORT):
            raise FleetValidationError(
                f"port range must satisfy {MIN_PORT} <= start <= end <= {MAX_PORT}"
            )

        pool = PortPool(
            pool_id=new_id(),
            node_id=node_id,
            name=name.strip(),
            start_port=start_port,
            end_port=end_port,
            protocol=protocol,
            created_at=self._clock(),
        )
        self._repo.create_pool(pool)
        self._audit.emit([AuditEvent.node_event(
            "port_pool.created",
            pool.pool_id,
            {"node_id": node_id, "start_port": start_port, "end_port": end_port, "protocol": pool.protocol.value},
            pool.created_at,
        )])
        logger.info(f"[ports] created pool {pool.pool_id} {start_port}-{end_port} on node {node_id}")
        return pool

    def get_pool(self, pool_id: str) -> PortPool:
        pool = self._repo.get_pool(pool_id)
        if not pool:
            raise PortPoolNotFound(f"Port pool {pool_id} not found")
        return pool

    def list_pools(self, node_id: str) -> List[PortPool]:
        return self._repo.list_pools_for_node(node_id)

    # ============================================
    # ALLOCATION
    # ============================================

    def allocate_block(
        self,
        pool_id: str,
        customer_id: str,
        port_count: int,
        workload_id: Optional[str] = None,
    ) -> PortBlock:
        """
        Lease the first free contiguous run of port_count ports.

        Raises PortPoolExhausted when the pool has no such run; callers should
        move on to the next pool rather than retry this one.
        """
        _require_positive(port_count, "port_count")
        _require_id(customer_id, "customer_id")
        self.get_pool(pool_id)
        if workload_id is not None:
            self._require_unbound(workload_id)

        def plan(pool: PortPool, blocks: List[PortBlock]) -> List[PortBlock]:
            ports = first_fit(pool, held_ports(blocks), port_count)
            if ports is None:
                raise PortPoolExhausted(pool.pool_id, port_count)

            now = self._clock()
            block = PortBlock(
                block_id=new_id(),
                pool_id=pool.pool_id,
                customer_id=customer_id,
                ports=ports,
                created_at=now,
                updated_at=now,
            )
            if workload_id is not None:
                block.assign(workload_id, now)
            return [block]

        block = self._allocate_with_retry(pool_id, plan)[0]
        logger.info(
            f"[ports] allocated {block.start_port}-{block.end_port} from pool {pool_id} "
            f"to customer {customer_id}"
        )
        self._audit.emit([AuditEvent.port_block_event("port_block.allocated", block, self._clock())])
        return block

    def allocate_for_node(
        self,
        node_id: str,
        customer_id: str,
        port_count: int,
        workload_id: Optional[str] = None,
    ) -> PortBlock:
        """Try each pool of the node in turn, moving on when one is exhausted."""
        pools = self._repo.list_pools_for_node(node_id)
        for pool in pools:
            try:
                return self.allocate_block(pool.pool_id, customer_id, port_count, workload_id)
            except PortPoolExhausted:
                logger.info(f"[ports] pool {pool.pool_id} exhausted, trying next pool")
                continue

        raise ResourceExhausted(
            f"No free run of {port_count} port(s) on node {node_id} "
            f"({len(pools)} pool(s) checked)"
        )

    def allocate_blocks_in_range(
        self,
        pool_id: str,
        customer_id: str,
        start_port: int,
        end_port: int,
        size: int,
    ) -> List[PortBlock]:
        """Carve [start_port, end_port] into consecutive blocks of size ports."""
        _require_positive(size, "block size")
        _require_id(customer_id, "customer_id")
        if start_port <= 0 or end_port <= 0 or start_port > end_port:
            raise FleetValidationError("port range is invalid")

        pool = self.get_pool(pool_id)
        if not (pool.contains(start_port) and pool.contains(end_port)):
            raise FleetValidationError("port range must stay within the pool")

        range_size = end_port - start_port + 1
        if range_size < size:
            raise FleetValidationError("port range is smaller than the requested block size")
        if range_size % size != 0:
            raise FleetValidationError("port range must be divisible by the block size")

        def plan(pool: PortPool, blocks: List[PortBlock]) -> List[PortBlock]:
            held = held_ports(blocks)
            for port in range(start_port, end_port + 1):
                if port in held:
                    raise PortRangeOverlap(
                        f"Port {port} is already held by block {held[port]}",
                        conflicting_block_id=held[port],
                    )

            now = self._clock()
            return [
                PortBlock(
                    block_id=new_id(),
                    pool_id=pool.pool_id,
                    customer_id=customer_id,
                    ports=list(range(current, current + size)),
                    created_at=now,
                    updated_at=now,
                )
                for current in range(start_port, end_port + 1, size)
            ]

        blocks = self._allocate_with_retry(pool_id, plan)
        now = self._clock()
        self._audit.emit([AuditEvent.port_block_event("port_block.allocated", b, now) for b in blocks])
        logger.info(f"[ports] allocated {len(blocks)} block(s) in {start_port}-{end_port} of pool {pool_id}")
        return blocks

    def _allocate_with_retry(self, pool_id: str, planner) -> List[PortBlock]:
        last_error: Optional[ConcurrencyError] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._repo.allocate(pool_id, planner)
            except ConcurrencyError as e:
                last_error = e
                logger.warning(f"[ports] allocation race on pool {pool_id} (attempt {attempt}): {e}")
        raise ConcurrencyError(
            f"Failed to allocate ports in pool {pool_id} after {self._max_attempts} attempts"
        ) from last_error

    # ============================================
    # EXISTING BLOCKS
    # ============================================

    def get_block(self, block_id: str) -> PortBlock:
        block = self._repo.get_block(block_id)
        if not block:
            raise PortBlockNotFound(f"Port block {block_id} not found")
        return block

    def reserve_existing(self, block_id: str, customer_id: str, node_id: str) -> PortBlock:
        """
        Validate a block the customer already holds for reuse on node_id.

        Each failed precondition raises its own error.
        """
        block = self.get_block(block_id)

        if block.customer_id != customer_id:
            raise PortBlockOwnershipError(block_id, customer_id)

        if block.is_assigned:
            raise PortBlockAlreadyAssigned(block_id, block.workload_id)

        pool = self.get_pool(block.pool_id)
        if pool.node_id != node_id:
            raise PortBlockNodeMismatch(block_id, node_id)

        return block

    def assign(self, block_id: str, workload_id: str) -> PortBlock:
        _require_id(workload_id, "workload_id")
        self._require_unbound(workload_id, block_id)

        def mutate(block: PortBlock, pool: PortPool, siblings: List[PortBlock]) -> None:
            if block.is_assigned:
                raise PortBlockAlreadyAssigned(block.block_id, block.workload_id)

            # A released block may have lost its ports to a newer lease.
            held = held_ports(siblings, exclude_block_id=block.block_id)
            for port in block.ports:
                if port in held:
                    raise PortRangeOverlap(
                        f"Port {port} of block {block.block_id} is now held by block {held[port]}",
                        conflicting_block_id=held[port],
                    )

            block.assign(workload_id, self._clock())

        block = self._modify(block_id, mutate)
        logger.info(f"[ports] assigned block {block_id} to workload {workload_id}")
        self._audit.emit([AuditEvent.port_block_event("port_block.assigned", block, self._clock())])
        return block

    def release_instance(self, block_id: str) -> PortBlock:
        """Clear the workload link and free the ports. The block row and customer stay."""
        released_from: Dict[str, Optional[str]] = {}

        def mutate(block: PortBlock, pool: PortPool, siblings: List[PortBlock]) -> None:
            released_from["workload_id"] = block.workload_id
            block.release(self._clock())

        block = self._modify(block_id, mutate)
        logger.info(f"[ports] released block {block_id} from workload {released_from.get('workload_id')}")
        self._audit.emit([
            AuditEvent.port_block_event(
                "port_block.released",
                block,
                self._clock(),
                previous_workload_id=released_from.get("workload_id"),
            )
        ])
        return block

    def _require_unbound(self, workload_id: str, block_id: Optional[str] = None) -> None:
        bound = self._repo.find_by_workload(workload_id)
        if bound is not None and bound.block_id != block_id:
            raise WorkloadAlreadyBound(workload_id, bound.block_id)

    def _modify(self, block_id: str, mutator) -> PortBlock:
        self.get_block(block_id)
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self._repo.modify_block(block_id, mutator)
            except ConcurrencyError as e:
                logger.warning(f"[ports] update race on block {block_id} (attempt {attempt}): {e}")
        raise ConcurrencyError(f"Failed to update port block {block_id}")

    # ============================================
    # QUERIES
    # ============================================

    def list_blocks(self, pool_id: str) -> List[PortBlock]:
        return self._repo.list_blocks(pool_id)

    def list_customer_blocks(self, customer_id: str) -> List[PortBlock]:
        return self._repo.list_customer_blocks(customer_id)

    def find_by_workload(self, workload_id: str) -> Optional[PortBlock]:
        return self._repo.find_by_workload(workload_id)

    def used_ports(self, pool_id: str) -> List[int]:
        return sorted(held_ports(self._repo.list_blocks(pool_id)))
