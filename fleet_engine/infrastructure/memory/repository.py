# fleet_engine/infrastructure/memory/repository.py

from copy import deepcopy
from itertools import count
from threading import Lock
from typing import Dict, List, Optional, Sequence

from fleet_engine.core.errors import (
    AlreadyExists,
    ConcurrencyError,
    JobInvalidStateError,
    JobNotFound,
    NodeInUseError,
    NodeNotFound,
    PortBlockNotFound,
    PortPoolNotFound,
    WorkloadAlreadyBound,
)
from fleet_engine.core.models import Job, JobStatus
from fleet_engine.core.repository import (
    AllocationPlanner,
    BlockMutator,
    JobRepository,
    NodeRepository,
    PortRepository,
)
from fleet_engine.node_manager.models import Node
from fleet_engine.ports.models import PortBlock, PortPool


def _newest_first(jobs: List[Job]) -> List[Job]:
    return sorted(jobs, key=lambda j: (j.created_at, j.seq), reverse=True)


class InMemoryJobRepository(JobRepository):
    def __init__(self):
        self._store: Dict[str, Job] = {}
        self._seq = count(1)
        self._lock = Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.job_id in self._store:
                raise AlreadyExists(f"Job {job.job_id} already exists")
            job.seq = next(self._seq)
            self._store[job.job_id] = deepcopy(job)
            return job

    def get(self, job_id: str) -> Optional[Job]:
        job = self._store.get(job_id)
        return deepcopy(job) if job else None

    def update(self, job: Job, expected_status: JobStatus) -> None:
        with self._lock:
            stored = self._store.get(job.job_id)
            if not stored:
                raise JobNotFound(f"Job {job.job_id} not found")
            if stored.status != expected_status:
                raise JobInvalidStateError(
                    f"Job {job.job_id} is no longer {expected_status.value}"
                )
            self._store[job.job_id] = deepcopy(job)

    def list_queued_for_node(self, node_id: str, limit: Optional[int] = None) -> List[Job]:
        with self._lock:
            jobs = [
                deepcopy(j) for j in self._store.values()
                if j.node_id == node_id and j.status == JobStatus.QUEUED
            ]
        jobs.sort(key=lambda j: (j.created_at, j.seq))
        return jobs[:limit] if limit is not None else jobs

    def find_latest_by_type(self, job_type: str, limit: int) -> List[Job]:
        with self._lock:
            jobs = [deepcopy(j) for j in self._store.values() if j.job_type == job_type]
        return _newest_first(jobs)[:limit]

    def find_latest_for_node_and_types(
        self,
        node_id: str,
        types: Sequence[str],
        limit: int,
    ) -> List[Job]:
        wanted = set(types)
        with self._lock:
            jobs = [
                deepcopy(j) for j in self._store.values()
                if j.node_id == node_id and (not wanted or j.job_type in wanted)
            ]
        return _newest_first(jobs)[:limit]


class InMemoryPortRepository(PortRepository):
    """One lock for all pools: allocate() and modify_block() are serialized."""

    def __init__(self):
        self._pools: Dict[str, PortPool] = {}
        self._blocks: Dict[str, PortBlock] = {}
        self._lock = Lock()

    def create_pool(self, pool: PortPool) -> None:
        with self._lock:
            if pool.pool_id in self._pools:
                raise AlreadyExists(f"Port pool {pool.pool_id} already exists")
            self._pools[pool.pool_id] = deepcopy(pool)

    def get_pool(self, pool_id: str) -> Optional[PortPool]:
        pool = self._pools.get(pool_id)
        return deepcopy(pool) if pool else None

    def list_pools_for_node(self, node_id: str) -> List[PortPool]:
        with self._lock:
            pools = [deepcopy(p) for p in self._pools.values() if p.node_id == node_id]
        return sorted(pools, key=lambda p: (p.start_port, p.pool_id))

    def get_block(self, block_id: str) -> Optional[PortBlock]:
        block = self._blocks.get(block_id)
        return deepcopy(block) if block else None

    def list_blocks(self, pool_id: str) -> List[PortBlock]:
        with self._lock:
            return self._blocks_of_pool(pool_id)

    def list_customer_blocks(self, customer_id: str) -> List[PortBlock]:
        with self._lock:
            blocks = [deepcopy(b) for b in self._blocks.values() if b.customer_id == customer_id]
        return sorted(blocks, key=lambda b: (b.created_at, b.start_port))

    def find_by_workload(self, workload_id: str) -> Optional[PortBlock]:
        with self._lock:
            for block in self._blocks.values():
                if block.workload_id == workload_id:
                    return deepcopy(block)
        return None

    def allocate(self, pool_id: str, planner: AllocationPlanner) -> List[PortBlock]:
        with self._lock:
            pool = self._pools.get(pool_id)
            if not pool:
                raise PortPoolNotFound(f"Port pool {pool_id} not found")

            new_blocks = planner(deepcopy(pool), self._blocks_of_pool(pool_id))
            for block in new_blocks:
                self._check_workload_unique(block)
                if block.block_id in self._blocks:
                    raise ConcurrencyError(f"Port block {block.block_id} already exists")

            pool.lease_version += 1
            for block in new_blocks:
                self._blocks[block.block_id] = deepcopy(block)
            return new_blocks

    def modify_block(self, block_id: str, mutator: BlockMutator) -> PortBlock:
        with self._lock:
            stored = self._blocks.get(block_id)
            if not stored:
                raise PortBlockNotFound(f"Port block {block_id} not found")

            pool = self._pools[stored.pool_id]
            block = deepcopy(stored)
            siblings = [b for b in self._blocks_of_pool(pool.pool_id) if b.block_id != block_id]

            mutator(block, deepcopy(pool), siblings)
            self._check_workload_unique(block)

            pool.lease_version += 1
            self._blocks[block_id] = deepcopy(block)
            return block

    def delete_for_node(self, node_id: str) -> None:
        """Drop the node's pools and blocks, or raise NodeInUseError and drop nothing."""
        with self._lock:
            pool_ids = {p.pool_id for p in self._pools.values() if p.node_id == node_id}
            assigned = sum(1 for b in self._blocks.values() if b.pool_id in pool_ids and b.is_assigned)
            if assigned:
                raise NodeInUseError(f"Node {node_id} still has {assigned} assigned port block(s)")
            self._blocks = {k: b for k, b in self._blocks.items() if b.pool_id not in pool_ids}
            self._pools = {k: p for k, p in self._pools.items() if k not in pool_ids}

    def _blocks_of_pool(self, pool_id: str) -> List[PortBlock]:
        blocks = [deepcopy(b) for b in self._blocks.values() if b.pool_id == pool_id]
        return sorted(blocks, key=lambda b: (b.start_port, b.created_at))

    def _check_workload_unique(self, block: PortBlock) -> None:
        if block.workload_id is None:
            return
        for other in self._blocks.values():
            if other.block_id != block.block_id and other.workload_id == block.workload_id:
                raise WorkloadAlreadyBound(block.workload_id, other.block_id)


class InMemoryNodeRepository(NodeRepository):
    def __init__(self, port_repository: Optional[InMemoryPortRepository] = None):
        self._store: Dict[str, Node] = {}
        self._ports = port_repository
        self._lock = Lock()

    def create(self, node: Node) -> None:
        with self._lock:
            if node.node_id in self._store:
                raise AlreadyExists(f"Node {node.node_id} already exists")
            self._store[node.node_id] = deepcopy(node)

    def get(self, node_id: str) -> Optional[Node]:
        node = self._store.get(node_id)
        return deepcopy(node) if node else None

    def update(self, node: Node) -> None:
        with self._lock:
            if node.node_id not in self._store:
                raise NodeNotFound(f"Node {node.node_id} not found")
            self._store[node.node_id] = deepcopy(node)

    def list_all(self) -> List[Node]:
        with self._lock:
            nodes = [deepcopy(n) for n in self._store.values()]
        return sorted(nodes, key=lambda n: (n.created_at, n.node_id))

    def delete(self, node_id: str) -> None:
        with self._lock:
            if node_id not in self._store:
                raise NodeNotFound(f"Node {node_id} not found")
            if self._ports is not None:
                self._ports.delete_for_node(node_id)
            del self._store[node_id]
