# fleet_engine/core/repository.py

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from fleet_engine.core.models import Job, JobStatus
from fleet_engine.node_manager.models import Node
from fleet_engine.ports.models import PortBlock, PortPool


# Given the locked pool and every block carved from it, return the blocks to insert.
AllocationPlanner = Callable[[PortPool, List[PortBlock]], List[PortBlock]]

# Given the block, its locked pool and the pool's other blocks, mutate the block in place.
BlockMutator = Callable[[PortBlock, PortPool, List[PortBlock]], None]


class JobRepository(ABC):
    """
    Persistence contract for jobs.
    """

    @abstractmethod
    def create(self, job: Job) -> Job:
        """
        Persist a new job and assign its insertion sequence.
        Must fail if job_id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        """
        Fetch job by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, job: Job, expected_status: JobStatus) -> None:
        """
        Persist status/result changes.
        Must fail if the stored status is no longer expected_status.
        """
        raise NotImplementedError

    @abstractmethod
    def list_queued_for_node(self, node_id: str, limit: Optional[int] = None) -> List[Job]:
        """
        Queued jobs addressed to the node, oldest first.
        """
        raise NotImplementedError

    @abstractmethod
    def find_latest_by_type(self, job_type: str, limit: int) -> List[Job]:
        """
        Jobs of the given type, newest created first.
        """
        raise NotImplementedError

    @abstractmethod
    def find_latest_for_node_and_types(
        self,
        node_id: str,
        types: Sequence[str],
        limit: int,
    ) -> List[Job]:
        """
        Jobs for the node (restricted to types when non-empty), newest created first.
        """
        raise NotImplementedError


class NodeRepository(ABC):
    """
    Persistence contract for nodes.
    """

    @abstractmethod
    def create(self, node: Node) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, node_id: str) -> Optional[Node]:
        raise NotImplementedError

    @abstractmethod
    def update(self, node: Node) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Node]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, node_id: str) -> None:
        """
        Remove the node with its pools and blocks in one step.

        Raises NodeInUseError, deleting nothing, while any block on the
        node's pools is bound to a workload.
        """
        raise NotImplementedError


class PortRepository(ABC):
    """
    Persistence contract for port pools and blocks.

    allocate() and modify_block() run their callback while holding an
    exclusive lock on the pool, so two writers never plan against the same
    snapshot of the pool's blocks.
    """

    @abstractmethod
    def create_pool(self, pool: PortPool) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_pool(self, pool_id: str) -> Optional[PortPool]:
        raise NotImplementedError

    @abstractmethod
    def list_pools_for_node(self, node_id: str) -> List[PortPool]:
        raise NotImplementedError

    @abstractmethod
    def get_block(self, block_id: str) -> Optional[PortBlock]:
        raise NotImplementedError

    @abstractmethod
    def list_blocks(self, pool_id: str) -> List[PortBlock]:
        """Blocks of the pool ordered by first port."""
        raise NotImplementedError

    @abstractmethod
    def list_customer_blocks(self, customer_id: str) -> List[PortBlock]:
        raise NotImplementedError

    @abstractmethod
    def find_by_workload(self, workload_id: str) -> Optional[PortBlock]:
        raise NotImplementedError

    @abstractmethod
    def allocate(self, pool_id: str, planner: AllocationPlanner) -> List[PortBlock]:
        """
        Lock the pool, plan new blocks against its current blocks, insert them.
        """
        raise NotImplementedError

    @abstractmethod
    def modify_block(self, block_id: str, mutator: BlockMutator) -> PortBlock:
        """
        Lock the block's pool, mutate the block, persist it.
        """
        raise NotImplementedError
