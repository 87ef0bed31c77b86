"""Port pool and port block (lease) models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from fleet_engine.core.models import utcnow


MIN_PORT = 1
MAX_PORT = 65535


class PortProtocol(Enum):
    TCP = "tcp"
    UDP = "udp"
    BOTH = "both"


@dataclass
class PortPool:
    """Inclusive [start_port, end_port] range owned by one node."""
    pool_id: str
    node_id: str
    name: str
    start_port: int
    end_port: int
    protocol: PortProtocol = PortProtocol.BOTH

    # Bumped on every allocation, used to detect racing writers
    lease_version: int = 0

    created_at: datetime = field(default_factory=utcnow)

    @property
    def size(self) -> int:
        return self.end_port - self.start_port + 1

    def contains(self, port: int) -> bool:
        return self.start_port <= port <= self.end_port


@dataclass
class PortBlock:
    """Ports leased to one customer, optionally bound to one workload."""
    block_id: str
    pool_id: str
    customer_id: str
    ports: List[int] = field(default_factory=list)

    workload_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    released_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.ports = sorted(set(self.ports))

    @property
    def start_port(self) -> Optional[int]:
        return self.ports[0] if self.ports else None

    @property
    def end_port(self) -> Optional[int]:
        return self.ports[-1] if self.ports else None

    @property
    def is_assigned(self) -> bool:
        return self.workload_id is not None

    @property
    def holds_ports(self) -> bool:
        """A block holds its ports until it is explicitly released."""
        return self.released_at is None

    def assign(self, workload_id: str, now: datetime) -> None:
        self.workload_id = workload_id
        self.assigned_at = now
        self.released_at = None
        self.updated_at = now

    def release(self, now: datetime) -> None:
        self.workload_id = None
        self.released_at = now
        self.updated_at = now

    def ports_csv(self) -> str:
        return ",".join(str(port) for port in self.ports)
