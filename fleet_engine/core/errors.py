# fleet_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class FleetError(Exception):
    """Base class for all fleet orchestration errors."""
    pass


# -----------------------------
# Validation Errors
# -----------------------------

class FleetValidationError(FleetError):
    """Malformed or missing input. Raised before any mutation."""
    pass


class AuthenticationError(FleetError):
    """Unknown node or wrong node secret."""
    pass


# -----------------------------
# Lookup Errors
# -----------------------------

class NotFoundError(FleetError):
    pass


class NodeNotFound(NotFoundError):
    pass


class PortPoolNotFound(NotFoundError):
    pass


class PortBlockNotFound(NotFoundError):
    pass


class JobNotFound(NotFoundError):
    pass


# -----------------------------
# Conflict Errors
# -----------------------------

class ConflictError(FleetError):
    """Request contradicts current state. Each subclass names one remediation."""
    pass


class PortBlockAlreadyAssigned(ConflictError):
    def __init__(self, block_id: str, workload_id: str):
        self.block_id = block_id
        self.workload_id = workload_id
        super().__init__(f"Port block {block_id} is already assigned to {workload_id}")


class PortBlockOwnershipError(ConflictError):
    def __init__(self, block_id: str, customer_id: str):
        self.block_id = block_id
        self.customer_id = customer_id
        super().__init__(f"Port block {block_id} does not belong to customer {customer_id}")


class PortBlockNodeMismatch(ConflictError):
    def __init__(self, block_id: str, node_id: str):
        self.block_id = block_id
        self.node_id = node_id
        super().__init__(f"Port block {block_id} does not belong to node {node_id}")


class PortRangeOverlap(ConflictError):
    def __init__(self, message: str, conflicting_block_id: str = None):
        self.conflicting_block_id = conflicting_block_id
        super().__init__(message)


class JobInvalidStateError(ConflictError):
    """Illegal job status transition attempted."""
    pass


class JobNodeMismatch(ConflictError):
    pass


class NodeInUseError(ConflictError):
    pass


class WorkloadAlreadyBound(ConflictError):
    def __init__(self, workload_id: str, block_id: str):
        self.workload_id = workload_id
        self.block_id = block_id
        super().__init__(f"Workload {workload_id} already holds port block {block_id}")


# -----------------------------
# Capacity / Admission Errors
# -----------------------------

class ResourceExhausted(FleetError):
    pass


class PortPoolExhausted(ResourceExhausted):
    def __init__(self, pool_id: str, port_count: int):
        self.pool_id = pool_id
        self.port_count = port_count
        super().__init__(f"No free run of {port_count} port(s) left in pool {pool_id}")


class AdmissionDenied(FleetError):
    """Node is in disk protect mode; provisioning must not proceed."""

    def __init__(self, node_id: str, free_percent: float, threshold_percent: int):
        self.node_id = node_id
        self.free_percent = free_percent
        self.threshold_percent = threshold_percent
        super().__init__(
            f"Node {node_id} is in disk protect mode "
            f"({free_percent:.1f}% free, threshold {threshold_percent}%)"
        )


# -----------------------------
# Persistence Errors
# -----------------------------

class PersistenceError(FleetError):
    pass


class AlreadyExists(PersistenceError):
    pass


class ConcurrencyError(PersistenceError):
    pass
