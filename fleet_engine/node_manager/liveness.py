"""Node liveness derived from heartbeat age."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fleet_engine.node_manager.models import LivenessState, Node, NodeLiveness


@dataclass(frozen=True)
class LivenessThresholds:
    # One missed poll cycle must not flip a node to offline.
    online_minutes: int = 2
    stale_minutes: int = 10


DEFAULT_THRESHOLDS = LivenessThresholds()


def resolve_heartbeat_status(
    last_heartbeat_at: Optional[datetime],
    now: datetime,
    thresholds: LivenessThresholds = DEFAULT_THRESHOLDS,
) -> LivenessState:
    if last_heartbeat_at is None:
        return LivenessState.OFFLINE

    minutes = int((now - last_heartbeat_at).total_seconds() // 60)

    if minutes <= thresholds.online_minutes:
        return LivenessState.ONLINE

    if minutes <= thresholds.stale_minutes:
        return LivenessState.STALE

    return LivenessState.OFFLINE


def resolve_status(
    node: Node,
    now: datetime,
    thresholds: LivenessThresholds = DEFAULT_THRESHOLDS,
) -> NodeLiveness:
    """
    Stored status wins when non-empty (nodes may report e.g. "maintenance");
    otherwise the status is derived from heartbeat age.
    """
    status = node.status or ""
    if status:
        for state in (LivenessState.ONLINE, LivenessState.STALE, LivenessState.OFFLINE):
            if status == state.value:
                return NodeLiveness(state)
        return NodeLiveness(LivenessState.REPORTED, reported_status=status)

    return NodeLiveness(resolve_heartbeat_status(node.last_heartbeat_at, now, thresholds))
