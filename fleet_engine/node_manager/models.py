# fleet_engine/node_manager/models.py

"""Managed node (agent) models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from fleet_engine.core.models import utcnow


DEFAULT_STATUS = "offline"

# Metadata keys written by the control plane; a heartbeat never overwrites them
DISK_STAT_KEY = "disk_stat"
PROTECTION_KEY = "disk_protection"
CONTROL_PLANE_METADATA_KEYS = (DISK_STAT_KEY, PROTECTION_KEY)


class LivenessState(Enum):
    """Derived node liveness. REPORTED carries an arbitrary node-reported status."""
    ONLINE = "online"
    STALE = "stale"
    OFFLINE = "offline"
    REPORTED = "reported"


@dataclass(frozen=True)
class NodeLiveness:
    state: LivenessState
    reported_status: Optional[str] = None

    @property
    def label(self) -> str:
        if self.state == LivenessState.REPORTED:
            return self.reported_status or ""
        return self.state.value


def normalize_roles(roles: Iterable[Any]) -> List[str]:
    """Trim, drop empty and non-string values, dedupe keeping first occurrence."""
    normalized: List[str] = []
    for role in roles or []:
        if not isinstance(role, str):
            continue
        value = role.strip()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


@dataclass
class Node:
    """Remote host under management."""
    node_id: str
    name: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    status: str = DEFAULT_STATUS
    secret_hash: str = ""

    last_heartbeat_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    last_heartbeat_ip: Optional[str] = None
    last_heartbeat_version: Optional[str] = None
    last_heartbeat_stats: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    # Disk policy
    disk_scan_interval_seconds: int = 180
    disk_warning_percent: int = 85
    disk_hard_block_percent: int = 120
    disk_protect_threshold_percent: int = 5
    disk_protect_override_until: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def set_status(self, status: Optional[str]) -> None:
        self.status = status if status else DEFAULT_STATUS

    def set_roles(self, roles: Iterable[Any]) -> None:
        self.roles = normalize_roles(roles)

    def set_metadata(self, metadata: Optional[Dict[str, Any]]) -> None:
        self.metadata = metadata or None

    def replace_reported_metadata(self, metadata: Dict[str, Any]) -> None:
        """Replace node-reported metadata, keeping the control-plane keys."""
        merged = dict(metadata)
        for key in CONTROL_PLANE_METADATA_KEYS:
            merged.pop(key, None)
            if self.metadata and key in self.metadata:
                merged[key] = self.metadata[key]
        self.set_metadata(merged)

    def record_heartbeat(
        self,
        *,
        stats: Dict[str, Any],
        version: str,
        ip: Optional[str],
        roles: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        now: datetime,
    ) -> None:
        """Apply a heartbeat report."""
        self.last_heartbeat_at = now
        self.last_seen_at = now
        self.last_heartbeat_stats = stats

        resolved_version = version
        if not resolved_version and isinstance(stats.get("version"), str):
            resolved_version = stats["version"]
        if resolved_version:
            self.last_heartbeat_version = resolved_version
        self.last_heartbeat_ip = ip

        if roles:
            self.set_roles(roles)

        if metadata is not None:
            self.replace_reported_metadata(metadata)

        self.set_status(status if status is not None else "online")
        self.updated_at = now

    @property
    def os(self) -> str:
        value = (self.last_heartbeat_stats or {}).get("os")
        return value.lower() if isinstance(value, str) else ""

    @property
    def arch(self) -> str:
        value = (self.last_heartbeat_stats or {}).get("arch")
        return value.lower() if isinstance(value, str) else ""
