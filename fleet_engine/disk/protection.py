"""Disk admission control: gates provisioning on a node's reported free disk."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from fleet_engine.core.errors import AdmissionDenied, FleetValidationError
from fleet_engine.node_manager.models import DISK_STAT_KEY, PROTECTION_KEY, Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiskStat:
    free_bytes: int
    free_percent: float
    checked_at: datetime


@dataclass(frozen=True)
class AdmissionDenial:
    node_id: str
    free_percent: float
    threshold_percent: int

    @property
    def message(self) -> str:
        return (
            f"Node {self.node_id} is in disk protect mode "
            f"({self.free_percent:.1f}% free, threshold {self.threshold_percent}%). "
            "Provisioning is temporarily blocked."
        )

    def to_error(self) -> AdmissionDenied:
        return AdmissionDenied(self.node_id, self.free_percent, self.threshold_percent)


@dataclass(frozen=True)
class DiskProtectionState:
    """Derived view for dashboards; never persisted."""
    free_percent: Optional[float]
    free_bytes: Optional[int]
    checked_at: Optional[datetime]
    protect_active: bool
    override_active: bool
    override_until: Optional[datetime]
    warning_active: bool
    warning_percent: int
    hard_block_percent: int
    threshold_percent: int

    @property
    def usage_percent(self) -> Optional[float]:
        if self.free_percent is None:
            return None
        return round(100.0 - self.free_percent, 2)


def _parse_disk_stat(raw: Any) -> Optional[DiskStat]:
    if not isinstance(raw, dict):
        return None

    free_bytes = raw.get("free_bytes")
    free_percent = raw.get("free_percent")
    checked_at = raw.get("checked_at")

    if isinstance(free_bytes, bool) or isinstance(free_percent, bool):
        return None
    try:
        free_bytes = int(free_bytes)
        free_percent = float(free_percent)
    except (TypeError, ValueError):
        return None

    if isinstance(checked_at, str) and checked_at:
        try:
            checked_at = datetime.fromisoformat(checked_at.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(checked_at, datetime):
        return None

    return DiskStat(free_bytes=free_bytes, free_percent=free_percent, checked_at=checked_at)


def get_disk_stat(node: Node) -> Optional[DiskStat]:
    """Last reported disk stat, or None when telemetry is missing or malformed."""
    stat = _parse_disk_stat((node.metadata or {}).get(DISK_STAT_KEY))
    if stat is None:
        stat = _parse_disk_stat((node.last_heartbeat_stats or {}).get(DISK_STAT_KEY))
    return stat


def is_override_active(node: Node, now: datetime) -> bool:
    until = node.disk_protect_override_until
    return until is not None and now < until


def is_protection_active(node: Node, now: datetime) -> bool:
    if is_override_active(node, now):
        return False

    stat = get_disk_stat(node)
    if stat is None:
        # Fail open: a freshly registered node has no telemetry yet.
        return False

    return stat.free_percent <= node.disk_protect_threshold_percent


def guard_node_provisioning(node: Node, now: datetime) -> Optional[AdmissionDenial]:
    """None when provisioning may proceed, otherwise the denial reason."""
    if not is_protection_active(node, now):
        return None

    stat = get_disk_stat(node)
    return AdmissionDenial(
        node_id=node.node_id,
        free_percent=stat.free_percent,
        threshold_percent=node.disk_protect_threshold_percent,
    )


def require_provisioning_allowed(node: Node, now: datetime) -> None:
    denial = guard_node_provisioning(node, now)
    if denial is not None:
        logger.warning(f"[disk] {denial.message}")
        raise denial.to_error()


def protection_state(node: Node, now: datetime) -> DiskProtectionState:
    stat = get_disk_stat(node)
    warning = False
    if stat is not None:
        warning = (100.0 - stat.free_percent) >= node.disk_warning_percent

    return DiskProtectionState(
        free_percent=stat.free_percent if stat else None,
        free_bytes=stat.free_bytes if stat else None,
        checked_at=stat.checked_at if stat else None,
        protect_active=is_protection_active(node, now),
        override_active=is_override_active(node, now),
        override_until=node.disk_protect_override_until,
        warning_active=warning,
        warning_percent=node.disk_warning_percent,
        hard_block_percent=node.disk_hard_block_percent,
        threshold_percent=node.disk_protect_threshold_percent,
    )


def update_disk_stat(
    node: Node,
    free_bytes: int,
    free_percent: float,
    checked_at: datetime,
) -> Tuple[bool, bool]:
    """
    Store a new disk stat in node metadata.

    Returns (previous, current) raw protect flags, ignoring any override.
    """
    metadata: Dict[str, Any] = dict(node.metadata or {})

    previous = False
    stored = metadata.get(PROTECTION_KEY)
    if isinstance(stored, dict) and "active" in stored:
        previous = bool(stored["active"])

    current = free_percent <= node.disk_protect_threshold_percent
    metadata[DISK_STAT_KEY] = {
        "free_bytes": int(free_bytes),
        "free_percent": float(free_percent),
        "checked_at": checked_at.isoformat(),
    }
    metadata[PROTECTION_KEY] = {
        "active": current,
        "updated_at": checked_at.isoformat(),
    }
    node.set_metadata(metadata)

    return previous, current


def override_until(now: datetime, minutes: int) -> Optional[datetime]:
    """New override expiry. Replaces any prior override; minutes <= 0 clears it."""
    if minutes <= 0:
        return None
    return now + timedelta(minutes=minutes)


def validate_disk_settings(
    scan_interval_seconds: int,
    warning_percent: int,
    hard_block_percent: int,
    protect_threshold_percent: int,
) -> None:
    if scan_interval_seconds < 60:
        raise FleetValidationError("disk scan interval must be at least 60 seconds")

    if not 1 <= warning_percent <= 99:
        raise FleetValidationError("disk warning percent must be between 1 and 99")

    # Opaque reporting threshold; not consulted by admission.
    if hard_block_percent < 100:
        raise FleetValidationError("disk hard block percent must be at least 100")

    if not 1 <= protect_threshold_percent <= 20:
        raise FleetValidationError("disk protection threshold must be between 1 and 20 percent")
