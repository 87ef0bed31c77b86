"""Agent self-update planning."""

import re
from typing import Any, Dict, Optional, Tuple

from fleet_engine.node_manager.models import Node


AGENT_UPDATE_JOB = "agent.update"
AGENT_SELF_UPDATE_JOB = "agent.self_update"
AGENT_UPDATE_JOB_TYPES = (AGENT_UPDATE_JOB, AGENT_SELF_UPDATE_JOB)

# (os, arch) -> release asset
AGENT_ASSETS = {
    ("linux", "amd64"): "easywi-agent-linux-amd64",
    ("windows", "amd64"): "easywi-agent-windows-amd64.exe",
}

RELEASE_DOWNLOAD_URL = "https://github.com/{repository}/releases/download/{version}/{asset}"
CHECKSUMS_ASSET = "checksums-agent.txt"


def normalize_version(version: Optional[str]) -> Optional[Tuple[int, ...]]:
    """'v1.2.10' -> (1, 2, 10). None when there is nothing numeric to compare."""
    if not isinstance(version, str):
        return None
    value = version.strip().lstrip("vV")
    parts = re.findall(r"\d+", value.split("-", 1)[0].split("+", 1)[0])
    if not parts:
        return None
    return tuple(int(part) for part in parts)


def is_update_available(current: Optional[str], latest: Optional[str]) -> Optional[bool]:
    """None when either version is unknown."""
    current_key = normalize_version(current)
    latest_key = normalize_version(latest)
    if current_key is None or latest_key is None:
        return None

    width = max(len(current_key), len(latest_key))
    current_key += (0,) * (width - len(current_key))
    latest_key += (0,) * (width - len(latest_key))
    return current_key < latest_key


def resolve_asset_name(node: Node) -> Optional[str]:
    return AGENT_ASSETS.get((node.os, node.arch))


def resolve_update_job_type(node: Node) -> str:
    """Windows agents cannot replace their own running binary in place."""
    return AGENT_SELF_UPDATE_JOB if node.os == "windows" else AGENT_UPDATE_JOB


def build_update_payload(node: Node, latest_version: str, repository: str) -> Optional[Dict[str, Any]]:
    """Job payload for updating the node's agent, or None when no update applies."""
    if not latest_version or not repository:
        return None

    if is_update_available(node.last_heartbeat_version, latest_version) is not True:
        return None

    asset_name = resolve_asset_name(node)
    if asset_name is None:
        return None

    return {
        "agent_id": node.node_id,
        "download_url": RELEASE_DOWNLOAD_URL.format(
            repository=repository, version=latest_version, asset=asset_name
        ),
        "checksums_url": RELEASE_DOWNLOAD_URL.format(
            repository=repository, version=latest_version, asset=CHECKSUMS_ASSET
        ),
        "asset_name": asset_name,
        "version": latest_version,
    }
