# fleet_engine/core/validation.py
from typing import Any, Dict, List

from fleet_engine.core.errors import FleetValidationError


# Required payload keys per known job type. Unknown types pass through.
REQUIRED_PAYLOAD_KEYS: Dict[str, List[str]] = {
    "firewall.open_ports": ["instance_id", "port_block_id", "ports"],
    "firewall.close_ports": ["instance_id", "port_block_id", "ports"],
    "agent.update": ["download_url", "checksums_url", "asset_name", "version"],
    "agent.self_update": ["download_url", "checksums_url", "asset_name", "version"],
    "node.disk_stat": [],
    "instance.create": ["instance_id"],
    "instance.delete": ["instance_id"],
    "webspace.create": ["webspace_id"],
    "ts3.install": ["install_dir", "service_name"],
    "ts3.instance.create": ["instance_id", "voice_port", "query_port", "file_port", "db_mode"],
    "ts3.instance.action": ["instance_id", "action"],
    "sinusbot.install": ["install_dir", "service_name"],
    "sinusbot.instance.create": ["instance_id", "data_dir"],
}


def missing_payload_keys(job_type: str, payload: Dict[str, Any]) -> List[str]:
    return [
        key for key in REQUIRED_PAYLOAD_KEYS.get(job_type, [])
        if key not in payload
    ]


def validate_new_job(job_type: str, payload: Dict[str, Any]) -> None:
    # -------------------------
    # Type
    # -------------------------
    if not isinstance(job_type, str) or not job_type.strip():
        raise FleetValidationError("job type is required")

    # -------------------------
    # Payload
    # -------------------------
    if not isinstance(payload, dict):
        raise FleetValidationError("payload must be a dict")

    for key in payload:
        if not isinstance(key, str) or not key:
            raise FleetValidationError("payload keys must be non-empty strings")

    agent_id = payload.get("agent_id")
    if not isinstance(agent_id, str) or not agent_id:
        raise FleetValidationError("payload.agent_id is required")

    missing = missing_payload_keys(job_type, payload)
    if missing:
        raise FleetValidationError(
            f"{job_type} payload missing required field(s): {', '.join(missing)}"
        )


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise FleetValidationError("limit must be a positive integer")
    return limit
