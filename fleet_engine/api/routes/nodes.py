# fleet_engine/api/routes/nodes.py
"""Node management API routes."""

from typing import List

from fastapi import APIRouter, Depends, Response

from fleet_engine.api.dependencies import get_node_manager
from fleet_engine.api.schemas.node import (
    DiskOverrideRequest,
    DiskSettingsRequest,
    DiskStateResponse,
    NodeResponse,
    RegisterNodeRequest,
    RegisterNodeResponse,
)
from fleet_engine.node_manager.service import NodeOverview

router = APIRouter(prefix="/nodes", tags=["nodes"])


def _to_response(overview: NodeOverview) -> NodeResponse:
    node = overview.node
    disk = overview.disk
    return NodeResponse(
        node_id=node.node_id,
        name=node.name,
        roles=node.roles,
        status=overview.liveness.label,
        last_heartbeat_at=node.last_heartbeat_at,
        last_heartbeat_version=node.last_heartbeat_version,
        disk_scan_interval_seconds=node.disk_scan_interval_seconds,
        disk_warning_percent=node.disk_warning_percent,
        disk_hard_block_percent=node.disk_hard_block_percent,
        disk_protect_threshold_percent=node.disk_protect_threshold_percent,
        disk=DiskStateResponse(
            free_percent=disk.free_percent,
            usage_percent=disk.usage_percent,
            checked_at=disk.checked_at,
            protect_active=disk.protect_active,
            override_active=disk.override_active,
            override_until=disk.override_until,
            warning_active=disk.warning_active,
        ),
        update_job_status=overview.update_job.status.value if overview.update_job else None,
    )


def _overview(node_manager, node_id: str) -> NodeResponse:
    return _to_response(node_manager.node_overview(node_id))


@router.post("/register", response_model=RegisterNodeResponse, status_code=201)
def register_node(request: RegisterNodeRequest, node_manager=Depends(get_node_manager)):
    """
    Register a new managed node.

    The returned secret authenticates the node's agent and is shown only once.
    """
    node, secret = node_manager.register_node(request.name, request.roles)
    return RegisterNodeResponse(node_id=node.node_id, secret=secret)


@router.get("", response_model=List[NodeResponse])
def list_nodes(node_manager=Depends(get_node_manager)):
    """List all nodes with derived liveness and disk state."""
    return [_to_response(overview) for overview in node_manager.list_nodes_with_status()]


@router.get("/{node_id}", response_model=NodeResponse)
def get_node(node_id: str, node_manager=Depends(get_node_manager)):
    return _overview(node_manager, node_id)


@router.put("/{node_id}/disk-settings", response_model=NodeResponse)
def update_disk_settings(
    node_id: str,
    request: DiskSettingsRequest,
    node_manager=Depends(get_node_manager),
):
    node_manager.update_disk_settings(
        node_id,
        request.scan_interval_seconds,
        request.warning_percent,
        request.hard_block_percent,
        request.protect_threshold_percent,
    )
    return _overview(node_manager, node_id)


@router.put("/{node_id}/disk-override", response_model=NodeResponse)
def set_disk_override(
    node_id: str,
    request: DiskOverrideRequest,
    node_manager=Depends(get_node_manager),
):
    node_manager.set_protection_override(node_id, request.minutes)
    return _overview(node_manager, node_id)


@router.delete("/{node_id}", status_code=204)
def delete_node(node_id: str, node_manager=Depends(get_node_manager)):
    node_manager.delete_node(node_id)
    return Response(status_code=204)
