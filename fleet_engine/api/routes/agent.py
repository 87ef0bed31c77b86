# fleet_engine/api/routes/agent.py
"""Node-facing API: heartbeat, job poll, job result."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from fleet_engine.api.dependencies import get_authenticated_node, get_dispatcher, get_node_manager
from fleet_engine.api.schemas.agent import (
    AgentJobResponse,
    HeartbeatRequest,
    HeartbeatResponse,
    JobResultRequest,
    JobResultResponse,
)
from fleet_engine.config import settings
from fleet_engine.disk.protection import is_protection_active
from fleet_engine.node_manager.models import Node

router = APIRouter(prefix="/agent", tags=["agent"])


@router.post("/heartbeat", response_model=HeartbeatResponse)
def heartbeat(
    request: HeartbeatRequest,
    http_request: Request,
    node: Node = Depends(get_authenticated_node),
    node_manager=Depends(get_node_manager),
):
    ip = http_request.client.host if http_request.client else None

    node = node_manager.record_heartbeat(
        node.node_id,
        stats=request.stats,
        version=request.version,
        ip=ip,
        roles=request.roles,
        metadata=request.metadata,
        status=request.status,
    )

    protect_active = False
    if request.disk is not None:
        state = node_manager.record_disk_stat(
            node.node_id,
            request.disk.free_bytes,
            request.disk.free_percent,
            request.disk.checked_at,
        )
        protect_active = state.protect_active
    else:
        protect_active = is_protection_active(node, node.last_heartbeat_at)

    return HeartbeatResponse(
        node_id=node.node_id,
        status=node.status,
        disk_protect_active=protect_active,
    )


@router.get("/jobs", response_model=List[AgentJobResponse])
def poll_jobs(
    limit: Optional[int] = Query(default=None),
    node: Node = Depends(get_authenticated_node),
    dispatcher=Depends(get_dispatcher),
):
    """Hand out queued jobs in creation order; each is marked running for this node."""
    jobs = dispatcher.claim_for_node(node.node_id, limit or settings.job_poll_limit)

    return [
        AgentJobResponse(
            id=job.job_id,
            type=job.job_type,
            payload=job.payload,
            created_at=job.created_at,
        )
        for job in jobs
    ]


@router.post("/jobs/{job_id}/result", response_model=JobResultResponse)
def report_result(
    job_id: str,
    request: JobResultRequest,
    node: Node = Depends(get_authenticated_node),
    dispatcher=Depends(get_dispatcher),
):
    job = dispatcher.record_result(
        job_id,
        node.node_id,
        request.status,
        output=request.output,
        completed_at=request.completed_at,
    )
    return JobResultResponse(id=job.job_id, status=job.status.value)
