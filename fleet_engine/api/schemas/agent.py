from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DiskStatReport(BaseModel):
    free_bytes: int = Field(..., ge=0)
    free_percent: float = Field(..., ge=0, le=100)
    checked_at: Optional[datetime] = None


class HeartbeatRequest(BaseModel):
    stats: Dict[str, Any] = Field(default_factory=dict)
    version: str = ""
    roles: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    disk: Optional[DiskStatReport] = None


class HeartbeatResponse(BaseModel):
    node_id: str
    status: str
    disk_protect_active: bool


class AgentJobResponse(BaseModel):
    id: str
    type: str
    payload: Dict[str, Any]
    created_at: datetime


class JobResultRequest(BaseModel):
    status: str
    output: Dict[str, Any] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None


class JobResultResponse(BaseModel):
    id: str
    status: str
