from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RegisterNodeRequest(BaseModel):
    """Register node request."""
    name: Optional[str] = Field(default=None, max_length=255)
    roles: List[str] = Field(default_factory=list)


class RegisterNodeResponse(BaseModel):
    """Returned once; the secret is not retrievable later."""
    node_id: str
    secret: str


class DiskStateResponse(BaseModel):
    free_percent: Optional[float]
    usage_percent: Optional[float]
    checked_at: Optional[datetime]
    protect_active: bool
    override_active: bool
    override_until: Optional[datetime]
    warning_active: bool


class NodeResponse(BaseModel):
    """Node response."""
    node_id: str
    name: Optional[str]
    roles: List[str]
    status: str
    last_heartbeat_at: Optional[datetime]
    last_heartbeat_version: Optional[str]
    disk_scan_interval_seconds: int
    disk_warning_percent: int
    disk_hard_block_percent: int
    disk_protect_threshold_percent: int
    disk: DiskStateResponse
    update_job_status: Optional[str] = None


class DiskSettingsRequest(BaseModel):
    scan_interval_seconds: int
    warning_percent: int
    hard_block_percent: int
    protect_threshold_percent: int


class DiskOverrideRequest(BaseModel):
    """minutes <= 0 clears the override."""
    minutes: int
