# fleet_engine/agent_client/client.py
"""Node-side client for the control-plane agent API."""

import requests
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class AgentApiError(RuntimeError):
    """Non-2xx answer from the control plane."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Agent API error {status_code}: {detail}")


@dataclass
class AgentJob:
    """A job handed to this node by the control plane."""
    job_id: str
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None


class AgentApiClient:
    """Client used by a node agent to heartbeat, poll jobs and report results."""

    def __init__(self, base_url: str, agent_id: str, secret: str, timeout: int = 30):
        """
        Initialize client.

        Args:
            base_url: Control plane URL (e.g., "https://panel.example.com")
            agent_id: Node id returned at registration
            secret: Node secret returned at registration
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.agent_id = agent_id
        self.timeout = timeout
        self._secret = secret

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Agent-ID": self.agent_id,
            "X-Agent-Token": self._secret,
        }

    @staticmethod
    def _check(response) -> Any:
        if response.status_code >= 400:
            try:
                detail = response.json().get('detail', response.text)
            except ValueError:
                detail = response.text
            raise AgentApiError(response.status_code, detail)
        return response.json()

    def health_check(self) -> bool:
        """True when the control plane answers /health."""
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Health check failed: {e}")
            return False

    def send_heartbeat(
        self,
        stats: Optional[Dict[str, Any]] = None,
        version: str = "",
        roles: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        disk: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Report liveness and stats.

        Args:
            disk: Optional {"free_bytes", "free_percent", "checked_at"} report

        Returns:
            Control plane view: node_id, status, disk_protect_active
        """
        payload: Dict[str, Any] = {"stats": stats or {}, "version": version}
        if roles is not None:
            payload["roles"] = roles
        if metadata is not None:
            payload["metadata"] = metadata
        if status is not None:
            payload["status"] = status
        if disk is not None:
            payload["disk"] = disk

        response = requests.post(
            f"{self.base_url}/agent/heartbeat",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        return self._check(response)

    def fetch_jobs(self, limit: Optional[int] = None) -> List[AgentJob]:
        """Claim queued jobs for this node, oldest first."""
        params = {"limit": limit} if limit else None
        response = requests.get(
            f"{self.base_url}/agent/jobs",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        data = self._check(response)

        jobs = [
            AgentJob(
                job_id=item['id'],
                job_type=item['type'],
                payload=item.get('payload') or {},
                created_at=item.get('created_at'),
            )
            for item in data
        ]
        if jobs:
            logger.info(f"[agent {self.agent_id}] received {len(jobs)} job(s)")
        return jobs

    def report_result(
        self,
        job_id: str,
        status: str,
        output: Optional[Dict[str, Any]] = None,
        completed_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Report a terminal result ("succeeded"/"success" or "failed").

        Raises:
            AgentApiError: if the control plane rejects the result
        """
        payload: Dict[str, Any] = {"status": status, "output": output or {}}
        if completed_at is not None:
            payload["completed_at"] = completed_at.isoformat()

        response = requests.post(
            f"{self.base_url}/agent/jobs/{job_id}/result",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        result = self._check(response)
        logger.info(f"[agent {self.agent_id}] job {job_id} reported {status}")
        return result
