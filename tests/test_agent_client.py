"""Test the node-side API client."""

import pytest
import requests

from fleet_engine.agent_client import client as client_module
from fleet_engine.agent_client.client import AgentApiClient, AgentApiError


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class Recorder:
    """Stands in for requests.get/post and remembers the last call."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def api():
    return AgentApiClient("http://panel.test/", "node-1", "s3cret", timeout=5)


def test_heartbeat_sends_credentials(api, monkeypatch):
    post = Recorder(FakeResponse(body={"node_id": "node-1", "status": "online", "disk_protect_active": False}))
    monkeypatch.setattr(client_module.requests, "post", post)

    result = api.send_heartbeat(stats={"os": "linux"}, version="1.0.0", disk={"free_bytes": 1, "free_percent": 50})

    url, kwargs = post.calls[0]
    assert url == "http://panel.test/agent/heartbeat"
    assert kwargs["headers"] == {"X-Agent-ID": "node-1", "X-Agent-Token": "s3cret"}
    assert kwargs["json"]["disk"] == {"free_bytes": 1, "free_percent": 50}
    assert "roles" not in kwargs["json"]
    assert result["status"] == "online"


def test_fetch_jobs(api, monkeypatch):
    get = Recorder(FakeResponse(body=[
        {"id": "j1", "type": "firewall.open_ports", "payload": {"ports": "1,2"}, "created_at": "2026-01-01T00:00:00Z"},
    ]))
    monkeypatch.setattr(client_module.requests, "get", get)

    jobs = api.fetch_jobs(limit=5)

    assert jobs[0].job_id == "j1"
    assert jobs[0].job_type == "firewall.open_ports"
    assert jobs[0].payload == {"ports": "1,2"}
    assert get.calls[0][1]["params"] == {"limit": 5}


def test_report_result_error(api, monkeypatch):
    post = Recorder(FakeResponse(status_code=409, body={"error": "JobInvalidStateError", "detail": "already finished"}))
    monkeypatch.setattr(client_module.requests, "post", post)

    with pytest.raises(AgentApiError) as exc_info:
        api.report_result("j1", "success", {"log": "x"})

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "already finished"
    assert post.calls[0][0] == "http://panel.test/agent/jobs/j1/result"


def test_error_without_json_body(api, monkeypatch):
    monkeypatch.setattr(client_module.requests, "get", Recorder(FakeResponse(status_code=502, text="bad gateway")))

    with pytest.raises(AgentApiError) as exc_info:
        api.fetch_jobs()

    assert exc_info.value.detail == "bad gateway"


def test_health_check_handles_connection_errors(api, monkeypatch):
    monkeypatch.setattr(client_module.requests, "get", Recorder(requests.ConnectionError("down")))

    assert api.health_check() is False
