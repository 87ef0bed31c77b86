"""Test the HTTP boundary."""

import pytest
from fastapi.testclient import TestClient

from fleet_engine.api.main import create_app
from fleet_engine.container import get_container


@pytest.fixture
def client(container):
    app = create_app()
    app.dependency_overrides[get_container] = lambda: container
    return TestClient(app)


@pytest.fixture
def agent(client):
    """Registers a node over HTTP and returns its auth headers."""
    response = client.post("/nodes/register", json={"name": "node-1", "roles": ["game"]})
    assert response.status_code == 201
    body = response.json()
    return {"X-Agent-ID": body["node_id"], "X-Agent-Token": body["secret"]}


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestAgentRoutes:
    """Test node-facing endpoints."""

    def test_missing_credentials(self, client):
        assert client.post("/agent/heartbeat", json={}).status_code == 401

    def test_wrong_secret(self, client, agent):
        headers = dict(agent, **{"X-Agent-Token": "nope"})

        assert client.get("/agent/jobs", headers=headers).status_code == 401

    def test_heartbeat(self, client, agent):
        response = client.post(
            "/agent/heartbeat",
            json={"stats": {"os": "linux"}, "version": "1.0.0", "disk": {"free_bytes": 100, "free_percent": 3}},
            headers=agent,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "online"
        assert body["disk_protect_active"] is True

    def test_poll_and_report(self, client, agent, dispatcher):
        node_id = agent["X-Agent-ID"]
        first = dispatcher.enqueue("custom.step", {"agent_id": node_id, "n": 1})
        second = dispatcher.enqueue("custom.step", {"agent_id": node_id, "n": 2})
        dispatcher.enqueue("custom.step", {"agent_id": "someone-else"})

        jobs = client.get("/agent/jobs", headers=agent).json()
        assert [j["id"] for j in jobs] == [first.job_id, second.job_id]
        assert jobs[0]["payload"]["n"] == 1

        response = client.post(
            f"/agent/jobs/{first.job_id}/result",
            json={"status": "success", "output": {"message": "done"}},
            headers=agent,
        )
        assert response.status_code == 200
        assert response.json() == {"id": first.job_id, "status": "succeeded"}

        again = client.post(f"/agent/jobs/{first.job_id}/result", json={"status": "failed"}, headers=agent)
        assert again.status_code == 409

    def test_report_unknown_job(self, client, agent):
        response = client.post("/agent/jobs/missing/result", json={"status": "success"}, headers=agent)

        assert response.status_code == 404

    def test_report_bad_status(self, client, agent, dispatcher):
        job = dispatcher.enqueue("custom.step", {"agent_id": agent["X-Agent-ID"]})
        client.get("/agent/jobs", headers=agent)

        response = client.post(f"/agent/jobs/{job.job_id}/result", json={"status": "done"}, headers=agent)

        assert response.status_code == 400


class TestNodeRoutes:
    """Test admin endpoints."""

    def test_list_and_get(self, client, agent):
        node_id = agent["X-Agent-ID"]

        listed = client.get("/nodes").json()
        single = client.get(f"/nodes/{node_id}").json()

        assert [n["node_id"] for n in listed] == [node_id]
        assert single["status"] == "offline"
        assert single["disk"]["protect_active"] is False
        assert single["roles"] == ["game"]

    def test_get_unknown(self, client):
        assert client.get("/nodes/missing").status_code == 404

    def test_disk_settings(self, client, agent):
        node_id = agent["X-Agent-ID"]
        body = {
            "scan_interval_seconds": 120,
            "warning_percent": 90,
            "hard_block_percent": 100,
            "protect_threshold_percent": 2,
        }

        response = client.put(f"/nodes/{node_id}/disk-settings", json=body)
        assert response.status_code == 200
        assert response.json()["disk_protect_threshold_percent"] == 2

        body["protect_threshold_percent"] = 50
        assert client.put(f"/nodes/{node_id}/disk-settings", json=body).status_code == 400

    def test_disk_override(self, client, agent):
        node_id = agent["X-Agent-ID"]

        response = client.put(f"/nodes/{node_id}/disk-override", json={"minutes": 30})

        assert response.status_code == 200
        assert response.json()["disk"]["override_active"] is True

    def test_delete_in_use(self, client, agent, lease_manager):
        node_id = agent["X-Agent-ID"]
        pool = lease_manager.create_pool(node_id, "game", 10000, 10009)
        lease_manager.allocate_block(pool.pool_id, "cust-1", 1, workload_id="w-1")

        assert client.delete(f"/nodes/{node_id}").status_code == 409

    def test_delete(self, client, agent):
        node_id = agent["X-Agent-ID"]

        assert client.delete(f"/nodes/{node_id}").status_code == 204
        assert client.get(f"/nodes/{node_id}").status_code == 404
