"""Test node manager service."""

import pytest
from datetime import timedelta

from fleet_engine.core.errors import (
    AuthenticationError,
    FleetValidationError,
    NodeInUseError,
    NodeNotFound,
)
from fleet_engine.core.models import JobStatus
from fleet_engine.disk.protection import guard_node_provisioning
from fleet_engine.node_manager.models import LivenessState
from fleet_engine.node_manager.updates import is_update_available, normalize_version

from tests.helpers import START


class TestRegistration:
    """Test registration and authentication."""

    def test_register_returns_secret_once(self, node_manager, registered, audit):
        node, secret = registered

        stored = node_manager.get_node(node.node_id)
        assert len(node.node_id) == 32
        assert stored.secret_hash != secret
        assert len(stored.secret_hash) == 64
        assert stored.roles == ["game"]
        assert audit.of_type("node.registered")[0].subject_id == node.node_id

    def test_authenticate(self, node_manager, registered):
        node, secret = registered

        assert node_manager.authenticate(node.node_id, secret).node_id == node.node_id

    @pytest.mark.parametrize("node_id, secret", [("missing", "x"), (None, "x")])
    def test_authenticate_unknown_node(self, node_manager, node_id, secret):
        with pytest.raises(AuthenticationError):
            node_manager.authenticate(node_id, secret)

    def test_authenticate_wrong_secret(self, node_manager, registered):
        node, _ = registered

        with pytest.raises(AuthenticationError):
            node_manager.authenticate(node.node_id, "wrong")

    def test_get_unknown_node(self, node_manager):
        with pytest.raises(NodeNotFound):
            node_manager.get_node("missing")


class TestHeartbeat:
    """Test heartbeat ingestion."""

    def test_heartbeat_updates_node(self, node_manager, node, clock, audit):
        updated = node_manager.record_heartbeat(
            node.node_id,
            stats={"os": "linux", "arch": "amd64"},
            version="1.0.0",
            ip="10.0.0.9",
        )

        assert updated.status == "online"
        assert updated.last_heartbeat_at == clock.now
        assert node_manager.get_node(node.node_id).last_heartbeat_ip == "10.0.0.9"
        assert len(audit.of_type("node.heartbeat")) == 1

    def test_heartbeat_rejects_non_dict_stats(self, node_manager, node):
        with pytest.raises(FleetValidationError):
            node_manager.record_heartbeat(node.node_id, stats=["bad"])

    def test_listing_derives_liveness(self, node_manager, node, clock):
        overview = node_manager.list_nodes_with_status()
        assert overview[0].liveness.state == LivenessState.OFFLINE

        node_manager.record_heartbeat(node.node_id, stats={}, version="1.0.0", status="maintenance")
        overview = node_manager.list_nodes_with_status()
        assert overview[0].liveness.label == "maintenance"


class TestDiskPolicy:
    """Test disk stat ingestion and settings."""

    def test_entering_and_leaving_protect_mode_is_audited(self, node_manager, node, audit):
        state = node_manager.record_disk_stat(node.node_id, 1024, 50.0)
        assert not state.protect_active
        assert audit.of_type("node.disk_protection_changed") == []

        state = node_manager.record_disk_stat(node.node_id, 1024, 3.0)
        assert state.protect_active

        node_manager.record_disk_stat(node.node_id, 1024, 2.0)
        node_manager.record_disk_stat(node.node_id, 1024, 40.0)

        changes = audit.of_type("node.disk_protection_changed")
        assert [e.metadata["active"] for e in changes] == [True, False]

    def test_heartbeat_metadata_does_not_lift_protection(self, node_manager, node):
        node_manager.record_disk_stat(node.node_id, 1000, 3.0)

        node_manager.record_heartbeat(node.node_id, stats={}, version="1.0.0", metadata={"hostname": "n1"})

        stored = node_manager.get_node(node.node_id)
        denial = guard_node_provisioning(stored, START)
        assert denial is not None
        assert denial.free_percent == 3.0
        assert stored.metadata["hostname"] == "n1"

    @pytest.mark.parametrize("free_bytes, free_percent", [(-1, 10.0), (10, 101.0), (10, "5")])
    def test_disk_stat_validation(self, node_manager, node, free_bytes, free_percent):
        with pytest.raises(FleetValidationError):
            node_manager.record_disk_stat(node.node_id, free_bytes, free_percent)

    def test_update_disk_settings(self, node_manager, node):
        node_manager.update_disk_settings(node.node_id, 300, 80, 150, 10)

        stored = node_manager.get_node(node.node_id)
        assert stored.disk_scan_interval_seconds == 300
        assert stored.disk_warning_percent == 80
        assert stored.disk_hard_block_percent == 150
        assert stored.disk_protect_threshold_percent == 10

    def test_update_disk_settings_rejects_invalid(self, node_manager, node):
        with pytest.raises(FleetValidationError):
            node_manager.update_disk_settings(node.node_id, 30, 80, 150, 10)

        assert node_manager.get_node(node.node_id).disk_scan_interval_seconds == 180

    def test_override_replaces_and_clears(self, node_manager, node, clock):
        node_manager.set_protection_override(node.node_id, 60)
        clock.advance(minutes=50)
        node_manager.set_protection_override(node.node_id, 30)

        stored = node_manager.get_node(node.node_id)
        assert stored.disk_protect_override_until == clock.now + timedelta(minutes=30)

        node_manager.set_protection_override(node.node_id, 0)
        assert node_manager.get_node(node.node_id).disk_protect_override_until is None


class TestDeletion:
    """Test node deletion guard."""

    def test_delete_refused_while_block_assigned(self, node_manager, lease_manager, node, pool):
        block = lease_manager.allocate_block(pool.pool_id, "cust-1", 2, workload_id="w-1")

        with pytest.raises(NodeInUseError):
            node_manager.delete_node(node.node_id)

        lease_manager.release_instance(block.block_id)
        node_manager.delete_node(node.node_id)

        with pytest.raises(NodeNotFound):
            node_manager.get_node(node.node_id)
        assert lease_manager.list_pools(node.node_id) == []


class TestAgentUpdates:
    """Test agent self-update queueing."""

    def _online(self, node_manager, name, os_name, version, arch="amd64"):
        node, _ = node_manager.register_node(name)
        node_manager.record_heartbeat(node.node_id, stats={"os": os_name, "arch": arch}, version=version)
        return node

    def test_version_compare(self):
        assert normalize_version("v1.2.10") == (1, 2, 10)
        assert is_update_available("1.2.9", "v1.2.10") is True
        assert is_update_available("1.3", "1.3.0") is False
        assert is_update_available(None, "1.0.0") is None

    def test_queues_per_platform(self, node_manager, dispatcher):
        linux = self._online(node_manager, "l", "Linux", "1.0.0")
        windows = self._online(node_manager, "w", "windows", "1.0.0")
        self._online(node_manager, "arm", "linux", "1.0.0", arch="arm64")
        self._online(node_manager, "current", "linux", "2.0.0")
        node_manager.register_node("never-seen")

        jobs = node_manager.queue_agent_updates("v2.0.0", "acme/agent")

        by_node = {job.node_id: job for job in jobs}
        assert set(by_node) == {linux.node_id, windows.node_id}
        assert by_node[linux.node_id].job_type == "agent.update"
        assert by_node[windows.node_id].job_type == "agent.self_update"
        assert by_node[windows.node_id].payload["asset_name"] == "easywi-agent-windows-amd64.exe"
        assert by_node[linux.node_id].payload["download_url"] == (
            "https://github.com/acme/agent/releases/download/v2.0.0/easywi-agent-linux-amd64"
        )

    def test_queueing_is_idempotent_while_in_flight(self, node_manager, dispatcher, audit):
        node = self._online(node_manager, "l", "linux", "1.0.0")

        first = node_manager.queue_agent_updates("2.0.0", "acme/agent")
        dispatcher.mark_running(first[0].job_id, node.node_id)
        second = node_manager.queue_agent_updates("2.0.0", "acme/agent")

        assert len(first) == 1
        assert second == []
        assert len(audit.of_type("node.agent_update_queued")) == 1

        dispatcher.record_result(first[0].job_id, node.node_id, "failed")
        third = node_manager.queue_agent_updates("2.0.0", "acme/agent")

        assert len(third) == 1
        overview = node_manager.node_overview(node.node_id)
        assert overview.update_job.job_id == third[0].job_id
        assert overview.update_job.status == JobStatus.QUEUED

    def test_no_repository_queues_nothing(self, node_manager):
        self._online(node_manager, "l", "linux", "1.0.0")

        assert node_manager.queue_agent_updates("2.0.0", "") == []
