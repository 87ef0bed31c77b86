"""Test domain models, job state machine, payload validation and masking."""

import pytest

from fleet_engine.core.errors import FleetValidationError, JobInvalidStateError
from fleet_engine.core.masking import MASK, mask_payload
from fleet_engine.core.models import Job, JobStatus, new_id
from fleet_engine.core.state_machine import JobStateMachine
from fleet_engine.core.validation import validate_limit, validate_new_job
from fleet_engine.node_manager.models import Node, normalize_roles
from fleet_engine.ports.models import PortBlock

from tests.helpers import START


class TestNode:
    """Test node heartbeat application."""

    def test_normalize_roles_trims_and_dedupes(self):
        assert normalize_roles([" game ", "web", "game", "", 3, None, "  "]) == ["game", "web"]

    def test_new_node_defaults(self):
        node = Node(node_id=new_id())

        assert node.status == "offline"
        assert node.disk_scan_interval_seconds == 180
        assert node.disk_warning_percent == 85
        assert node.disk_hard_block_percent == 120
        assert node.disk_protect_threshold_percent == 5
        assert node.disk_protect_override_until is None

    def test_heartbeat_sets_timestamps_and_defaults_status(self):
        node = Node(node_id=new_id())

        node.record_heartbeat(stats={"os": "Linux"}, version="1.2.0", ip="10.0.0.5", now=START)

        assert node.last_heartbeat_at == START
        assert node.last_seen_at == START
        assert node.last_heartbeat_version == "1.2.0"
        assert node.last_heartbeat_ip == "10.0.0.5"
        assert node.status == "online"
        assert node.os == "linux"

    def test_heartbeat_version_falls_back_to_stats(self):
        node = Node(node_id=new_id())

        node.record_heartbeat(stats={"version": "2.0.1"}, version="", ip=None, now=START)

        assert node.last_heartbeat_version == "2.0.1"

    def test_heartbeat_keeps_roles_when_none_reported(self):
        node = Node(node_id=new_id(), roles=["game"])

        node.record_heartbeat(stats={}, version="1", ip=None, roles=[], now=START)
        assert node.roles == ["game"]

        node.record_heartbeat(stats={}, version="1", ip=None, roles=["web", "web"], now=START)
        assert node.roles == ["web"]

    def test_heartbeat_replaces_metadata_only_when_given(self):
        node = Node(node_id=new_id(), metadata={"rack": "a1"})

        node.record_heartbeat(stats={}, version="1", ip=None, now=START)
        assert node.metadata == {"rack": "a1"}

        node.record_heartbeat(stats={}, version="1", ip=None, metadata={"rack": "b2"}, now=START)
        assert node.metadata == {"rack": "b2"}

    def test_heartbeat_metadata_keeps_disk_telemetry(self):
        disk_stat = {"free_bytes": 1000, "free_percent": 3.0, "checked_at": START.isoformat()}
        node = Node(node_id=new_id(), metadata={"rack": "a1", "disk_stat": disk_stat, "disk_protection": {"active": True}})

        node.record_heartbeat(
            stats={}, version="1", ip=None,
            metadata={"hostname": "n1", "disk_stat": {"free_percent": 90.0}},
            now=START,
        )

        assert node.metadata == {
            "hostname": "n1",
            "disk_stat": disk_stat,
            "disk_protection": {"active": True},
        }

    def test_empty_reported_status_becomes_offline(self):
        node = Node(node_id=new_id())

        node.record_heartbeat(stats={}, version="1", ip=None, status="", now=START)

        assert node.status == "offline"

    def test_custom_reported_status_is_kept(self):
        node = Node(node_id=new_id())

        node.record_heartbeat(stats={}, version="1", ip=None, status="maintenance", now=START)

        assert node.status == "maintenance"


class TestPortBlock:
    """Test port block bookkeeping."""

    def test_ports_are_sorted_and_unique(self):
        block = PortBlock(block_id="b", pool_id="p", customer_id="c", ports=[10003, 10001, 10003, 10002])

        assert block.ports == [10001, 10002, 10003]
        assert block.start_port == 10001
        assert block.end_port == 10003
        assert block.ports_csv() == "10001,10002,10003"

    def test_block_holds_ports_until_released(self):
        block = PortBlock(block_id="b", pool_id="p", customer_id="c", ports=[10000])
        assert block.holds_ports
        assert not block.is_assigned

        block.assign("w-1", START)
        assert block.holds_ports
        assert block.is_assigned

        block.release(START)
        assert not block.holds_ports
        assert not block.is_assigned
        assert block.customer_id == "c"


class TestJobStateMachine:
    """Test job transitions."""

    def _job(self):
        return Job(job_id=new_id(), job_type="instance.create", payload={"agent_id": "n1"})

    def test_full_lifecycle(self):
        job = self._job()

        JobStateMachine.start(job, "n1", now=START)
        assert job.status == JobStatus.RUNNING
        assert job.locked_by == "n1"

        JobStateMachine.finish(job, JobStatus.SUCCEEDED, {"ok": True}, now=START)
        assert job.status == JobStatus.SUCCEEDED
        assert job.result.output == {"ok": True}
        assert job.result.completed_at == START
        assert job.locked_by is None

    def test_queued_cannot_finish(self):
        with pytest.raises(JobInvalidStateError):
            JobStateMachine.finish(self._job(), JobStatus.FAILED, {})

    def test_terminal_never_reopens(self):
        job = self._job()
        JobStateMachine.start(job, "n1")
        JobStateMachine.finish(job, JobStatus.FAILED, {})

        for status in (JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.SUCCEEDED):
            with pytest.raises(JobInvalidStateError):
                JobStateMachine.transition(job, status)

    def test_node_id_comes_from_payload(self):
        assert self._job().node_id == "n1"
        assert Job(job_id="x", job_type="t", payload={"agent_id": 5}).node_id == ""


class TestValidation:
    """Test new job validation."""

    def test_requires_agent_id(self):
        with pytest.raises(FleetValidationError):
            validate_new_job("instance.create", {"instance_id": "i"})

    def test_requires_type(self):
        with pytest.raises(FleetValidationError):
            validate_new_job("  ", {"agent_id": "n1"})

    def test_known_type_requires_its_keys(self):
        with pytest.raises(FleetValidationError, match="port_block_id"):
            validate_new_job("firewall.open_ports", {"agent_id": "n1", "instance_id": "i", "ports": "1"})

    def test_unknown_type_passes_through(self):
        validate_new_job("custom.thing", {"agent_id": "n1", "anything": 1})

    @pytest.mark.parametrize("limit", [0, -1, "5", None])
    def test_limit_must_be_positive(self, limit):
        with pytest.raises(FleetValidationError):
            validate_limit(limit)


class TestMasking:
    """Test payload redaction for audit records."""

    def test_masks_nested_sensitive_keys(self):
        masked = mask_payload({
            "agent_id": "n1",
            "db_password": "hunter2",
            "config": {"api_token": "abc", "port": 9987},
            "users": [{"name": "x", "secret": "y"}],
        })

        assert masked["agent_id"] == "n1"
        assert masked["db_password"] == MASK
        assert masked["config"] == {"api_token": MASK, "port": 9987}
        assert masked["users"] == [{"name": "x", "secret": MASK}]
