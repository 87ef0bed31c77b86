"""Test liveness derivation from heartbeat age."""

import pytest
from datetime import timedelta

from fleet_engine.core.models import new_id
from fleet_engine.node_manager.liveness import (
    LivenessThresholds,
    resolve_heartbeat_status,
    resolve_status,
)
from fleet_engine.node_manager.models import LivenessState, Node

from tests.helpers import START


class TestHeartbeatAge:
    """Ages are measured in whole minutes."""

    @pytest.mark.parametrize("age, expected", [
        (timedelta(seconds=0), LivenessState.ONLINE),
        (timedelta(minutes=2), LivenessState.ONLINE),
        (timedelta(minutes=2, seconds=59), LivenessState.ONLINE),
        (timedelta(minutes=3), LivenessState.STALE),
        (timedelta(minutes=10, seconds=59), LivenessState.STALE),
        (timedelta(minutes=11), LivenessState.OFFLINE),
        (timedelta(days=3), LivenessState.OFFLINE),
    ])
    def test_age_boundaries(self, age, expected):
        assert resolve_heartbeat_status(START - age, START) == expected

    def test_never_seen_is_offline(self):
        assert resolve_heartbeat_status(None, START) == LivenessState.OFFLINE

    def test_custom_thresholds(self):
        thresholds = LivenessThresholds(online_minutes=0, stale_minutes=1)

        assert resolve_heartbeat_status(START - timedelta(minutes=1), START, thresholds) == LivenessState.STALE


class TestResolveStatus:
    """Stored status wins over heartbeat age when present."""

    def test_reported_custom_status_is_returned_verbatim(self):
        node = Node(node_id=new_id(), status="maintenance", last_heartbeat_at=START)

        liveness = resolve_status(node, START + timedelta(hours=1))

        assert liveness.state == LivenessState.REPORTED
        assert liveness.label == "maintenance"

    def test_stored_known_status_maps_to_state(self):
        node = Node(node_id=new_id(), status="online", last_heartbeat_at=START - timedelta(days=1))

        assert resolve_status(node, START).state == LivenessState.ONLINE

    def test_empty_status_is_derived_from_age(self):
        node = Node(node_id=new_id(), last_heartbeat_at=START - timedelta(minutes=5))
        node.status = ""

        liveness = resolve_status(node, START)

        assert liveness.state == LivenessState.STALE
        assert liveness.label == "stale"
