"""
Tests for CollaborationCoordinator and next-step resolution.

These tests verify:
1. sharedState patches merge at the top level and never replace the map
2. Escalation only moves upward unless explicitly reset
3. Escalation to human stops routing with HumanEscalationRequired
4. Snapshot / restore reproduces the context
5. BRANCH routing comes from output, other steps use the static key
"""

import pytest

from playbook_engine.runtime.errors import HumanEscalationRequired
from playbook_engine.runtime.stepwise import CollaborationCoordinator, resolve_next_step_key
from playbook_engine.runtime.types import EscalationLevel, MessageType

from conftest import make_step

BRANCH_STEP = make_step(
    "gate",
    "BRANCH",
    {"sourceKey": "x", "conditions": [], "defaultStepKey": "fallback"},
    next_step_key="static",
)
DATA_STEP = make_step("d", "DATA", {"operation": "transform"}, next_step_key="after")


class TestSharedState:
    """Tests for shared-state merging."""

    def test_patches_merge(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"sharedState": {"x": 1, "y": 1}})
        coordinator.apply_step_output("b", {"sharedState": {"y": 2}})
        assert coordinator.shared_state == {"x": 1, "y": 2}

    def test_shared_state_returned_as_copy(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"sharedState": {"items": [1]}})
        coordinator.shared_state["items"].append(2)
        assert coordinator.shared_state == {"items": [1]}

    def test_non_object_patch_ignored(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"sharedState": ["not", "a", "dict"]})
        coordinator.apply_step_output("b", "plain text output")
        assert coordinator.shared_state == {}


class TestEscalation:
    """Tests for escalation level handling."""

    def test_string_request_raises_level(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"escalation": "supervisor"})
        assert coordinator.escalation_level is EscalationLevel.SUPERVISOR
        assert coordinator.messages[-1].type is MessageType.ESCALATION

    def test_lower_request_ignored(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"escalation": "supervisor"})
        coordinator.apply_step_output("b", {"escalation": "peer"})
        assert coordinator.escalation_level is EscalationLevel.SUPERVISOR
        assert len(coordinator.messages) == 1

    def test_explicit_reset(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"escalation": "supervisor"})
        coordinator.apply_step_output("b", {"escalationReset": True})
        assert coordinator.escalation_level is EscalationLevel.NONE

    def test_dict_request_with_reset_and_reason(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"escalation": "supervisor"})
        coordinator.apply_step_output(
            "b", {"escalation": {"level": "peer", "reason": "second look", "reset": True}}
        )
        assert coordinator.escalation_level is EscalationLevel.PEER
        assert coordinator.escalation_reason == "second look"

    def test_agent_alias_and_unknown_level(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"escalation": "agent"})
        assert coordinator.escalation_level is EscalationLevel.PEER
        coordinator.apply_step_output("b", {"escalation": "emperor"})
        assert coordinator.escalation_level is EscalationLevel.PEER

    def test_human_escalation_stops_routing(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output(
            "d", {"escalation": {"level": "human", "reason": "refund over limit"}}
        )
        with pytest.raises(HumanEscalationRequired) as exc_info:
            coordinator.determine_next_step(DATA_STEP, {})
        assert exc_info.value.step_key == "d"
        assert exc_info.value.reason == "refund over limit"
        assert exc_info.value.kind == "HumanEscalationRequired"


class TestSnapshot:
    """Tests for snapshot and restore."""

    def test_restore_round_trip(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"sharedState": {"k": "v"}, "escalation": "peer"})
        snapshot = coordinator.snapshot()

        restored = CollaborationCoordinator.restore(snapshot)
        assert restored.shared_state == {"k": "v"}
        assert restored.escalation_level is EscalationLevel.PEER
        assert restored.snapshot() == snapshot

    def test_snapshot_is_deep_copy(self):
        coordinator = CollaborationCoordinator()
        coordinator.apply_step_output("a", {"sharedState": {"k": {"n": 1}}})
        snapshot = coordinator.snapshot()
        snapshot["sharedState"]["k"]["n"] = 99
        assert coordinator.shared_state == {"k": {"n": 1}}

    def test_restore_empty(self):
        restored = CollaborationCoordinator.restore(None)
        assert restored.escalation_level is EscalationLevel.NONE
        assert restored.shared_state == {}


class TestNextStepResolution:
    """Tests for resolve_next_step_key."""

    def test_branch_uses_output(self):
        assert resolve_next_step_key(BRANCH_STEP, {"nextStepKey": "chosen"}) == "chosen"

    def test_branch_falls_back_to_static_key(self):
        assert resolve_next_step_key(BRANCH_STEP, {"matched": False}) == "static"

    def test_non_branch_ignores_output_key(self):
        assert resolve_next_step_key(DATA_STEP, {"nextStepKey": "elsewhere"}) == "after"

    def test_terminal_step(self):
        step = make_step("end", "DATA", {"operation": "transform"})
        assert resolve_next_step_key(step, {}) is None

    def test_coordinator_delegates_to_resolver(self):
        coordinator = CollaborationCoordinator()
        assert coordinator.determine_next_step(DATA_STEP, None) == "after"
