"""
Tests for the order workflow definition.

The transition table is checked exhaustively: every (status, action) pair
either has exactly the expected edge or none at all.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fulfillment_kernel.domain.workflow import Transition, Workflow
from fulfillment_modules.orders.models import OrderAction, OrderStatus
from fulfillment_modules.orders.workflows import ORDER_WORKFLOW

EXPECTED_EDGES = {
    ("pending", "accept"): "processing",
    ("pending", "decline"): "cancelled",
    ("processing", "decline"): "cancelled",
    ("processing", "upload_deliverable"): "processing",
    ("processing", "mark_complete"): "human_check",
    ("in_revision", "upload_deliverable"): "in_revision",
    ("in_revision", "mark_complete"): "human_check",
    ("in_revision", "resume_work"): "processing",
    ("human_check", "request_revision"): "in_revision",
    ("human_check", "approve"): "completed",
}


class TestOrderWorkflowTable:
    def test_states_match_order_status(self):
        assert set(ORDER_WORKFLOW.states) == {s.value for s in OrderStatus}

    def test_actions_match_order_action(self):
        assert set(ORDER_WORKFLOW.actions) == {a.value for a in OrderAction}

    def test_initial_and_terminal_states(self):
        assert ORDER_WORKFLOW.initial_state == "pending"
        assert set(ORDER_WORKFLOW.terminal_states) == {"completed", "cancelled"}

    @given(
        status=st.sampled_from([s.value for s in OrderStatus]),
        action=st.sampled_from([a.value for a in OrderAction]),
    )
    def test_every_pair_matches_table(self, status, action):
        transition = ORDER_WORKFLOW.transition_for(status, action)
        expected = EXPECTED_EDGES.get((status, action))
        if expected is None:
            assert transition is None
        else:
            assert transition is not None
            assert transition.to_state == expected

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_states_have_no_actions(self, status):
        assert ORDER_WORKFLOW.actions_from(status) == ()

    def test_only_approval_triggers_invoice(self):
        triggering = [t.action for t in ORDER_WORKFLOW.transitions if t.triggers_invoice]
        assert triggering == ["approve"]

    def test_guarded_edges(self):
        guarded = {
            t.action: t.guard.name for t in ORDER_WORKFLOW.transitions if t.guard is not None
        }
        assert guarded == {
            "accept": "editor_assignable",
            "request_revision": "revision_allowance",
        }


class TestWorkflowValidation:
    def test_rejects_outgoing_edge_from_terminal_state(self):
        with pytest.raises(ValueError, match="terminal"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", action="reopen"),),
                terminal_states=("b",),
            )

    def test_rejects_duplicate_edge(self):
        with pytest.raises(ValueError, match="duplicate"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "a", action="go"),
                ),
            )

    def test_rejects_unknown_state(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "z", action="go"),),
            )
