"""
Order Workflows.

The order lifecycle state machine.  ``OrderStateMachine`` accepts a
request only when ``ORDER_WORKFLOW`` has an edge for
``(current status, action)`` and that edge's guard passes.
"""

from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("modules.orders.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

EDITOR_ASSIGNABLE = Guard(
    name="editor_assignable",
    description="Order has no editor yet, or the caller is the assigned editor",
)

REVISION_ALLOWANCE = Guard(
    name="revision_allowance",
    description="Customer has a revision round left under the resolved policy",
)

logger.info(
    "order_workflow_guards_defined",
    extra={"guards": [EDITOR_ASSIGNABLE.name, REVISION_ALLOWANCE.name]},
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

ORDER_WORKFLOW = Workflow(
    name="order_fulfillment",
    description="Editing order lifecycle from placement to approval",
    initial_state="pending",
    states=(
        "pending",
        "processing",
        "human_check",
        "in_revision",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("pending", "processing", action="accept", guard=EDITOR_ASSIGNABLE),
        Transition("pending", "cancelled", action="decline"),
        Transition("processing", "cancelled", action="decline"),
        Transition("processing", "processing", action="upload_deliverable"),
        Transition("in_revision", "in_revision", action="upload_deliverable"),
        Transition("processing", "human_check", action="mark_complete"),
        Transition("in_revision", "human_check", action="mark_complete"),
        Transition("in_revision", "processing", action="resume_work"),
        Transition("human_check", "in_revision", action="request_revision", guard=REVISION_ALLOWANCE),
        Transition("human_check", "completed", action="approve", triggers_invoice=True),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "order_workflow_registered",
    extra={
        "workflow_name": ORDER_WORKFLOW.name,
        "state_count": len(ORDER_WORKFLOW.states),
        "transition_count": len(ORDER_WORKFLOW.transitions),
        "initial_state": ORDER_WORKFLOW.initial_state,
    },
)
