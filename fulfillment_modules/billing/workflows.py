"""
Billing Workflows.

Post-raise invoice status changes synchronized from the external ledger.
An invoice enters the workflow at ``draft`` or ``authorised`` (the
partner's preference) when it is raised; ``paid`` is terminal.
"""

from fulfillment_kernel.domain.workflow import Transition, Workflow
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("modules.billing.workflows")


INVOICE_STATUS_WORKFLOW = Workflow(
    name="invoice_status",
    description="External invoice status after the invoice was raised",
    initial_state="draft",
    states=("draft", "authorised", "sent", "paid", "overdue"),
    transitions=(
        Transition("draft", "authorised", action="authorise"),
        Transition("draft", "sent", action="send"),
        Transition("authorised", "sent", action="send"),
        Transition("authorised", "paid", action="pay"),
        Transition("authorised", "overdue", action="mark_overdue"),
        Transition("sent", "paid", action="pay"),
        Transition("sent", "overdue", action="mark_overdue"),
        Transition("overdue", "paid", action="pay"),
    ),
    terminal_states=("paid",),
)


def status_change_allowed(from_status: str, to_status: str) -> bool:
    """True when the workflow has an edge ``from_status -> to_status``."""
    return any(
        t.from_state == from_status and t.to_state == to_status
        for t in INVOICE_STATUS_WORKFLOW.transitions
    )


logger.info(
    "invoice_status_workflow_registered",
    extra={
        "workflow_name": INVOICE_STATUS_WORKFLOW.name,
        "transition_count": len(INVOICE_STATUS_WORKFLOW.transitions),
    },
)
