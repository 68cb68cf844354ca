"""Payroll Workflows.

State machines for payroll cycles and compensation slips.
"""

from studio_kernel.domain.workflow import Guard, Transition, Workflow
from studio_kernel.exceptions import InvalidTransitionError
from studio_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

NO_OPEN_DISPUTES = Guard(
    name="no_open_disputes",
    description="No slip in the cycle is DISPUTED",
)

CYCLE_IN_REVIEW = Guard(
    name="cycle_in_review",
    description="Owning cycle is WAITING_REVIEW",
)


# -----------------------------------------------------------------------------
# Cycle Workflow
# -----------------------------------------------------------------------------

PAYROLL_CYCLE_WORKFLOW = Workflow(
    name="payroll_cycle",
    description="Payroll cycle lifecycle: draft, employee review, payout",
    initial_state="DRAFT",
    states=("DRAFT", "WAITING_REVIEW", "READY_TO_PAY", "PAID"),
    transitions=(
        Transition(
            "DRAFT", "WAITING_REVIEW", action="send_to_review",
            requires_privilege=True, emits_side_effects=True,
        ),
        Transition(
            "WAITING_REVIEW", "READY_TO_PAY", action="mark_ready_to_pay",
            guard=NO_OPEN_DISPUTES, requires_privilege=True,
        ),
        Transition(
            "WAITING_REVIEW", "PAID", action="finalize",
            requires_privilege=True, emits_side_effects=True,
        ),
        Transition(
            "READY_TO_PAY", "PAID", action="finalize",
            requires_privilege=True, emits_side_effects=True,
        ),
    ),
    terminal_states=("PAID",),
)

# Cycle states in which the slip roster itself may change (add/delete slip,
# delete the whole cycle)
ROSTER_EDITABLE_CYCLE_STATES = ("DRAFT",)


# -----------------------------------------------------------------------------
# Slip Workflow
# -----------------------------------------------------------------------------

_ADMIN_STATES = ("PENDING", "ACKNOWLEDGED", "DISPUTED")

COMPENSATION_SLIP_WORKFLOW = Workflow(
    name="compensation_slip",
    description="Employee review of a slip, HR override and payout freeze",
    initial_state="PENDING",
    states=("PENDING", "ACKNOWLEDGED", "DISPUTED", "PAID"),
    transitions=(
        Transition("PENDING", "ACKNOWLEDGED", action="acknowledge", guard=CYCLE_IN_REVIEW),
        Transition(
            "PENDING", "DISPUTED", action="dispute",
            guard=CYCLE_IN_REVIEW, emits_side_effects=True,
        ),
        *(
            Transition(source, target, action="admin_set_status", requires_privilege=True)
            for source in _ADMIN_STATES
            for target in _ADMIN_STATES
            if source != target
        ),
        *(
            Transition(source, "PAID", action="mark_paid", requires_privilege=True)
            for source in _ADMIN_STATES
        ),
    ),
    terminal_states=("PAID",),
)

logger.info(
    "payroll_workflows_registered",
    extra={
        "workflows": [PAYROLL_CYCLE_WORKFLOW.name, COMPENSATION_SLIP_WORKFLOW.name],
        "cycle_transition_count": len(PAYROLL_CYCLE_WORKFLOW.transitions),
        "slip_transition_count": len(COMPENSATION_SLIP_WORKFLOW.transitions),
    },
)


def require_transition(
    workflow: Workflow,
    entity_type: str,
    entity_id: object,
    current_state: str,
    action: str,
) -> Transition:
    """
    Look up the declared transition or reject the action.

    Raises:
        InvalidTransitionError: naming the entity, its state and the action,
            plus the actions that are legal from that state.
    """
    transition = workflow.transition_for(current_state, action)
    if transition is None:
        allowed = workflow.allowed_actions(current_state)
        raise InvalidTransitionError(
            entity_type,
            str(entity_id),
            current_state,
            action,
            reason=(
                f"allowed actions: {', '.join(sorted(set(allowed)))}"
                if allowed
                else f"{current_state} is terminal"
            ),
        )
    return transition
