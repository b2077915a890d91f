"""Incentive Program Workflows.

State machines for programs, enrollments, accruals, claims and payouts.
Services call ``require_transition`` before mutating a status column; any
``(state, action)`` pair not listed here is rejected.
"""

from uuid import UUID

from incentive_kernel.domain.workflow import Guard, Transition, Workflow, find_transition
from incentive_kernel.exceptions import InvalidTransitionError
from incentive_kernel.logging_config import get_logger

logger = get_logger("programs.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ACTIVE_ENROLLMENT = Guard(
    name="active_enrollment",
    description="Dealer has an active enrollment in the claim's program",
)

COOP_BALANCE_AVAILABLE = Guard(
    name="coop_balance_available",
    description="Requested amount does not exceed the available co-op balance",
)

DENIAL_REASON_GIVEN = Guard(
    name="denial_reason_given",
    description="A denial carries a reason for the dealer",
)

NO_DEPENDENTS = Guard(
    name="no_dependents",
    description="Program has no enrollments, accruals, claims or payouts",
)

logger.info(
    "incentive_workflow_guards_defined",
    extra={
        "guards": [
            ACTIVE_ENROLLMENT.name,
            COOP_BALANCE_AVAILABLE.name,
            DENIAL_REASON_GIVEN.name,
            NO_DEPENDENTS.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Program
# -----------------------------------------------------------------------------

PROGRAM_WORKFLOW = Workflow(
    name="incentive_program",
    description="Incentive program lifecycle",
    initial_state="draft",
    states=("draft", "active", "paused", "completed", "cancelled"),
    transitions=(
        Transition("draft", "active", action="activate"),
        Transition("active", "paused", action="pause"),
        Transition("paused", "active", action="activate"),
        Transition("active", "completed", action="complete"),
        Transition("paused", "completed", action="complete"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("active", "cancelled", action="cancel"),
        Transition("paused", "cancelled", action="cancel"),
    ),
    terminal_states=("completed", "cancelled"),
)

PROGRAM_ACTIONS = ("activate", "pause", "complete", "cancel")


# -----------------------------------------------------------------------------
# Enrollment
# -----------------------------------------------------------------------------

ENROLLMENT_WORKFLOW = Workflow(
    name="dealer_enrollment",
    description="Dealer participation in a program",
    initial_state="pending",
    states=("pending", "active", "suspended", "withdrawn"),
    transitions=(
        Transition("pending", "active", action="approve"),
        Transition("active", "suspended", action="suspend"),
        Transition("suspended", "active", action="reinstate"),
        Transition("pending", "withdrawn", action="withdraw"),
        Transition("active", "withdrawn", action="withdraw"),
        Transition("suspended", "withdrawn", action="withdraw"),
    ),
    terminal_states=("withdrawn",),
)


# -----------------------------------------------------------------------------
# Accrual
# -----------------------------------------------------------------------------

ACCRUAL_WORKFLOW = Workflow(
    name="rebate_accrual",
    description="Accrual locking: calculated -> finalized -> paid",
    initial_state="calculated",
    states=("calculated", "finalized", "paid"),
    transitions=(
        Transition("calculated", "calculated", action="recalculate"),
        Transition("calculated", "finalized", action="finalize"),
        Transition("finalized", "paid", action="mark_paid"),
    ),
    terminal_states=("paid",),
)


# -----------------------------------------------------------------------------
# Claim
# -----------------------------------------------------------------------------

CLAIM_WORKFLOW = Workflow(
    name="incentive_claim",
    description="Dealer claim review",
    initial_state="draft",
    states=("draft", "submitted", "under_review", "approved", "denied", "paid"),
    transitions=(
        Transition("draft", "submitted", action="submit", guard=ACTIVE_ENROLLMENT),
        Transition("submitted", "under_review", action="start_review"),
        Transition("submitted", "approved", action="approve"),
        Transition("under_review", "approved", action="approve"),
        Transition("submitted", "denied", action="deny", guard=DENIAL_REASON_GIVEN),
        Transition("under_review", "denied", action="deny", guard=DENIAL_REASON_GIVEN),
        Transition("approved", "paid", action="mark_paid"),
    ),
    terminal_states=("denied", "paid"),
)


# -----------------------------------------------------------------------------
# Payout
# -----------------------------------------------------------------------------

PAYOUT_WORKFLOW = Workflow(
    name="incentive_payout",
    description="Payout settlement",
    initial_state="pending",
    states=("pending", "processing", "completed", "failed"),
    transitions=(
        Transition("pending", "processing", action="start_processing"),
        Transition("pending", "completed", action="complete"),
        Transition("processing", "completed", action="complete"),
        Transition("pending", "failed", action="fail"),
        Transition("processing", "failed", action="fail"),
    ),
    terminal_states=("completed", "failed"),
)

logger.info(
    "incentive_workflows_registered",
    extra={
        "workflows": [
            PROGRAM_WORKFLOW.name,
            ENROLLMENT_WORKFLOW.name,
            ACCRUAL_WORKFLOW.name,
            CLAIM_WORKFLOW.name,
            PAYOUT_WORKFLOW.name,
        ],
    },
)


def require_transition(
    workflow: Workflow,
    entity_id: UUID,
    current_state: str,
    action: str,
) -> str:
    """Return the target state for ``action`` or raise ``InvalidTransitionError``."""
    transition = find_transition(workflow, current_state, action)
    if transition is None:
        raise InvalidTransitionError(workflow.name, str(entity_id), current_state, action)
    return transition.to_state
