"""
Typed Exception Hierarchy for the Incentive Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (the admin UI layer, batch schedulers, tests) must be
able to tell "this claim is in the wrong state" from "this dealer has no
co-op balance left" without parsing message strings.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        service.submit_claim(...)
    except InsufficientBalanceError as e:
        api_response(code=e.code, available=str(e.available))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    IncentiveEngineError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- ProgramNotFoundError
    |   +-- EnrollmentNotFoundError
    |   +-- AccrualNotFoundError
    |   +-- ClaimNotFoundError
    |   +-- PayoutNotFoundError
    |
    +-- ProgramError
    |   +-- ProgramNotEligibleError
    |   +-- DuplicateProgramCodeError
    |   +-- ProgramNotDeletableError
    |   +-- BudgetExceededError
    |
    +-- EnrollmentError
    |   +-- DuplicateEnrollmentError
    |   +-- EnrollmentNotActiveError
    |   +-- DealerNotEligibleError
    |
    +-- AccrualError
    |   +-- DuplicateAccrualError
    |   +-- AccrualLockedError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- BalanceError
    |   +-- InsufficientBalanceError
    |
    +-- PayoutError
        +-- AlreadyProcessedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                    | When Raised
------------|-------------------------|-------------------------------------------
Validation  | VALIDATION_ERROR        | Missing/malformed input, before any write
------------|-------------------------|-------------------------------------------
Not found   | PROGRAM_NOT_FOUND       | Unknown program id or code
            | ENROLLMENT_NOT_FOUND    | Unknown enrollment / dealer-program pair
            | ACCRUAL_NOT_FOUND       | Unknown accrual id
            | CLAIM_NOT_FOUND         | Unknown claim id
            | PAYOUT_NOT_FOUND        | Unknown payout id
------------|-------------------------|-------------------------------------------
Program     | PROGRAM_NOT_ELIGIBLE    | Wrong type/status for the operation
            | DUPLICATE_PROGRAM_CODE  | Program code already in use
            | PROGRAM_NOT_DELETABLE   | Not draft, or has dependents
            | BUDGET_EXCEEDED         | Payout would exceed budget or max payout
------------|-------------------------|-------------------------------------------
Enrollment  | DUPLICATE_ENROLLMENT    | Dealer already enrolled in program
            | ENROLLMENT_NOT_ACTIVE   | Operation needs an active enrollment
            | DEALER_NOT_ELIGIBLE     | Tier/region/deadline rules reject dealer
------------|-------------------------|-------------------------------------------
Accrual     | DUPLICATE_ACCRUAL       | Accrual already exists for period key
            | ACCRUAL_LOCKED          | Accrual finalized/paid, cannot recalculate
------------|-------------------------|-------------------------------------------
Workflow    | INVALID_TRANSITION      | Action not legal from the current state
------------|-------------------------|-------------------------------------------
Balance     | INSUFFICIENT_BALANCE    | Co-op claim exceeds available balance
------------|-------------------------|-------------------------------------------
Payout      | ALREADY_PROCESSED       | Payout completed / source already paid out

===============================================================================
"""

from __future__ import annotations

from decimal import Decimal


class IncentiveEngineError(Exception):
    """
    Base exception for all incentive engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INCENTIVE_ENGINE_ERROR"


# Validation


class ValidationError(IncentiveEngineError):
    """Input failed validation before any write was attempted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Not-found exceptions


class NotFoundError(IncentiveEngineError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ProgramNotFoundError(NotFoundError):
    """Program with given id or code was not found."""

    code: str = "PROGRAM_NOT_FOUND"
    entity_type = "Program"


class EnrollmentNotFoundError(NotFoundError):
    """Enrollment with given id (or dealer/program pair) was not found."""

    code: str = "ENROLLMENT_NOT_FOUND"
    entity_type = "Enrollment"


class AccrualNotFoundError(NotFoundError):
    code: str = "ACCRUAL_NOT_FOUND"
    entity_type = "Accrual"


class ClaimNotFoundError(NotFoundError):
    code: str = "CLAIM_NOT_FOUND"
    entity_type = "Claim"


class PayoutNotFoundError(NotFoundError):
    code: str = "PAYOUT_NOT_FOUND"
    entity_type = "Payout"


# Program exceptions


class ProgramError(IncentiveEngineError):
    """Base exception for program catalog errors."""

    code: str = "PROGRAM_ERROR"


class ProgramNotEligibleError(ProgramError):
    """Program type or status does not allow the requested operation."""

    code: str = "PROGRAM_NOT_ELIGIBLE"

    def __init__(self, program_id: str, reason: str):
        self.program_id = str(program_id)
        self.reason = reason
        super().__init__(f"Program {program_id} not eligible: {reason}")


class DuplicateProgramCodeError(ProgramError):
    """Program code already in use."""

    code: str = "DUPLICATE_PROGRAM_CODE"

    def __init__(self, program_code: str):
        self.program_code = program_code
        super().__init__(f"Program code already exists: {program_code}")


class ProgramNotDeletableError(ProgramError):
    """Program is not a draft, or still has dependent records."""

    code: str = "PROGRAM_NOT_DELETABLE"

    def __init__(self, program_id: str, reason: str):
        self.program_id = str(program_id)
        self.reason = reason
        super().__init__(f"Program {program_id} cannot be deleted: {reason}")


class BudgetExceededError(ProgramError):
    """A payout would push the program past its budget or payout cap."""

    code: str = "BUDGET_EXCEEDED"

    def __init__(
        self,
        program_id: str,
        limit_name: str,
        limit: Decimal,
        committed: Decimal,
        requested: Decimal,
    ):
        self.program_id = str(program_id)
        self.limit_name = limit_name
        self.limit = limit
        self.committed = committed
        self.requested = requested
        super().__init__(
            f"Program {program_id} {limit_name} of {limit} exceeded: "
            f"{committed} committed, {requested} requested"
        )


# Enrollment exceptions


class EnrollmentError(IncentiveEngineError):
    """Base exception for enrollment ledger errors."""

    code: str = "ENROLLMENT_ERROR"


class DuplicateEnrollmentError(EnrollmentError):
    """Dealer already has an enrollment in the program."""

    code: str = "DUPLICATE_ENROLLMENT"

    def __init__(self, dealer_id: str, program_id: str):
        self.dealer_id = str(dealer_id)
        self.program_id = str(program_id)
        super().__init__(
            f"Dealer {dealer_id} is already enrolled in program {program_id}"
        )


class EnrollmentNotActiveError(EnrollmentError):
    """Operation requires an active enrollment."""

    code: str = "ENROLLMENT_NOT_ACTIVE"

    def __init__(self, dealer_id: str, program_id: str, status: str | None):
        self.dealer_id = str(dealer_id)
        self.program_id = str(program_id)
        self.status = status
        super().__init__(
            f"Dealer {dealer_id} has no active enrollment in program "
            f"{program_id} (status: {status or 'not enrolled'})"
        )


class DealerNotEligibleError(EnrollmentError):
    """Dealer fails the program's enrollment rules."""

    code: str = "DEALER_NOT_ELIGIBLE"

    def __init__(self, dealer_id: str, program_id: str, reason: str):
        self.dealer_id = str(dealer_id)
        self.program_id = str(program_id)
        self.reason = reason
        super().__init__(
            f"Dealer {dealer_id} not eligible for program {program_id}: {reason}"
        )


# Accrual exceptions


class AccrualError(IncentiveEngineError):
    """Base exception for accrual errors."""

    code: str = "ACCRUAL_ERROR"


class DuplicateAccrualError(AccrualError):
    """An accrual already exists for the (program, dealer, period_start) key."""

    code: str = "DUPLICATE_ACCRUAL"

    def __init__(self, program_id: str, dealer_id: str, period_start: str):
        self.program_id = str(program_id)
        self.dealer_id = str(dealer_id)
        self.period_start = str(period_start)
        super().__init__(
            f"Accrual already calculated for dealer {dealer_id} "
            f"period starting {period_start}"
        )


class AccrualLockedError(AccrualError):
    """Accrual is finalized or paid and can no longer be recalculated."""

    code: str = "ACCRUAL_LOCKED"

    def __init__(self, accrual_id: str, status: str):
        self.accrual_id = str(accrual_id)
        self.status = status
        super().__init__(f"Accrual {accrual_id} already {status}")


# Workflow exceptions


class WorkflowError(IncentiveEngineError):
    """Base exception for state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Action is not legal from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, current_state: str, action: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state '{current_state}'"
        )


# Balance exceptions


class BalanceError(IncentiveEngineError):
    """Base exception for co-op balance errors."""

    code: str = "BALANCE_ERROR"


class InsufficientBalanceError(BalanceError):
    """Requested amount exceeds the dealer's available co-op balance."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        dealer_id: str,
        program_id: str,
        requested: Decimal,
        available: Decimal,
    ):
        self.dealer_id = str(dealer_id)
        self.program_id = str(program_id)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient co-op balance: requested {requested}, available {available}"
        )


# Payout exceptions


class PayoutError(IncentiveEngineError):
    """Base exception for payout errors."""

    code: str = "PAYOUT_ERROR"


class AlreadyProcessedError(PayoutError):
    """Payout already completed, or its source already has a live payout."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} has already been processed")
