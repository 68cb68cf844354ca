"""
Typed Exception Hierarchy for the Studio Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the presentation layer, operational tooling, tests) must be able to
react to a rejected payroll operation without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        manager.finalize_cycle(actor, cycle_id)
    except InvalidTransitionError as e:
        show_error(f"{e.entity_type} is {e.current_state}, cannot {e.action}")
    except ForbiddenError as e:
        show_error(f"{e.actor_name} may not {e.action}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StudioKernelError (base)
    |
    +-- AuthorizationError
    |   +-- ForbiddenError
    |
    +-- NotFoundError
    |   +-- CycleNotFoundError
    |   +-- SlipNotFoundError
    |
    +-- ConflictError
    |   +-- DuplicatePeriodError
    |   +-- DuplicateSlipError
    |
    +-- InvalidTransitionError
    |
    +-- ValidationError
    |
    +-- UpstreamFailureError
    |
    +-- ConcurrencyError
        +-- OptimisticLockError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Authorization   | FORBIDDEN                   | Actor lacks elevated privilege / not owner
----------------|-----------------------------|-----------------------------------------
Not found       | CYCLE_NOT_FOUND             | Unknown cycle id
                | SLIP_NOT_FOUND              | Unknown slip id
----------------|-----------------------------|-----------------------------------------
Conflict        | DUPLICATE_PERIOD            | Cycle already exists for period key
                | DUPLICATE_SLIP              | (cycle, user) slip already exists
----------------|-----------------------------|-----------------------------------------
State machine   | INVALID_TRANSITION          | Status precondition violated
----------------|-----------------------------|-----------------------------------------
Input           | VALIDATION_ERROR            | Empty dispute reason, bad patch, ...
----------------|-----------------------------|-----------------------------------------
Collaborators   | UPSTREAM_FAILURE            | Feed / storage / notifier / ledger failed
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Stale version on a slip mutation

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError/RuntimeError, so domain errors can
   be caught as a group without swallowing programming errors.
2. ``code`` is a class attribute so it is available without instantiation.
3. All context is stored as attributes so it survives logging (the JSON
   formatter emits them as ``exc_*`` fields) and API serialization.
"""


class StudioKernelError(Exception):
    """
    Base exception for all studio kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STUDIO_KERNEL_ERROR"


# Authorization


class AuthorizationError(StudioKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class ForbiddenError(AuthorizationError):
    """Actor is not permitted to perform the requested action."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: str, actor_name: str, action: str, reason: str):
        self.actor_id = actor_id
        self.actor_name = actor_name
        self.action = action
        self.reason = reason
        super().__init__(
            f"{actor_name} ({actor_id}) is not authorized to {action}: {reason}"
        )


# Lookup


class NotFoundError(StudioKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class CycleNotFoundError(NotFoundError):
    """Payroll cycle with given ID was not found."""

    code: str = "CYCLE_NOT_FOUND"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Payroll cycle not found: {cycle_id}")


class SlipNotFoundError(NotFoundError):
    """Compensation slip with given ID was not found."""

    code: str = "SLIP_NOT_FOUND"

    def __init__(self, slip_id: str):
        self.slip_id = slip_id
        super().__init__(f"Compensation slip not found: {slip_id}")


# Uniqueness conflicts


class ConflictError(StudioKernelError):
    """Base exception for uniqueness conflicts."""

    code: str = "CONFLICT"


class DuplicatePeriodError(ConflictError):
    """A payroll cycle already exists for the period key."""

    code: str = "DUPLICATE_PERIOD"

    def __init__(self, period_key: str, existing_cycle_id: str | None = None):
        self.period_key = period_key
        self.existing_cycle_id = existing_cycle_id
        super().__init__(f"A payroll cycle for period {period_key} already exists")


class DuplicateSlipError(ConflictError):
    """A slip already exists for the (cycle, user) pair."""

    code: str = "DUPLICATE_SLIP"

    def __init__(self, cycle_id: str, user_ids: list[str]):
        self.cycle_id = cycle_id
        self.user_ids = user_ids
        super().__init__(
            f"Cycle {cycle_id} already has slips for user(s): {', '.join(user_ids)}"
        )


# State machine


class InvalidTransitionError(StudioKernelError):
    """A status precondition was violated."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {entity_type} {entity_id} "
            f"in state {current_state}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Input validation


class ValidationError(StudioKernelError):
    """Caller-supplied input is missing or malformed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# External collaborators


class UpstreamFailureError(StudioKernelError):
    """A collaborator call (feed, storage, notifier, ledger) failed."""

    code: str = "UPSTREAM_FAILURE"

    def __init__(self, collaborator: str, operation: str, reason: str):
        self.collaborator = collaborator
        self.operation = operation
        self.reason = reason
        super().__init__(f"{collaborator}.{operation} failed: {reason}")


# Concurrency


class ConcurrencyError(StudioKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
