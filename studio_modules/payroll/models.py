"""
Payroll Domain Models (``studio_modules.payroll.models``).

Responsibility
--------------
Frozen dataclass value objects representing the nouns of the payroll
cycle engine: employees and their compensation profile, attendance and
duty feed records, deduction rates, deduction line items, slip drafts,
persisted slips and cycles, the typed administrative patch, and the
payloads handed to the notification and ledger collaborators.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
the calculator, the repository and the services, and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from studio_kernel.exceptions import ValidationError
from studio_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.models")

ZERO = Decimal("0")


class CycleStatus(Enum):
    """Payroll cycle lifecycle states."""
    DRAFT = "DRAFT"
    WAITING_REVIEW = "WAITING_REVIEW"
    READY_TO_PAY = "READY_TO_PAY"
    PAID = "PAID"


class SlipStatus(Enum):
    """Compensation slip lifecycle states."""
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DISPUTED = "DISPUTED"
    PAID = "PAID"


class EmployeeAction(Enum):
    """Responses an employee can give to their own slip."""
    ACKNOWLEDGE = "ACKNOWLEDGE"
    DISPUTE = "DISPUTE"


class DeductionType(Enum):
    """Kinds of disciplinary deduction line items."""
    ABSENT = "ABSENT"
    LATE = "LATE"
    MISSED_DUTY = "MISSED_DUTY"


class TaxScheme(Enum):
    """Withholding schemes applied to base salary."""
    NONE = "NONE"
    WHT_3 = "WHT_3"


class NotificationKind(Enum):
    """Notification categories understood by the dispatcher."""
    INFO = "INFO"
    ACTION = "ACTION"


class NotificationAudience(Enum):
    """
    Who receives a notification.

    LISTED sends to the ``user_ids`` carried on the notification; PRIVILEGED
    is resolved from the personnel directory when the notification is
    delivered.
    """
    LISTED = "LISTED"
    PRIVILEGED = "PRIVILEGED"


# Attendance statuses that count as a full-day absence
ABSENCE_STATUSES = frozenset({"ABSENT", "NO_SHOW"})

# Duty resolutions that count as a missed duty
MISSED_DUTY_RESOLUTIONS = frozenset({"ABANDONED", "ACCEPTED_FAULT"})


# ---------------------------------------------------------------------------
# Collaborator feed records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Employee:
    """An employee with the compensation profile from the personnel directory."""
    id: UUID
    name: str
    base_salary: Decimal
    social_security_included: bool = False
    tax_scheme: TaxScheme = TaxScheme.NONE
    role: str = "MEMBER"
    position: str | None = None
    is_active: bool = True

    def __post_init__(self):
        if self.base_salary < 0:
            logger.warning(
                "employee_negative_base_salary",
                extra={
                    "employee_id": str(self.id),
                    "base_salary": str(self.base_salary),
                },
            )
            raise ValueError("base_salary cannot be negative")


@dataclass(frozen=True)
class AttendanceRecord:
    """One day of attendance from the attendance feed."""
    user_id: UUID
    date: date
    status: str
    check_in_time: datetime | None = None


@dataclass(frozen=True)
class DutyRecord:
    """One duty-roster assignment from the duty feed."""
    assignee_id: UUID
    date: date
    title: str
    resolution_status: str


@dataclass(frozen=True)
class DeductionRateConfig:
    """Disciplinary deduction amounts in force at generation time."""
    late_rate_per_occurrence: Decimal
    absent_rate_per_day: Decimal
    missed_duty_rate_per_occurrence: Decimal
    version: str = "1"


# ---------------------------------------------------------------------------
# Slips and cycles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeductionItem:
    """Immutable audit record of a single disciplinary deduction."""
    date: date
    type: DeductionType
    amount: Decimal
    details: str

    def to_dict(self) -> dict[str, str]:
        return {
            "date": self.date.isoformat(),
            "type": self.type.value,
            "amount": str(self.amount),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeductionItem:
        return cls(
            date=date.fromisoformat(data["date"]),
            type=DeductionType(data["type"]),
            amount=Decimal(data["amount"]),
            details=data.get("details", ""),
        )


@dataclass(frozen=True)
class SlipDraft:
    """Itemized compensation computed for one employee before persistence."""
    user_id: UUID
    base_salary: Decimal
    tax: Decimal
    social_security_contribution: Decimal
    disciplinary_deduction: Decimal
    deduction_snapshot: tuple[DeductionItem, ...]
    total_income: Decimal
    total_deduction: Decimal
    net_total: Decimal
    ot_hours: Decimal = ZERO
    ot_pay: Decimal = ZERO
    bonus: Decimal = ZERO
    commission: Decimal = ZERO
    allowance: Decimal = ZERO
    leave_deduction: Decimal = ZERO
    advance_payment: Decimal = ZERO


@dataclass(frozen=True)
class CompensationSlip:
    """One employee's itemized compensation record within a cycle."""
    id: UUID
    cycle_id: UUID
    user_id: UUID
    base_salary: Decimal
    ot_hours: Decimal
    ot_pay: Decimal
    bonus: Decimal
    commission: Decimal
    allowance: Decimal
    total_income: Decimal
    tax: Decimal
    social_security_contribution: Decimal
    leave_deduction: Decimal
    disciplinary_deduction: Decimal
    advance_payment: Decimal
    total_deduction: Decimal
    net_total: Decimal
    status: SlipStatus
    deduction_snapshot: tuple[DeductionItem, ...] = ()
    dispute_reason: str | None = None
    transfer_proof_ref: str | None = None
    acknowledged_at: datetime | None = None
    note: str | None = None
    version: int = 1


@dataclass(frozen=True)
class PayrollCycle:
    """One payroll period's container for all employees' slips."""
    id: UUID
    period_key: str
    status: CycleStatus
    created_by: UUID
    created_at: datetime
    due_date: date | None = None
    total_payout: Decimal | None = None
    finalized_by: UUID | None = None
    finalized_at: datetime | None = None
    rates: DeductionRateConfig | None = None


# ---------------------------------------------------------------------------
# Administrative patch
# ---------------------------------------------------------------------------


# Patch fields that change money; frozen once the owning cycle is PAID
MONETARY_PATCH_FIELDS = (
    "base_salary",
    "ot_hours",
    "ot_pay",
    "bonus",
    "commission",
    "allowance",
    "tax",
    "social_security_contribution",
    "leave_deduction",
    "disciplinary_deduction",
    "advance_payment",
)

# Statuses HR may set directly; PAID is reserved for finalization
ADMIN_SETTABLE_STATUSES = frozenset(
    {SlipStatus.PENDING, SlipStatus.ACKNOWLEDGED, SlipStatus.DISPUTED}
)


@dataclass(frozen=True)
class SlipPatch:
    """
    Typed partial update applied by HR to a slip.

    Every field is optional; ``None`` means "leave unchanged".  Derived
    totals (``total_income``, ``total_deduction``, ``net_total``) are not
    patchable -- they are recomputed from the components after the merge.
    """
    base_salary: Decimal | None = None
    ot_hours: Decimal | None = None
    ot_pay: Decimal | None = None
    bonus: Decimal | None = None
    commission: Decimal | None = None
    allowance: Decimal | None = None
    tax: Decimal | None = None
    social_security_contribution: Decimal | None = None
    leave_deduction: Decimal | None = None
    disciplinary_deduction: Decimal | None = None
    advance_payment: Decimal | None = None
    status: SlipStatus | None = None
    transfer_proof_ref: str | None = None
    note: str | None = None

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided, by name."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def touches_money(self) -> bool:
        return any(getattr(self, name) is not None for name in MONETARY_PATCH_FIELDS)

    def validate(self, allow_empty: bool = False) -> None:
        """
        Reject patches that cannot be merged.

        Raises:
            ValidationError: negative or non-Decimal amount, a status HR may
                not set, or (unless ``allow_empty``) no fields at all.
        """
        if not allow_empty and not self.changes():
            raise ValidationError("patch", "at least one field must be provided")
        for name in MONETARY_PATCH_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, Decimal):
                raise ValidationError(name, f"must be a Decimal, got {type(value).__name__}")
            if not value.is_finite():
                raise ValidationError(name, "must be a finite amount")
            if value < 0:
                raise ValidationError(name, f"cannot be negative (got {value})")
        if self.status is not None and self.status not in ADMIN_SETTABLE_STATUSES:
            raise ValidationError(
                "status",
                f"{self.status.value} can only be set by cycle finalization",
            )


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileUpload:
    """A transfer-proof attachment to be stored by the file-storage collaborator."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class ExpensePosting:
    """Aggregate salary expense handed to the ledger at finalization."""
    category: str
    amount: Decimal
    date: date
    description: str
    reference: str
    recorded_by: str | None = None


@dataclass(frozen=True)
class Notification:
    """A notification request for one or more users."""
    user_ids: tuple[UUID, ...]
    title: str
    message: str
    kind: NotificationKind = NotificationKind.INFO
    audience: NotificationAudience = NotificationAudience.LISTED


@dataclass(frozen=True)
class FinalizationResult:
    """Outcome of closing a cycle."""
    cycle: PayrollCycle
    total_payout: Decimal
    slip_count: int
    expense_reference: str | None
    notifications_enqueued: int = 0


@dataclass(frozen=True)
class DispatchReport:
    """Counts from one outbox dispatch pass."""
    delivered: int = 0
    retried: int = 0
    failed: int = 0
    failed_keys: tuple[str, ...] = field(default_factory=tuple)

    @property
    def all_delivered(self) -> bool:
        return self.retried == 0 and self.failed == 0
