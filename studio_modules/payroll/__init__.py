"""
Payroll Module (``studio_modules.payroll``).

Responsibility
--------------
The payroll cycle engine: generate a monthly cycle of compensation slips
from the personnel directory and the attendance/duty feeds, route it
through employee review (acknowledge / dispute) with HR overrides, then
finalize it into a paid state with an aggregate salary expense and payout
notifications.

Architecture position
---------------------
**Modules layer** -- pure calculator and workflows, SQLAlchemy persistence,
and ``CycleManager`` as the transaction-owning facade.

Invariants enforced
-------------------
* One cycle per period key; one slip per (cycle, employee).
* ``net_total = total_income - total_deduction`` on every slip, always
  derived server-side.
* Status changes follow ``PAYROLL_CYCLE_WORKFLOW`` and
  ``COMPENSATION_SLIP_WORKFLOW``.
* Side effects are delivered at-least-once through the outbox.
"""

from studio_modules.payroll.authorizer import Actor, Authorizer
from studio_modules.payroll.calculator import compute_slip_draft, period_window
from studio_modules.payroll.config import PayrollConfig
from studio_modules.payroll.cycle_manager import CycleManager
from studio_modules.payroll.models import (
    AttendanceRecord,
    CompensationSlip,
    CycleStatus,
    DeductionItem,
    DeductionRateConfig,
    DeductionType,
    DispatchReport,
    DutyRecord,
    Employee,
    EmployeeAction,
    ExpensePosting,
    FileUpload,
    FinalizationResult,
    NotificationAudience,
    NotificationKind,
    PayrollCycle,
    SlipDraft,
    SlipPatch,
    SlipStatus,
    TaxScheme,
)
from studio_modules.payroll.workflows import (
    COMPENSATION_SLIP_WORKFLOW,
    PAYROLL_CYCLE_WORKFLOW,
)

__all__ = [
    "Actor",
    "AttendanceRecord",
    "Authorizer",
    "COMPENSATION_SLIP_WORKFLOW",
    "CompensationSlip",
    "CycleManager",
    "CycleStatus",
    "DeductionItem",
    "DeductionRateConfig",
    "DeductionType",
    "DispatchReport",
    "DutyRecord",
    "Employee",
    "EmployeeAction",
    "ExpensePosting",
    "FileUpload",
    "FinalizationResult",
    "NotificationAudience",
    "NotificationKind",
    "PAYROLL_CYCLE_WORKFLOW",
    "PayrollConfig",
    "PayrollCycle",
    "SlipDraft",
    "SlipPatch",
    "SlipStatus",
    "TaxScheme",
    "compute_slip_draft",
    "period_window",
]
