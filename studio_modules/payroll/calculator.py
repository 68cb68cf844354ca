"""
Compensation Calculator (``studio_modules.payroll.calculator``).

Responsibility
--------------
Pure functions turning an employee's compensation profile plus a period's
attendance and duty records into an itemized ``SlipDraft``, and the
shared total formulas used whenever a slip's components change.

Architecture position
---------------------
**Modules layer** -- pure helper functions.  No I/O, no session, no
clock, no database access.  Called by ``CycleManager`` and the slip
repository, and from tests.

Invariants enforced
-------------------
* All numeric inputs and outputs use ``Decimal`` -- NEVER ``float``.
* Results are quantized to 2 decimal places (ROUND_HALF_UP).
* ``total_deduction = tax + social_security_contribution +
  disciplinary_deduction + leave_deduction + advance_payment`` and
  ``net_total = total_income - total_deduction``.
* A single attendance record yields at most one deduction item (absence
  is checked before lateness).

Failure modes
-------------
* None raised.  Records for other employees or outside the period window
  are skipped rather than rejected.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from studio_kernel.exceptions import ValidationError
from studio_modules.payroll.config import PayrollConfig
from studio_modules.payroll.models import (
    ABSENCE_STATUSES,
    MISSED_DUTY_RESOLUTIONS,
    ZERO,
    AttendanceRecord,
    DeductionItem,
    DeductionRateConfig,
    DeductionType,
    DutyRecord,
    Employee,
    SlipDraft,
    TaxScheme,
)

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Quantize a monetary amount to cents."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def period_window(period_key: str) -> tuple[date, date]:
    """
    Return the first and last calendar day of a ``YYYY-MM`` period key.

    Raises:
        ValidationError: if the key is not a valid ``YYYY-MM`` month.
    """
    try:
        year_part, month_part = period_key.split("-")
        if len(year_part) != 4 or len(month_part) != 2:
            raise ValueError(period_key)
        year, month = int(year_part), int(month_part)
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, 1), date(year, month, last_day)
    except ValueError as exc:
        raise ValidationError(
            "period_key", f"expected YYYY-MM, got {period_key!r}"
        ) from exc


def compute_totals(
    *,
    base_salary: Decimal,
    ot_pay: Decimal = ZERO,
    bonus: Decimal = ZERO,
    commission: Decimal = ZERO,
    allowance: Decimal = ZERO,
    tax: Decimal = ZERO,
    social_security_contribution: Decimal = ZERO,
    disciplinary_deduction: Decimal = ZERO,
    leave_deduction: Decimal = ZERO,
    advance_payment: Decimal = ZERO,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Derive ``(total_income, total_deduction, net_total)`` from components.

    Postconditions:
        - ``net_total == total_income - total_deduction`` exactly.
    """
    total_income = to_money(base_salary + ot_pay + bonus + commission + allowance)
    total_deduction = to_money(
        tax
        + social_security_contribution
        + disciplinary_deduction
        + leave_deduction
        + advance_payment
    )
    return total_income, total_deduction, total_income - total_deduction


def social_security_contribution(
    employee: Employee, config: PayrollConfig
) -> Decimal:
    """``min(base_salary * rate, cap)`` when included, else zero."""
    if not employee.social_security_included:
        return to_money(ZERO)
    return to_money(
        min(employee.base_salary * config.social_security_rate, config.social_security_cap)
    )


def withholding_tax(employee: Employee, config: PayrollConfig) -> Decimal:
    """Flat withholding on base salary for the WHT_3 scheme, else zero."""
    if employee.tax_scheme == TaxScheme.WHT_3:
        return to_money(employee.base_salary * config.withholding_tax_rate)
    return to_money(ZERO)


def _local_check_in(check_in: datetime, tz: ZoneInfo) -> datetime:
    # Naive timestamps are already local wall-clock time
    if check_in.tzinfo is None:
        return check_in
    return check_in.astimezone(tz)


def is_late(check_in: datetime, threshold: time, tz: ZoneInfo) -> bool:
    """True when the local check-in minute is strictly after ``threshold``."""
    local = _local_check_in(check_in, tz)
    return local.time().replace(second=0, microsecond=0) > threshold


def classify_attendance(
    record: AttendanceRecord,
    rates: DeductionRateConfig,
    config: PayrollConfig,
) -> DeductionItem | None:
    """
    Classify one attendance record into at most one deduction item.

    Absence (ABSENT / NO_SHOW) takes precedence; otherwise a check-in after
    the late threshold yields a LATE item; otherwise nothing.
    """
    if record.status in ABSENCE_STATUSES:
        return DeductionItem(
            date=record.date,
            type=DeductionType.ABSENT,
            amount=to_money(rates.absent_rate_per_day),
            details=f"Absent ({record.status.lower().replace('_', ' ')})",
        )
    if record.check_in_time is not None and is_late(
        record.check_in_time, config.late_threshold, config.tzinfo
    ):
        local = _local_check_in(record.check_in_time, config.tzinfo)
        return DeductionItem(
            date=record.date,
            type=DeductionType.LATE,
            amount=to_money(rates.late_rate_per_occurrence),
            details=f"Late check-in ({local.strftime('%H:%M')})",
        )
    return None


def classify_duty(record: DutyRecord, rates: DeductionRateConfig) -> DeductionItem | None:
    """A duty abandoned or accepted as the assignee's fault is a missed duty."""
    if record.resolution_status in MISSED_DUTY_RESOLUTIONS:
        return DeductionItem(
            date=record.date,
            type=DeductionType.MISSED_DUTY,
            amount=to_money(rates.missed_duty_rate_per_occurrence),
            details=f"Missed duty: {record.title}",
        )
    return None


def compute_slip_draft(
    employee: Employee,
    period_start: date,
    period_end: date,
    attendance_records: Iterable[AttendanceRecord],
    duty_records: Iterable[DutyRecord],
    rates: DeductionRateConfig,
    config: PayrollConfig | None = None,
) -> SlipDraft:
    """
    Compute the itemized slip draft for one employee and one period.

    Preconditions:
        - ``period_start <= period_end``.
        - Records are normally pre-filtered to the employee and period by
          the caller; any that are not are skipped.
    Postconditions:
        - ``deduction_snapshot`` lists attendance items (in record order)
          followed by duty items (in record order).
        - ``disciplinary_deduction == sum(item.amount for item in snapshot)``.
        - ``total_income == base_salary``; OT, bonus, commission and
          allowance start at zero.
        - Deterministic: identical inputs give identical drafts.
    """
    config = config or PayrollConfig()

    def _in_period(day: date) -> bool:
        return period_start <= day <= period_end

    snapshot: list[DeductionItem] = []
    for record in attendance_records:
        if record.user_id != employee.id or not _in_period(record.date):
            continue
        item = classify_attendance(record, rates, config)
        if item is not None:
            snapshot.append(item)

    for duty in duty_records:
        if duty.assignee_id != employee.id or not _in_period(duty.date):
            continue
        item = classify_duty(duty, rates)
        if item is not None:
            snapshot.append(item)

    disciplinary = to_money(sum((item.amount for item in snapshot), ZERO))
    ssc = social_security_contribution(employee, config)
    tax = withholding_tax(employee, config)
    base_salary = to_money(employee.base_salary)

    total_income, total_deduction, net_total = compute_totals(
        base_salary=base_salary,
        tax=tax,
        social_security_contribution=ssc,
        disciplinary_deduction=disciplinary,
    )

    return SlipDraft(
        user_id=employee.id,
        base_salary=base_salary,
        tax=tax,
        social_security_contribution=ssc,
        disciplinary_deduction=disciplinary,
        deduction_snapshot=tuple(snapshot),
        total_income=total_income,
        total_deduction=total_deduction,
        net_total=net_total,
    )
