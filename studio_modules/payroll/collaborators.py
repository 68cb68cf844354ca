"""
External collaborator contracts (``studio_modules.payroll.collaborators``).

The payroll engine reads from the personnel directory, the attendance and
duty feeds and the deduction-rate configuration, and writes to file
storage, the notification dispatcher and the ledger.  Each is a
``typing.Protocol`` so production adapters and test fakes are
interchangeable without inheritance.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID

from studio_config.schema import RateScheduleDef
from studio_modules.payroll.models import (
    AttendanceRecord,
    DeductionRateConfig,
    DutyRecord,
    Employee,
    ExpensePosting,
    FileUpload,
    NotificationKind,
)


@runtime_checkable
class PersonnelDirectory(Protocol):
    def list_active_employees(self) -> Sequence[Employee]: ...


@runtime_checkable
class AttendanceFeed(Protocol):
    def get_attendance(
        self, period_start: date, period_end: date
    ) -> Sequence[AttendanceRecord]: ...


@runtime_checkable
class DutyFeed(Protocol):
    def get_duties(
        self, period_start: date, period_end: date
    ) -> Sequence[DutyRecord]: ...


@runtime_checkable
class RateProvider(Protocol):
    def get_rates(self) -> DeductionRateConfig: ...


@runtime_checkable
class FileStorage(Protocol):
    def upload(self, file: FileUpload) -> str: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    def notify(
        self,
        user_ids: Sequence[UUID],
        title: str,
        message: str,
        kind: NotificationKind,
    ) -> None: ...


@runtime_checkable
class LedgerPoster(Protocol):
    def post_expense(self, posting: ExpensePosting) -> None: ...


class ConfiguredRateProvider:
    """Rate provider backed by the ``rates`` section of the active configuration."""

    def __init__(self, schedule: RateScheduleDef):
        self._schedule = schedule

    def get_rates(self) -> DeductionRateConfig:
        return DeductionRateConfig(
            late_rate_per_occurrence=self._schedule.late_rate_per_occurrence,
            absent_rate_per_day=self._schedule.absent_rate_per_day,
            missed_duty_rate_per_occurrence=self._schedule.missed_duty_rate_per_occurrence,
            version=self._schedule.version,
        )
