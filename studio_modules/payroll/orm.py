"""
Payroll ORM Persistence Models (``studio_modules.payroll.orm``).

Responsibility:
    SQLAlchemy ORM models that persist payroll cycles, compensation slips
    and the side-effect outbox.  Cycle and slip models provide ``to_dto()``
    conversion to the frozen dataclasses in ``studio_modules.payroll.models``.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TrackedBase`` which provides id (UUID PK), created_at,
    updated_at, created_by_id (NOT NULL) and updated_by_id.

Invariants enforced:
    - One cycle per ``period_key`` (uq_payroll_cycle_period_key).
    - One slip per (cycle_id, user_id) (uq_payroll_slip_cycle_user).
    - One outbox event per idempotency key (uq_payroll_outbox_key).
    - Monetary fields are Decimal (Numeric(38,9)); enum fields are stored
      as String(50) holding the enum ``.value``.
    - Slips carry an integer ``version`` used as the SQLAlchemy
      ``version_id_col``; concurrent writers get ``StaleDataError``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studio_kernel.db.base import TrackedBase

# ---------------------------------------------------------------------------
# PayrollCycleModel
# ---------------------------------------------------------------------------


class PayrollCycleModel(TrackedBase):
    """
    ORM model for ``PayrollCycle``.

    Contract:
        Created in DRAFT.  The rate columns snapshot the deduction rates used
        at generation time so the cycle can be reproduced later.
        ``total_payout``/``finalized_by_id`` are set only at finalization.
    """

    __tablename__ = "payroll_cycles"

    period_key: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="DRAFT")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_payout: Mapped[Decimal | None] = mapped_column(nullable=True)
    finalized_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)

    late_rate_per_occurrence: Mapped[Decimal] = mapped_column(nullable=False)
    absent_rate_per_day: Mapped[Decimal] = mapped_column(nullable=False)
    missed_duty_rate_per_occurrence: Mapped[Decimal] = mapped_column(nullable=False)
    rate_schedule_version: Mapped[str] = mapped_column(String(50), nullable=False)

    slips: Mapped[list["CompensationSlipModel"]] = relationship(
        back_populates="cycle",
        cascade="all, delete-orphan",
        order_by="CompensationSlipModel.user_id",
    )

    __table_args__ = (
        UniqueConstraint("period_key", name="uq_payroll_cycle_period_key"),
        Index("idx_payroll_cycle_status", "status"),
    )

    def to_dto(self):
        from studio_modules.payroll.models import (
            CycleStatus,
            DeductionRateConfig,
            PayrollCycle,
        )
        return PayrollCycle(
            id=self.id,
            period_key=self.period_key,
            status=CycleStatus(self.status),
            created_by=self.created_by_id,
            created_at=self.created_at,
            due_date=self.due_date,
            total_payout=self.total_payout,
            finalized_by=self.finalized_by_id,
            finalized_at=self.finalized_at,
            rates=DeductionRateConfig(
                late_rate_per_occurrence=self.late_rate_per_occurrence,
                absent_rate_per_day=self.absent_rate_per_day,
                missed_duty_rate_per_occurrence=self.missed_duty_rate_per_occurrence,
                version=self.rate_schedule_version,
            ),
        )

    def __repr__(self) -> str:
        return f"<PayrollCycleModel {self.period_key} ({self.status})>"


# ---------------------------------------------------------------------------
# CompensationSlipModel
# ---------------------------------------------------------------------------


class CompensationSlipModel(TrackedBase):
    """
    ORM model for ``CompensationSlip``.

    Contract:
        ``deduction_snapshot`` is a JSON list of ``DeductionItem.to_dict()``
        payloads written once at generation.  ``total_income``,
        ``total_deduction`` and ``net_total`` are always written by the
        repository from the component columns.
    """

    __tablename__ = "payroll_slips"

    cycle_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_cycles.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)

    base_salary: Mapped[Decimal] = mapped_column(nullable=False)
    ot_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ot_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    bonus: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    commission: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    allowance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_income: Mapped[Decimal] = mapped_column(nullable=False)

    tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    social_security_contribution: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    leave_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    disciplinary_deduction: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    advance_payment: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deduction: Mapped[Decimal] = mapped_column(nullable=False)
    net_total: Mapped[Decimal] = mapped_column(nullable=False)

    deduction_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="PENDING")
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    transfer_proof_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    cycle: Mapped[PayrollCycleModel] = relationship(back_populates="slips")

    __table_args__ = (
        UniqueConstraint("cycle_id", "user_id", name="uq_payroll_slip_cycle_user"),
        Index("idx_payroll_slip_cycle", "cycle_id"),
        Index("idx_payroll_slip_user", "user_id"),
        Index("idx_payroll_slip_status", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        from studio_modules.payroll.models import (
            CompensationSlip,
            DeductionItem,
            SlipStatus,
        )
        return CompensationSlip(
            id=self.id,
            cycle_id=self.cycle_id,
            user_id=self.user_id,
            base_salary=self.base_salary,
            ot_hours=self.ot_hours,
            ot_pay=self.ot_pay,
            bonus=self.bonus,
            commission=self.commission,
            allowance=self.allowance,
            total_income=self.total_income,
            tax=self.tax,
            social_security_contribution=self.social_security_contribution,
            leave_deduction=self.leave_deduction,
            disciplinary_deduction=self.disciplinary_deduction,
            advance_payment=self.advance_payment,
            total_deduction=self.total_deduction,
            net_total=self.net_total,
            status=SlipStatus(self.status),
            deduction_snapshot=tuple(
                DeductionItem.from_dict(item) for item in (self.deduction_snapshot or [])
            ),
            dispute_reason=self.dispute_reason,
            transfer_proof_ref=self.transfer_proof_ref,
            acknowledged_at=self.acknowledged_at,
            note=self.note,
            version=self.version,
        )

    @classmethod
    def from_draft(cls, draft, cycle_id: UUID, created_by_id: UUID) -> "CompensationSlipModel":
        return cls(
            cycle_id=cycle_id,
            user_id=draft.user_id,
            base_salary=draft.base_salary,
            ot_hours=draft.ot_hours,
            ot_pay=draft.ot_pay,
            bonus=draft.bonus,
            commission=draft.commission,
            allowance=draft.allowance,
            total_income=draft.total_income,
            tax=draft.tax,
            social_security_contribution=draft.social_security_contribution,
            leave_deduction=draft.leave_deduction,
            disciplinary_deduction=draft.disciplinary_deduction,
            advance_payment=draft.advance_payment,
            total_deduction=draft.total_deduction,
            net_total=draft.net_total,
            deduction_snapshot=[item.to_dict() for item in draft.deduction_snapshot],
            status="PENDING",
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<CompensationSlipModel user={self.user_id} "
            f"net={self.net_total} ({self.status})>"
        )


# ---------------------------------------------------------------------------
# PayrollOutboxEventModel
# ---------------------------------------------------------------------------


class PayrollOutboxEventModel(TrackedBase):
    """
    A side effect (notification or ledger expense) recorded in the same
    transaction as the state change that caused it, and delivered
    at-least-once afterwards.

    Contract:
        ``status`` is PENDING until delivered (DELIVERED) or until
        ``attempts`` reaches the configured maximum (FAILED).
    """

    __tablename__ = "payroll_outbox_events"

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    cycle_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payroll_outbox_key"),
        Index("idx_payroll_outbox_status", "status"),
        Index("idx_payroll_outbox_cycle", "cycle_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayrollOutboxEventModel {self.event_type} {self.idempotency_key} "
            f"({self.status}, attempts={self.attempts})>"
        )
