"""
Payroll Cycle Manager (``studio_modules.payroll.cycle_manager``).

Responsibility
--------------
Public entry point of the payroll cycle engine.  Generates a cycle from
the personnel directory and the attendance/duty feeds, moves it through
review, READY_TO_PAY and payout, and exposes the read side (cycles and
slips with the owner filter) plus roster edits while the cycle is DRAFT.
Employee responses and HR slip edits are reached through ``.review``.

Architecture position
---------------------
**Modules layer** -- composes the pure ``calculator``, ``SlipRepository``,
``CycleFinalizer``, ``ReviewWorkflow`` and ``OutboxService`` around a
single SQLAlchemy ``Session``.

Invariants enforced
-------------------
* Each public mutating method owns the transaction boundary (``commit``
  on success, ``rollback`` and re-raise on any exception).
* One cycle per ``period_key``; a second generation raises
  ``DuplicatePeriodError`` and leaves the first untouched.
* Feed calls run under a request timeout before the cycle row exists, so
  an upstream failure leaves nothing behind.
* The deduction rates used are snapshotted onto the cycle.
* Cycle deletion and roster edits only while DRAFT.
* Notifications and the ledger expense are enqueued in the transaction
  and delivered at-least-once after commit.

Failure modes
-------------
* ``ForbiddenError`` -- actor lacks elevated privilege.
* ``DuplicatePeriodError`` / ``DuplicateSlipError`` -- uniqueness.
* ``CycleNotFoundError`` / ``SlipNotFoundError`` -- unknown ids.
* ``InvalidTransitionError`` -- status precondition violated.
* ``ValidationError`` -- malformed period key or missing due date.
* ``UpstreamFailureError`` -- directory / feed / rate provider failed.

Usage::

    manager = CycleManager(
        session, authorizer, directory, attendance_feed, duty_feed,
        rate_provider, notifier, ledger, config=config, clock=clock,
    )
    cycle = manager.generate_cycle(hr_actor, "2024-06")
    manager.send_to_review(hr_actor, cycle.id, due_date=date(2024, 7, 5))
    manager.review.respond(employee, slip_id, EmployeeAction.ACKNOWLEDGE)
    result = manager.finalize_cycle(hr_actor, cycle.id)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_config.schema import ConfigurationSet
from studio_kernel.domain.clock import Clock, SystemClock
from studio_kernel.exceptions import (
    DuplicatePeriodError,
    InvalidTransitionError,
    ValidationError,
)
from studio_kernel.logging_config import LogContext, get_logger
from studio_kernel.utils.idempotency import generate_idempotency_key
from studio_kernel.utils.timeouts import call_with_timeout
from studio_modules.payroll.authorizer import Actor, Authorizer
from studio_modules.payroll.calculator import compute_slip_draft, period_window
from studio_modules.payroll.collaborators import (
    AttendanceFeed,
    ConfiguredRateProvider,
    DutyFeed,
    FileStorage,
    LedgerPoster,
    NotificationDispatcher,
    PersonnelDirectory,
    RateProvider,
)
from studio_modules.payroll.config import PayrollConfig
from studio_modules.payroll.finalization import PRODUCER, CycleFinalizer
from studio_modules.payroll.models import (
    CompensationSlip,
    CycleStatus,
    DeductionRateConfig,
    DispatchReport,
    Employee,
    FinalizationResult,
    Notification,
    NotificationKind,
    PayrollCycle,
    SlipDraft,
    SlipStatus,
)
from studio_modules.payroll.orm import CompensationSlipModel, PayrollCycleModel
from studio_modules.payroll.outbox import OutboxService
from studio_modules.payroll.review import ReviewWorkflow
from studio_modules.payroll.slip_repository import SlipRepository, load_cycle
from studio_modules.payroll.workflows import (
    PAYROLL_CYCLE_WORKFLOW,
    ROSTER_EDITABLE_CYCLE_STATES,
    require_transition,
)

logger = get_logger("modules.payroll.cycle_manager")


class CycleManager:
    """
    Orchestrates the payroll cycle lifecycle.

    Contract:
        Every public method authorizes first, validates before writing, and
        commits or rolls back as a unit.  Read methods never write.
    """

    def __init__(
        self,
        session: Session,
        authorizer: Authorizer,
        directory: PersonnelDirectory,
        attendance_feed: AttendanceFeed,
        duty_feed: DutyFeed,
        rate_provider: RateProvider,
        notifier: NotificationDispatcher,
        ledger: LedgerPoster,
        file_storage: FileStorage | None = None,
        config: PayrollConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._authorizer = authorizer
        self._directory = directory
        self._attendance_feed = attendance_feed
        self._duty_feed = duty_feed
        self._rate_provider = rate_provider
        self._config = config or PayrollConfig()
        self._clock = clock or SystemClock()

        self._slips = SlipRepository(session, clock=self._clock, file_storage=file_storage)
        self._outbox = OutboxService(
            session,
            notifier,
            ledger,
            clock=self._clock,
            max_attempts=self._config.max_delivery_attempts,
            recipient_resolver=self._privileged_user_ids,
        )
        self._finalizer = CycleFinalizer(
            session, self._slips, self._outbox, config=self._config, clock=self._clock
        )
        self.review = ReviewWorkflow(session, authorizer, self._slips, self._outbox)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config_set: ConfigurationSet,
        *,
        directory: PersonnelDirectory,
        attendance_feed: AttendanceFeed,
        duty_feed: DutyFeed,
        notifier: NotificationDispatcher,
        ledger: LedgerPoster,
        file_storage: FileStorage | None = None,
        clock: Clock | None = None,
    ) -> CycleManager:
        """Wire a manager from a loaded configuration set (rates, authorization, rules)."""
        logger.info(
            "cycle_manager_configured",
            extra={
                "config_id": config_set.config_id,
                "config_version": config_set.version,
                "checksum": config_set.checksum,
            },
        )
        return cls(
            session,
            Authorizer.from_definition(config_set.authorization),
            directory,
            attendance_feed,
            duty_feed,
            ConfiguredRateProvider(config_set.rates),
            notifier,
            ledger,
            file_storage=file_storage,
            config=PayrollConfig.from_dict(config_set.payroll_rules.values),
            clock=clock,
        )

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_cycle(
        self,
        actor: Actor,
        period_key: str,
        employees: Sequence[Employee] | None = None,
    ) -> PayrollCycle:
        """
        Create a DRAFT cycle for ``period_key`` with one PENDING slip per
        active employee.

        ``employees`` defaults to the personnel directory's active roster.
        """
        with LogContext.bind(actor_id=actor.id):
            logger.info("payroll_cycle_generation_started", extra={"period_key": period_key})
            try:
                self._authorizer.require_privileged(actor, "generate payroll cycle")
                period_start, period_end = period_window(period_key)

                existing = self._session.scalars(
                    select(PayrollCycleModel.id).where(
                        PayrollCycleModel.period_key == period_key
                    )
                ).first()
                if existing is not None:
                    raise DuplicatePeriodError(period_key, str(existing))

                rates = self._call(self._rate_provider.get_rates, "rate_provider", "get_rates")
                if employees is None:
                    employees = self._call(
                        self._directory.list_active_employees,
                        "personnel_directory",
                        "list_active_employees",
                    )
                roster = [emp for emp in employees if emp.is_active]
                drafts = self._compute_drafts(roster, period_start, period_end, rates)

                cycle = PayrollCycleModel(
                    period_key=period_key,
                    status=CycleStatus.DRAFT.value,
                    late_rate_per_occurrence=rates.late_rate_per_occurrence,
                    absent_rate_per_day=rates.absent_rate_per_day,
                    missed_duty_rate_per_occurrence=rates.missed_duty_rate_per_occurrence,
                    rate_schedule_version=rates.version,
                    created_at=self._clock.now(),
                    created_by_id=actor.id,
                )
                self._session.add(cycle)
                try:
                    self._session.flush()
                except IntegrityError as exc:
                    raise DuplicatePeriodError(period_key) from exc

                self._slips.create_many(cycle.id, drafts, actor.id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "payroll_cycle_generation_rolled_back",
                    extra={"period_key": period_key},
                    exc_info=True,
                )
                raise

            logger.info(
                "payroll_cycle_generated",
                extra={
                    "cycle_id": str(cycle.id),
                    "period_key": period_key,
                    "slip_count": len(drafts),
                    "rate_schedule_version": rates.version,
                },
            )
            return cycle.to_dto()

    def add_employee_to_cycle(
        self, actor: Actor, cycle_id: UUID, employee: Employee
    ) -> CompensationSlip:
        """Add a slip for one more employee to a DRAFT cycle, at the cycle's rates."""
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "add employee to cycle")
                cycle = load_cycle(self._session, cycle_id, for_update=True)
                self._require_roster_editable(cycle, "add_employee")
                if not employee.is_active:
                    raise ValidationError(
                        "employee", f"{employee.name} is inactive and cannot be paid"
                    )
                period_start, period_end = period_window(cycle.period_key)
                rates = cycle.to_dto().rates
                (draft,) = self._compute_drafts([employee], period_start, period_end, rates)
                (slip,) = self._slips.create_many(cycle.id, [draft], actor.id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("cycle_add_employee_rolled_back", exc_info=True)
                raise

            logger.info(
                "cycle_employee_added",
                extra={"user_id": str(employee.id), "slip_id": str(slip.id)},
            )
            return slip

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def delete_cycle(self, actor: Actor, cycle_id: UUID) -> None:
        """Delete a DRAFT cycle and its slips."""
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "delete payroll cycle")
                cycle = load_cycle(self._session, cycle_id, for_update=True)
                self._require_roster_editable(cycle, "delete")
                period_key = cycle.period_key
                self._session.delete(cycle)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("payroll_cycle_delete_rolled_back", exc_info=True)
                raise
            logger.info("payroll_cycle_deleted", extra={"period_key": period_key})

    def delete_slip(self, actor: Actor, slip_id: UUID) -> None:
        with LogContext.bind(actor_id=actor.id, slip_id=slip_id):
            try:
                self._authorizer.require_privileged(actor, "delete slip")
                self._slips.delete(slip_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("slip_delete_rolled_back", exc_info=True)
                raise

    def send_to_review(self, actor: Actor, cycle_id: UUID, due_date: date) -> PayrollCycle:
        """
        Open the review window: DRAFT -> WAITING_REVIEW, store ``due_date``
        and notify every employee with a slip in the cycle.
        """
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "send cycle to review")
                if not isinstance(due_date, date):
                    raise ValidationError("due_date", "a review due date is required")
                cycle = load_cycle(self._session, cycle_id, for_update=True)
                require_transition(
                    PAYROLL_CYCLE_WORKFLOW, "PayrollCycle", cycle.id, cycle.status,
                    "send_to_review",
                )
                cycle.status = CycleStatus.WAITING_REVIEW.value
                cycle.due_date = due_date
                cycle.updated_by_id = actor.id

                recipients = self._session.scalars(
                    select(CompensationSlipModel.user_id)
                    .where(CompensationSlipModel.cycle_id == cycle.id)
                    .order_by(CompensationSlipModel.user_id)
                ).all()
                for user_id in recipients:
                    self._outbox.enqueue_notification(
                        generate_idempotency_key(
                            PRODUCER, "cycle.review_requested", cycle.id, user_id
                        ),
                        Notification(
                            user_ids=(user_id,),
                            title="Payslip ready for review",
                            message=(
                                f"Your payslip for {cycle.period_key} is ready. "
                                f"Please acknowledge or dispute it by {due_date.isoformat()}."
                            ),
                            kind=NotificationKind.ACTION,
                        ),
                        actor_id=actor.id,
                        cycle_id=cycle.id,
                    )
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("payroll_cycle_review_rolled_back", exc_info=True)
                raise

            logger.info(
                "payroll_cycle_sent_to_review",
                extra={"due_date": due_date.isoformat(), "recipient_count": len(recipients)},
            )
            self._outbox.dispatch_pending(cycle_id=cycle_id)
            return self.get_cycle(cycle_id)

    def mark_ready_to_pay(self, actor: Actor, cycle_id: UUID) -> PayrollCycle:
        """WAITING_REVIEW -> READY_TO_PAY once no slip is DISPUTED."""
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "mark cycle ready to pay")
                cycle = load_cycle(self._session, cycle_id, for_update=True)
                transition = require_transition(
                    PAYROLL_CYCLE_WORKFLOW, "PayrollCycle", cycle.id, cycle.status,
                    "mark_ready_to_pay",
                )
                disputed = self._session.scalar(
                    select(func.count(CompensationSlipModel.id)).where(
                        CompensationSlipModel.cycle_id == cycle.id,
                        CompensationSlipModel.status == SlipStatus.DISPUTED.value,
                    )
                )
                if disputed:
                    raise InvalidTransitionError(
                        "PayrollCycle",
                        str(cycle.id),
                        cycle.status,
                        "mark_ready_to_pay",
                        reason=f"{transition.guard.description} ({disputed} disputed)",
                    )
                cycle.status = CycleStatus.READY_TO_PAY.value
                cycle.updated_by_id = actor.id
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("payroll_cycle_ready_rolled_back", exc_info=True)
                raise

            logger.info("payroll_cycle_ready_to_pay")
            return self.get_cycle(cycle_id)

    def finalize_cycle(self, actor: Actor, cycle_id: UUID) -> FinalizationResult:
        """
        Close the cycle: payout aggregation, slip freeze, PAID, then
        deliver the expense posting and payout notifications.
        """
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "finalize payroll cycle")
                cycle = load_cycle(self._session, cycle_id, for_update=True)
                result = self._finalizer.finalize(cycle, actor)
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("payroll_cycle_finalize_rolled_back", exc_info=True)
                raise

            report = self._outbox.dispatch_pending(cycle_id=cycle_id)
            if not report.all_delivered:
                logger.warning(
                    "payroll_cycle_side_effects_pending",
                    extra={"retried": report.retried, "failed": report.failed},
                )
            return result

    def retry_pending_deliveries(
        self, actor: Actor, cycle_id: UUID | None = None
    ) -> DispatchReport:
        """Re-arm FAILED side effects and dispatch everything still pending."""
        with LogContext.bind(actor_id=actor.id, cycle_id=cycle_id):
            try:
                self._authorizer.require_privileged(actor, "retry payroll deliveries")
                requeued = self._outbox.requeue_failed(cycle_id=cycle_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info("outbox_retry_requested", extra={"requeued": requeued})
            return self._outbox.dispatch_pending(cycle_id=cycle_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_cycles(self) -> list[PayrollCycle]:
        models = self._session.scalars(
            select(PayrollCycleModel).order_by(PayrollCycleModel.period_key.desc())
        ).all()
        return [model.to_dto() for model in models]

    def get_cycle(self, cycle_id: UUID) -> PayrollCycle:
        return load_cycle(self._session, cycle_id).to_dto()

    def get_slips(self, actor: Actor, cycle_id: UUID) -> list[CompensationSlip]:
        """All slips for privileged actors; otherwise only the actor's own."""
        load_cycle(self._session, cycle_id)
        if self._authorizer.is_privileged(actor):
            return self._slips.list_for_cycle(cycle_id)
        return self._slips.list_for_cycle(cycle_id, user_id=actor.id)

    def get_slip(self, actor: Actor, slip_id: UUID) -> CompensationSlip:
        slip = self._slips.get_slip(slip_id)
        if not self._authorizer.is_privileged(actor):
            self._authorizer.require_owner(actor, slip.user_id, "view slip")
        return slip

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _call(self, fn, collaborator: str, operation: str, *args):
        return call_with_timeout(
            fn,
            *args,
            timeout_seconds=self._config.feed_timeout_seconds,
            collaborator=collaborator,
            operation=operation,
        )

    def _privileged_user_ids(self) -> list[UUID]:
        """HR recipients for PRIVILEGED notifications, resolved at delivery."""
        employees = self._call(
            self._directory.list_active_employees,
            "personnel_directory",
            "list_active_employees",
        )
        return [emp.id for emp in employees if self._authorizer.is_privileged(emp)]

    def _compute_drafts(
        self,
        employees: Sequence[Employee],
        period_start: date,
        period_end: date,
        rates: DeductionRateConfig,
    ) -> list[SlipDraft]:
        if not employees:
            return []
        attendance = self._call(
            self._attendance_feed.get_attendance,
            "attendance_feed", "get_attendance", period_start, period_end,
        )
        duties = self._call(
            self._duty_feed.get_duties,
            "duty_feed", "get_duties", period_start, period_end,
        )

        attendance_by_user = defaultdict(list)
        for record in attendance:
            attendance_by_user[record.user_id].append(record)
        duties_by_user = defaultdict(list)
        for duty in duties:
            duties_by_user[duty.assignee_id].append(duty)

        return [
            compute_slip_draft(
                employee,
                period_start,
                period_end,
                attendance_by_user.get(employee.id, ()),
                duties_by_user.get(employee.id, ()),
                rates,
                self._config,
            )
            for employee in employees
        ]

    @staticmethod
    def _require_roster_editable(cycle: PayrollCycleModel, action: str) -> None:
        if cycle.status not in ROSTER_EDITABLE_CYCLE_STATES:
            raise InvalidTransitionError(
                "PayrollCycle",
                str(cycle.id),
                cycle.status,
                action,
                reason="only a DRAFT cycle can be changed this way",
            )
