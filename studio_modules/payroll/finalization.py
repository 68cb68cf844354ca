"""
Cycle finalization (``studio_modules.payroll.finalization``).

Responsibility:
    Close a payroll cycle: aggregate the payout, freeze every slip to PAID,
    mark the cycle PAID, and enqueue the aggregate salary expense plus one
    payout notification per employee.

Architecture position:
    **Modules layer** -- called by ``CycleManager.finalize_cycle`` with the
    cycle row already locked.  Flushes only; the manager commits and then
    dispatches the outbox.

Invariants enforced:
    - Legal only from WAITING_REVIEW or READY_TO_PAY.
    - ``total_payout == sum(slip.net_total)`` at the moment of the freeze.
    - Aggregation, freeze, status change and side-effect enqueueing land
      in one transaction; ledger and notifier failures cannot undo PAID.
    - Outbox keys derive from the cycle id (and user id), so a retried
      finalization never posts a second expense.
    - A cycle without slips closes at 0.00 and posts no expense.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from studio_kernel.domain.clock import Clock, SystemClock
from studio_kernel.logging_config import get_logger
from studio_kernel.utils.idempotency import generate_idempotency_key
from studio_modules.payroll.authorizer import Actor
from studio_modules.payroll.calculator import to_money
from studio_modules.payroll.config import PayrollConfig
from studio_modules.payroll.models import (
    ZERO,
    CycleStatus,
    ExpensePosting,
    FinalizationResult,
    Notification,
    NotificationKind,
)
from studio_modules.payroll.orm import PayrollCycleModel
from studio_modules.payroll.outbox import OutboxService
from studio_modules.payroll.slip_repository import SlipRepository
from studio_modules.payroll.workflows import PAYROLL_CYCLE_WORKFLOW, require_transition

logger = get_logger("modules.payroll.finalization")

PRODUCER = "payroll"


def expense_reference(cycle_id) -> str:
    return generate_idempotency_key(PRODUCER, "cycle.finalized.expense", cycle_id)


class CycleFinalizer:
    """Payout aggregation, slip freeze and side-effect enqueueing."""

    def __init__(
        self,
        session: Session,
        slips: SlipRepository,
        outbox: OutboxService,
        config: PayrollConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._slips = slips
        self._outbox = outbox
        self._config = config or PayrollConfig()
        self._clock = clock or SystemClock()

    def finalize(self, cycle: PayrollCycleModel, actor: Actor) -> FinalizationResult:
        """
        Finalize a locked cycle.

        Raises:
            InvalidTransitionError: cycle is DRAFT or already PAID.
        """
        require_transition(
            PAYROLL_CYCLE_WORKFLOW, "PayrollCycle", cycle.id, cycle.status, "finalize"
        )

        frozen = self._slips.mark_all_paid(cycle.id, actor.id)
        total_payout = to_money(sum((slip.net_total for slip in frozen), ZERO))

        now = self._clock.now()
        cycle.status = CycleStatus.PAID.value
        cycle.total_payout = total_payout
        cycle.finalized_by_id = actor.id
        cycle.finalized_at = now
        cycle.updated_by_id = actor.id

        reference = None
        if frozen:
            reference = expense_reference(cycle.id)
            self._outbox.enqueue_expense(
                reference,
                ExpensePosting(
                    category=self._config.expense_category,
                    amount=total_payout,
                    date=self._clock.today(self._config.tzinfo),
                    description=f"Salary payroll ({cycle.period_key})",
                    reference=reference,
                    recorded_by=actor.name,
                ),
                actor_id=actor.id,
                cycle_id=cycle.id,
            )

        enqueued = 0
        for slip in frozen:
            created = self._outbox.enqueue_notification(
                generate_idempotency_key(
                    PRODUCER, "cycle.finalized.payout", cycle.id, slip.user_id
                ),
                Notification(
                    user_ids=(slip.user_id,),
                    title="Salary paid",
                    message=(
                        f"Your salary for {cycle.period_key} has been paid: "
                        f"net {to_money(slip.net_total)}"
                    ),
                    kind=NotificationKind.INFO,
                ),
                actor_id=actor.id,
                cycle_id=cycle.id,
            )
            enqueued += int(created)

        self._session.flush()
        logger.info(
            "payroll_cycle_finalized",
            extra={
                "cycle_id": str(cycle.id),
                "period_key": cycle.period_key,
                "total_payout": str(total_payout),
                "slip_count": len(frozen),
                "finalized_by": str(actor.id),
            },
        )
        return FinalizationResult(
            cycle=cycle.to_dto(),
            total_payout=total_payout,
            slip_count=len(frozen),
            expense_reference=reference,
            notifications_enqueued=enqueued,
        )
