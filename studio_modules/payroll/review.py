"""
Review/Dispute Workflow (``studio_modules.payroll.review``).

Responsibility
--------------
The employee-facing half of slip mutation (acknowledge / dispute of one's
own slip while the cycle is in review) and the HR-facing administrative
override, layered on ``SlipRepository``.

Architecture position
---------------------
**Modules layer** -- reached through ``CycleManager.review``.  Each public
method owns its transaction: commit on success, rollback and re-raise on
any exception.  Dispute notifications are enqueued in the same
transaction and dispatched after commit; their HR recipients are resolved
at delivery, so a directory outage never blocks the dispute itself.

Invariants enforced
-------------------
* Employees act only on their own slip (``Forbidden`` otherwise).
* Responses need slip PENDING and cycle WAITING_REVIEW; the cycle row is
  locked so a concurrent finalization cannot interleave.
* Administrative edits need elevated privilege.
* A rejected operation writes nothing.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from studio_kernel.exceptions import InvalidTransitionError
from studio_kernel.logging_config import LogContext, get_logger
from studio_kernel.utils.idempotency import generate_idempotency_key
from studio_modules.payroll.authorizer import Actor, Authorizer
from studio_modules.payroll.models import (
    CompensationSlip,
    CycleStatus,
    EmployeeAction,
    FileUpload,
    Notification,
    NotificationAudience,
    NotificationKind,
    SlipPatch,
)
from studio_modules.payroll.outbox import OutboxService
from studio_modules.payroll.slip_repository import SlipRepository, load_cycle

logger = get_logger("modules.payroll.review")


class ReviewWorkflow:
    """Employee responses and HR overrides on individual slips."""

    def __init__(
        self,
        session: Session,
        authorizer: Authorizer,
        slips: SlipRepository,
        outbox: OutboxService,
    ):
        self._session = session
        self._authorizer = authorizer
        self._slips = slips
        self._outbox = outbox

    def respond(
        self,
        actor: Actor,
        slip_id: UUID,
        action: EmployeeAction,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> CompensationSlip:
        """
        Acknowledge or dispute the actor's own slip.

        Raises:
            SlipNotFoundError: unknown slip.
            ForbiddenError: the slip belongs to someone else.
            InvalidTransitionError: cycle not WAITING_REVIEW or slip not PENDING.
            ValidationError: DISPUTE without a reason.
            OptimisticLockError: ``expected_version`` is stale.
        """
        with LogContext.bind(actor_id=actor.id, slip_id=slip_id):
            logger.info(
                "slip_response_started",
                extra={"action": action.value, "expected_version": expected_version},
            )
            try:
                slip = self._slips.load(slip_id)
                self._authorizer.require_owner(actor, slip.user_id, action.value.lower())

                cycle = load_cycle(self._session, slip.cycle_id, for_update=True)
                if cycle.status != CycleStatus.WAITING_REVIEW.value:
                    raise InvalidTransitionError(
                        "CompensationSlip",
                        str(slip.id),
                        slip.status,
                        action.value.lower(),
                        reason=(
                            f"owning cycle {cycle.period_key} is {cycle.status}; "
                            "responses are only accepted while it is WAITING_REVIEW"
                        ),
                    )

                result = self._slips.apply_employee_response(
                    slip.id,
                    action,
                    actor_id=actor.id,
                    reason=reason,
                    expected_version=expected_version,
                )

                if action == EmployeeAction.DISPUTE:
                    self._enqueue_dispute_notice(actor, cycle, result)

                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("slip_response_rolled_back", exc_info=True)
                raise

            logger.info(
                "slip_response_committed",
                extra={"status": result.status.value, "version": result.version},
            )
            if action == EmployeeAction.DISPUTE:
                self._outbox.dispatch_pending(cycle_id=result.cycle_id)
            return result

    def apply_administrative_edit(
        self,
        actor: Actor,
        slip_id: UUID,
        patch: SlipPatch,
        proof_file: FileUpload | None = None,
        expected_version: int | None = None,
    ) -> CompensationSlip:
        """HR override of a slip's components, status, proof or note."""
        with LogContext.bind(actor_id=actor.id, slip_id=slip_id):
            logger.info(
                "slip_edit_started",
                extra={"fields": sorted(patch.changes()), "has_proof": proof_file is not None},
            )
            try:
                self._authorizer.require_privileged(actor, "edit slip")
                result = self._slips.apply_administrative_edit(
                    slip_id,
                    patch,
                    actor_id=actor.id,
                    proof_file=proof_file,
                    expected_version=expected_version,
                )
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("slip_edit_rolled_back", exc_info=True)
                raise

            logger.info(
                "slip_edit_committed",
                extra={"net_total": str(result.net_total), "version": result.version},
            )
            return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enqueue_dispute_notice(self, actor, cycle, slip) -> None:
        self._outbox.enqueue_notification(
            generate_idempotency_key(
                "payroll", "slip.disputed", slip.id, slip.version
            ),
            Notification(
                user_ids=(),
                title="Payslip disputed",
                message=(
                    f"{actor.name} disputed their {cycle.period_key} payslip: "
                    f"{slip.dispute_reason}"
                ),
                kind=NotificationKind.ACTION,
                audience=NotificationAudience.PRIVILEGED,
            ),
            actor_id=actor.id,
            cycle_id=cycle.id,
        )
