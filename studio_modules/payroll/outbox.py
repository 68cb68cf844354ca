"""
OutboxService -- transactional side-effect queue for payroll.

Contract:
    ``enqueue_*`` records a notification or ledger expense in the caller's
    transaction (flush only).  ``dispatch_pending`` runs after the caller
    has committed and delivers PENDING events at-least-once, committing
    the outcome of each event on its own.

Architecture: studio_modules/payroll.  Imports from payroll models, orm,
    collaborators and kernel utilities.

Invariants enforced:
    - One event per idempotency key; re-enqueueing is a no-op.
    - A PENDING event is delivered in enqueue order.
    - A failed delivery is logged with its attempt count and left PENDING
      until ``max_attempts`` is reached, then marked FAILED (logged at
      ERROR).  Collaborator failures never roll back the state change
      that enqueued them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from studio_kernel.domain.clock import Clock, SystemClock
from studio_kernel.logging_config import get_logger
from studio_modules.payroll.collaborators import LedgerPoster, NotificationDispatcher
from studio_modules.payroll.models import (
    DispatchReport,
    ExpensePosting,
    Notification,
    NotificationAudience,
    NotificationKind,
)
from studio_modules.payroll.orm import PayrollOutboxEventModel

logger = get_logger("modules.payroll.outbox")


class OutboxEventType(str, Enum):
    NOTIFICATION = "NOTIFICATION"
    EXPENSE = "EXPENSE"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


def _notification_payload(notification: Notification) -> dict[str, Any]:
    return {
        "user_ids": [str(uid) for uid in notification.user_ids],
        "title": notification.title,
        "message": notification.message,
        "kind": notification.kind.value,
        "audience": notification.audience.value,
    }


def _expense_payload(posting: ExpensePosting) -> dict[str, Any]:
    return {
        "category": posting.category,
        "amount": str(posting.amount),
        "date": posting.date.isoformat(),
        "description": posting.description,
        "reference": posting.reference,
        "recorded_by": posting.recorded_by,
    }


class OutboxService:
    """Enqueue side effects with the state change; deliver them after commit."""

    def __init__(
        self,
        session: Session,
        notifier: NotificationDispatcher,
        ledger: LedgerPoster,
        clock: Clock | None = None,
        max_attempts: int = 5,
        recipient_resolver: Callable[[], Sequence[UUID]] | None = None,
    ):
        self._session = session
        self._notifier = notifier
        self._ledger = ledger
        self._recipient_resolver = recipient_resolver
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Enqueue (caller's transaction)
    # ------------------------------------------------------------------

    def enqueue_notification(
        self,
        idempotency_key: str,
        notification: Notification,
        actor_id: UUID,
        cycle_id: UUID | None = None,
    ) -> bool:
        return self._enqueue(
            idempotency_key,
            OutboxEventType.NOTIFICATION,
            _notification_payload(notification),
            actor_id,
            cycle_id,
        )

    def enqueue_expense(
        self,
        idempotency_key: str,
        posting: ExpensePosting,
        actor_id: UUID,
        cycle_id: UUID | None = None,
    ) -> bool:
        return self._enqueue(
            idempotency_key,
            OutboxEventType.EXPENSE,
            _expense_payload(posting),
            actor_id,
            cycle_id,
        )

    def _enqueue(
        self,
        idempotency_key: str,
        event_type: OutboxEventType,
        payload: dict[str, Any],
        actor_id: UUID,
        cycle_id: UUID | None,
    ) -> bool:
        existing = self._session.scalars(
            select(PayrollOutboxEventModel.id).where(
                PayrollOutboxEventModel.idempotency_key == idempotency_key
            )
        ).first()
        if existing is not None:
            logger.info(
                "outbox_event_already_enqueued",
                extra={"idempotency_key": idempotency_key},
            )
            return False

        next_sequence = (
            self._session.scalar(select(func.max(PayrollOutboxEventModel.sequence))) or 0
        ) + 1
        self._session.add(
            PayrollOutboxEventModel(
                idempotency_key=idempotency_key,
                event_type=event_type.value,
                cycle_id=cycle_id,
                payload=payload,
                status=OutboxStatus.PENDING.value,
                attempts=0,
                sequence=next_sequence,
                created_by_id=actor_id,
            )
        )
        self._session.flush()
        logger.debug(
            "outbox_event_enqueued",
            extra={
                "idempotency_key": idempotency_key,
                "event_type": event_type.value,
                "sequence": next_sequence,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Dispatch (own transactions)
    # ------------------------------------------------------------------

    def dispatch_pending(self, cycle_id: UUID | None = None) -> DispatchReport:
        """
        Deliver every PENDING event (optionally for one cycle).

        Commits after each event so one failure never hides another's
        delivery.
        """
        stmt = select(PayrollOutboxEventModel).where(
            PayrollOutboxEventModel.status == OutboxStatus.PENDING.value
        )
        if cycle_id is not None:
            stmt = stmt.where(PayrollOutboxEventModel.cycle_id == cycle_id)
        events = list(
            self._session.scalars(stmt.order_by(PayrollOutboxEventModel.sequence)).all()
        )

        delivered = retried = failed = 0
        failed_keys: list[str] = []
        for event in events:
            event.attempts += 1
            try:
                self._deliver(event)
            except Exception as exc:
                event.last_error = f"{type(exc).__name__}: {exc}"
                if event.attempts >= self._max_attempts:
                    event.status = OutboxStatus.FAILED.value
                    failed += 1
                    failed_keys.append(event.idempotency_key)
                    logger.error(
                        "outbox_delivery_exhausted",
                        extra={
                            "idempotency_key": event.idempotency_key,
                            "event_type": event.event_type,
                            "attempts": event.attempts,
                            "error": event.last_error,
                        },
                    )
                else:
                    retried += 1
                    logger.warning(
                        "outbox_delivery_failed",
                        extra={
                            "idempotency_key": event.idempotency_key,
                            "event_type": event.event_type,
                            "attempts": event.attempts,
                            "max_attempts": self._max_attempts,
                            "error": event.last_error,
                        },
                    )
            else:
                event.status = OutboxStatus.DELIVERED.value
                event.delivered_at = self._clock.now()
                event.last_error = None
                delivered += 1
            self._session.commit()

        report = DispatchReport(
            delivered=delivered,
            retried=retried,
            failed=failed,
            failed_keys=tuple(failed_keys),
        )
        if events:
            logger.info(
                "outbox_dispatch_completed",
                extra={
                    "cycle_id": str(cycle_id) if cycle_id else None,
                    "delivered": delivered,
                    "retried": retried,
                    "failed": failed,
                },
            )
        return report

    def requeue_failed(self, cycle_id: UUID | None = None) -> int:
        """Reset FAILED events to PENDING with a fresh attempt budget."""
        stmt = select(PayrollOutboxEventModel).where(
            PayrollOutboxEventModel.status == OutboxStatus.FAILED.value
        )
        if cycle_id is not None:
            stmt = stmt.where(PayrollOutboxEventModel.cycle_id == cycle_id)
        events = list(self._session.scalars(stmt).all())
        for event in events:
            event.status = OutboxStatus.PENDING.value
            event.attempts = 0
        self._session.flush()
        if events:
            logger.info("outbox_events_requeued", extra={"count": len(events)})
        return len(events)

    def pending_count(self, cycle_id: UUID | None = None) -> int:
        stmt = select(func.count(PayrollOutboxEventModel.id)).where(
            PayrollOutboxEventModel.status == OutboxStatus.PENDING.value
        )
        if cycle_id is not None:
            stmt = stmt.where(PayrollOutboxEventModel.cycle_id == cycle_id)
        return self._session.scalar(stmt) or 0

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, event: PayrollOutboxEventModel) -> None:
        payload = event.payload
        if event.event_type == OutboxEventType.NOTIFICATION.value:
            recipients = self._recipients(payload)
            if not recipients:
                logger.warning(
                    "notification_without_recipients",
                    extra={
                        "idempotency_key": event.idempotency_key,
                        "audience": payload.get("audience"),
                    },
                )
                return
            self._notifier.notify(
                recipients,
                payload["title"],
                payload["message"],
                NotificationKind(payload["kind"]),
            )
        elif event.event_type == OutboxEventType.EXPENSE.value:
            self._ledger.post_expense(
                ExpensePosting(
                    category=payload["category"],
                    amount=Decimal(payload["amount"]),
                    date=date.fromisoformat(payload["date"]),
                    description=payload["description"],
                    reference=payload["reference"],
                    recorded_by=payload.get("recorded_by"),
                )
            )
        else:
            raise ValueError(f"Unknown outbox event type: {event.event_type}")

    def _recipients(self, payload: dict[str, Any]) -> list[UUID]:
        audience = NotificationAudience(
            payload.get("audience", NotificationAudience.LISTED.value)
        )
        if audience == NotificationAudience.LISTED:
            return [UUID(uid) for uid in payload["user_ids"]]
        if self._recipient_resolver is None:
            raise RuntimeError(f"No recipient resolver configured for {audience.value}")
        return list(self._recipient_resolver())
