"""
Tests for cycle finalization and at-least-once side-effect delivery.

Validates:
- totalPayout equals the sum of slip net totals; every slip becomes PAID
- One aggregate SALARY expense per cycle, one payout notification per slip
- Finalization only from WAITING_REVIEW / READY_TO_PAY
- Ledger/notifier outages never undo PAID; retries deliver exactly once
"""

from datetime import date
from decimal import Decimal

import pytest

from studio_kernel.exceptions import ForbiddenError, InvalidTransitionError
from studio_modules.payroll.finalization import expense_reference
from studio_modules.payroll.models import (
    CycleStatus,
    EmployeeAction,
    NotificationKind,
    SlipStatus,
)

TOTAL_PAYOUT = Decimal("103810")


class TestFinalizeCycle:

    def test_payout_is_sum_of_net_totals(self, manager, hr_actor, review_cycle):
        slips_before = manager.get_slips(hr_actor, review_cycle.id)

        result = manager.finalize_cycle(hr_actor, review_cycle.id)

        assert result.total_payout == TOTAL_PAYOUT
        assert result.total_payout == sum((s.net_total for s in slips_before), Decimal("0"))
        assert result.slip_count == 5
        assert result.cycle.status == CycleStatus.PAID
        assert result.cycle.total_payout == TOTAL_PAYOUT
        assert result.cycle.finalized_by == hr_actor.id
        assert result.cycle.finalized_at is not None

    def test_every_slip_paid(self, manager, hr_actor, review_cycle):
        manager.finalize_cycle(hr_actor, review_cycle.id)
        slips = manager.get_slips(hr_actor, review_cycle.id)
        assert {s.status for s in slips} == {SlipStatus.PAID}

    def test_single_salary_expense_posted(self, manager, hr_actor, review_cycle, ledger):
        result = manager.finalize_cycle(hr_actor, review_cycle.id)

        (posting,) = ledger.postings
        assert posting.category == "SALARY"
        assert posting.amount == TOTAL_PAYOUT
        assert posting.description == "Salary payroll (2024-06)"
        # Clock is 2024-07-01 12:00 in Asia/Bangkok
        assert posting.date == date(2024, 7, 1)
        assert posting.recorded_by == "Hana"
        assert posting.reference == result.expense_reference
        assert posting.reference == expense_reference(review_cycle.id)

    def test_each_employee_notified_of_payout(
        self, manager, hr_actor, review_cycle, notifier, roster
    ):
        notifier.calls.clear()

        result = manager.finalize_cycle(hr_actor, review_cycle.id)

        assert result.notifications_enqueued == 5
        assert len(notifier.calls) == 5
        assert {call["user_ids"][0] for call in notifier.calls} == {e.id for e in roster}
        assert all(call["title"] == "Salary paid" for call in notifier.calls)
        assert all(call["kind"] == NotificationKind.INFO for call in notifier.calls)

    def test_empty_cycle_closes_without_expense(self, manager, hr_actor, ledger):
        cycle = manager.generate_cycle(hr_actor, "2024-08", employees=[])
        manager.send_to_review(hr_actor, cycle.id, due_date=date(2024, 9, 5))

        result = manager.finalize_cycle(hr_actor, cycle.id)

        assert result.cycle.status == CycleStatus.PAID
        assert result.total_payout == Decimal("0")
        assert result.slip_count == 0
        assert result.expense_reference is None
        assert ledger.postings == []
        assert ledger.attempts == 0

    def test_from_ready_to_pay(self, manager, hr_actor, review_cycle):
        manager.mark_ready_to_pay(hr_actor, review_cycle.id)
        result = manager.finalize_cycle(hr_actor, review_cycle.id)
        assert result.cycle.status == CycleStatus.PAID

    def test_disputed_slip_frozen_with_the_rest(
        self, manager, hr_actor, alice_actor, review_cycle, alice, slip_for
    ):
        slip = slip_for(review_cycle.id, alice.id)
        manager.review.respond(
            alice_actor, slip.id, EmployeeAction.DISPUTE, reason="wrong late count"
        )

        manager.finalize_cycle(hr_actor, review_cycle.id)

        assert manager.get_slip(alice_actor, slip.id).status == SlipStatus.PAID

    def test_draft_cycle_cannot_be_finalized(
        self, manager, hr_actor, draft_cycle, ledger
    ):
        with pytest.raises(InvalidTransitionError) as exc_info:
            manager.finalize_cycle(hr_actor, draft_cycle.id)

        assert exc_info.value.current_state == "DRAFT"
        assert manager.get_cycle(draft_cycle.id).status == CycleStatus.DRAFT
        assert {s.status for s in manager.get_slips(hr_actor, draft_cycle.id)} == {
            SlipStatus.PENDING
        }
        assert ledger.postings == []

    def test_second_finalization_rejected(self, manager, hr_actor, review_cycle, ledger):
        manager.finalize_cycle(hr_actor, review_cycle.id)

        with pytest.raises(InvalidTransitionError):
            manager.finalize_cycle(hr_actor, review_cycle.id)

        assert len(ledger.postings) == 1

    def test_employee_cannot_finalize(self, manager, alice_actor, review_cycle, ledger):
        with pytest.raises(ForbiddenError):
            manager.finalize_cycle(alice_actor, review_cycle.id)
        assert ledger.postings == []

    def test_responses_rejected_after_finalization(
        self, manager, hr_actor, alice_actor, review_cycle, alice, slip_for
    ):
        slip = slip_for(review_cycle.id, alice.id)
        manager.finalize_cycle(hr_actor, review_cycle.id)

        with pytest.raises(InvalidTransitionError):
            manager.review.respond(alice_actor, slip.id, EmployeeAction.ACKNOWLEDGE)

    def test_finalization_logged(self, manager, hr_actor, review_cycle, captured_logs):
        manager.finalize_cycle(hr_actor, review_cycle.id)
        finalized = [
            r for r in captured_logs() if r["message"] == "payroll_cycle_finalized"
        ]
        assert len(finalized) == 1
        assert finalized[0]["total_payout"] == "103810.00"


class TestDeliveryFailures:

    def test_ledger_outage_does_not_undo_paid(self, manager, hr_actor, review_cycle, ledger):
        ledger.fail_times = 1

        result = manager.finalize_cycle(hr_actor, review_cycle.id)

        assert result.cycle.status == CycleStatus.PAID
        assert manager.get_cycle(review_cycle.id).status == CycleStatus.PAID
        assert ledger.postings == []

    def test_retry_posts_expense_once(self, manager, hr_actor, review_cycle, ledger):
        ledger.fail_times = 1
        manager.finalize_cycle(hr_actor, review_cycle.id)

        report = manager.retry_pending_deliveries(hr_actor, review_cycle.id)
        again = manager.retry_pending_deliveries(hr_actor, review_cycle.id)

        assert report.delivered == 1
        assert report.all_delivered
        assert again.delivered == 0
        assert len(ledger.postings) == 1

    def test_exhausted_delivery_marked_failed_and_logged(
        self, manager, hr_actor, review_cycle, ledger, captured_logs
    ):
        # payroll_config allows three attempts
        ledger.fail_times = 100
        manager.finalize_cycle(hr_actor, review_cycle.id)
        manager.retry_pending_deliveries(hr_actor, review_cycle.id)

        report = manager.retry_pending_deliveries(hr_actor, review_cycle.id)

        assert report.failed == 1
        assert report.failed_keys == (expense_reference(review_cycle.id),)
        exhausted = [
            r for r in captured_logs() if r["message"] == "outbox_delivery_exhausted"
        ]
        assert len(exhausted) == 1
        assert exhausted[0]["level"] == "ERROR"
        assert exhausted[0]["attempts"] == 3

    def test_failed_delivery_requeued_on_retry(
        self, manager, hr_actor, review_cycle, ledger
    ):
        ledger.fail_times = 100
        manager.finalize_cycle(hr_actor, review_cycle.id)
        manager.retry_pending_deliveries(hr_actor, review_cycle.id)
        manager.retry_pending_deliveries(hr_actor, review_cycle.id)

        ledger.fail_times = 0
        report = manager.retry_pending_deliveries(hr_actor, review_cycle.id)

        assert report.delivered == 1
        (posting,) = ledger.postings
        assert posting.amount == TOTAL_PAYOUT

    def test_notifier_outage_retried(self, manager, hr_actor, review_cycle, notifier):
        notifier.calls.clear()
        notifier.fail_times = notifier.attempts + 2

        manager.finalize_cycle(hr_actor, review_cycle.id)
        assert len(notifier.calls) == 3

        report = manager.retry_pending_deliveries(hr_actor, review_cycle.id)
        assert report.delivered == 2
        assert len(notifier.calls) == 5

    def test_retry_requires_privilege(self, manager, alice_actor, review_cycle):
        with pytest.raises(ForbiddenError):
            manager.retry_pending_deliveries(alice_actor, review_cycle.id)
