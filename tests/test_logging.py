"""Tests for the structured logging system (studio_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from studio_kernel.exceptions import InvalidTransitionError, UpstreamFailureError
from studio_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from studio_modules.payroll.models import SlipStatus


@pytest.fixture(autouse=True)
def _isolated_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def json_stream():
    """Route studio_kernel logs into a buffer and return a reader of parsed lines."""
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    configure_logging(handler=handler)

    def read() -> list[dict]:
        return [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    return read


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_envelope(self, json_stream):
        get_logger("modules.payroll").info("payroll_cycle_generated")

        (record,) = json_stream()
        assert record["message"] == "payroll_cycle_generated"
        assert record["level"] == "INFO"
        assert record["logger"] == "studio_kernel.modules.payroll"
        assert record["ts"].endswith("+00:00")

    def test_payroll_values_serialized(self, json_stream):
        slip_id = uuid4()
        get_logger("modules.payroll").info(
            "slip_response_recorded",
            extra={
                "slip_ref": slip_id,
                "net_total": Decimal("28000.00"),
                "slip_status": SlipStatus.DISPUTED,
                "deduction_count": 3,
            },
        )

        (record,) = json_stream()
        assert record["slip_ref"] == str(slip_id)
        assert record["net_total"] == "28000.00"
        assert record["slip_status"] == "DISPUTED"
        assert record["deduction_count"] == 3

    def test_bound_context_appears_on_records(self, json_stream):
        cycle_id = uuid4()
        with LogContext.bind(cycle_id=cycle_id, actor_id="hr-1"):
            get_logger("modules.payroll").info("cycle_sent_to_review")
        get_logger("modules.payroll").info("outside")

        inside, outside = json_stream()
        assert inside["cycle_id"] == str(cycle_id)
        assert inside["actor_id"] == "hr-1"
        assert "cycle_id" not in outside

    def test_invalid_transition_fields_flattened(self, json_stream):
        try:
            raise InvalidTransitionError("PayrollCycle", "c-1", "DRAFT", "finalize")
        except InvalidTransitionError:
            get_logger("modules.payroll").warning("transition_rejected", exc_info=True)

        (record,) = json_stream()
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_type"] == "InvalidTransitionError"
        assert record["exc_current_state"] == "DRAFT"
        assert record["exc_action"] == "finalize"
        assert "Traceback" in record["traceback"]

    def test_upstream_failure_fields_flattened(self, json_stream):
        try:
            raise UpstreamFailureError("ledger", "post_expense", "connection refused")
        except UpstreamFailureError:
            get_logger("modules.payroll.outbox").error("outbox_delivery_failed", exc_info=True)

        (record,) = json_stream()
        assert record["exc_code"] == "UPSTREAM_FAILURE"
        assert record["exc_collaborator"] == "ledger"
        assert record["exc_operation"] == "post_expense"

    def test_default_level_drops_debug(self, json_stream):
        logger = get_logger("modules.payroll")
        logger.debug("slip_recomputed")
        logger.info("slip_edited")
        logger.warning("outbox_delivery_failed")

        assert [r["message"] for r in json_stream()] == ["slip_edited", "outbox_delivery_failed"]

    def test_formatter_usable_standalone(self):
        record = logging.LogRecord("studio_kernel.x", logging.ERROR, __file__, 1, "boom", (), None)
        assert json.loads(StructuredFormatter().format(record))["level"] == "ERROR"


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_ignores_none(self):
        LogContext.set(correlation_id="req-1", slip_id=None)
        assert LogContext.get_all() == {"correlation_id": "req-1"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError, match="period_key"):
            LogContext.set(period_key="2024-06")

    def test_clear(self):
        LogContext.set(actor_id="a", cycle_id="c")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(cycle_id="outer"):
            with LogContext.bind(cycle_id="inner", slip_id="s-1"):
                assert LogContext.get_all() == {"cycle_id": "inner", "slip_id": "s-1"}
            assert LogContext.get_all() == {"cycle_id": "outer"}
        assert LogContext.get_all() == {}

    def test_bind_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(actor_id=uuid4()):
                raise RuntimeError("rolled back")
        assert LogContext.get_all() == {}

    def test_bind_ignores_none_and_unknown_fields(self):
        with LogContext.bind(actor_id=None, not_a_field="x"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_second_call_is_ignored(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("studio_kernel").handlers) == 1

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert logging.getLogger("studio_kernel").propagate is False

    def test_debug_level_reaches_nested_loggers(self):
        buffer = StringIO()
        configure_logging(handler=logging.StreamHandler(buffer), level=logging.DEBUG)
        get_logger("modules.payroll.outbox").debug("outbox_event_enqueued")

        record = json.loads(buffer.getvalue().splitlines()[0])
        assert record["logger"] == "studio_kernel.modules.payroll.outbox"

    def test_reset_allows_reconfiguration(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        assert logging.getLogger("studio_kernel").handlers == []
