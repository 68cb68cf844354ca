"""
Pytest fixtures for the studio payroll test suite.

Provides:
- In-memory SQLite sessions (engine initialized through studio_kernel.db.engine)
- A tracked PostgreSQL session factory for concurrency tests
- Deterministic clock and structured-log capture
- In-memory fakes for every payroll collaborator (personnel directory,
  attendance and duty feeds, rate provider, file storage, notification
  dispatcher, ledger) plus actors and a wired CycleManager.  All IDs are
  deterministic so assertions can name them directly.

Environment Variables:
- DATABASE_URL: optional database URL.  Defaults to in-memory SQLite;
  row locks (SELECT ... FOR UPDATE) are a no-op there, so tests marked
  ``postgres`` are skipped unless it points at PostgreSQL.
"""

import json
import logging
import os
import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.orm import Session

from studio_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from studio_kernel.domain.clock import DeterministicClock
from studio_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from studio_modules.payroll.authorizer import Actor, Authorizer
from studio_modules.payroll.config import PayrollConfig
from studio_modules.payroll.cycle_manager import CycleManager
from studio_modules.payroll.models import (
    AttendanceRecord,
    DeductionRateConfig,
    DutyRecord,
    Employee,
    TaxScheme,
)

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def is_postgres_url(url: str) -> bool:
    return url.startswith("postgresql")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture studio_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, manager):
            manager.generate_cycle(...)
            logs = captured_logs()
            assert any(r["message"] == "payroll_cycle_generated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("studio_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="function")
def session() -> Generator[Session, None, None]:
    """A fresh schema and session per test."""
    init_engine_from_url(get_database_url())
    create_tables()
    session = get_session()
    try:
        yield session
    finally:
        session.close()
        drop_tables()
        reset_engine()


@pytest.fixture(scope="function")
def pg_session_factory() -> Generator:
    """
    Session factory for tests that need real row locks across connections.

    Each thread opens its own session from the factory.  On teardown every
    tracked session is rolled back and closed, then the schema is dropped.
    """
    url = get_database_url()
    if not is_postgres_url(url):
        pytest.skip("requires PostgreSQL; set DATABASE_URL")

    init_engine_from_url(url)
    create_tables()
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = get_session()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        s.rollback()
        s.close()
    drop_tables()
    reset_engine()


# =============================================================================
# Common fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return UUID("00000000-0000-4000-a000-0000000000f0")


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-07-01 05:00 UTC (12:00 in Asia/Bangkok)."""
    return DeterministicClock(datetime(2024, 7, 1, 5, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Payroll fixtures
# =============================================================================

BANGKOK = ZoneInfo("Asia/Bangkok")

# ---------------------------------------------------------------------------
# Deterministic IDs
# ---------------------------------------------------------------------------

EMP_ALICE_ID = UUID("00000000-0000-4000-b000-000000000001")
EMP_BOB_ID = UUID("00000000-0000-4000-b000-000000000002")
EMP_CAROL_ID = UUID("00000000-0000-4000-b000-000000000003")
EMP_DAN_ID = UUID("00000000-0000-4000-b000-000000000004")
HR_MANAGER_ID = UUID("00000000-0000-4000-b000-000000000005")
ADMIN_ID = UUID("00000000-0000-4000-b000-000000000006")
NEW_HIRE_ID = UUID("00000000-0000-4000-b000-000000000007")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeDirectory:
    def __init__(self, employees, fail: bool = False):
        self.employees = list(employees)
        self.fail = fail
        self.calls = 0

    def list_active_employees(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("directory unavailable")
        return [emp for emp in self.employees if emp.is_active]


class FakeAttendanceFeed:
    def __init__(self, records=(), fail: bool = False, delay: float = 0.0):
        self.records = list(records)
        self.fail = fail
        self.delay = delay
        self.windows: list[tuple[date, date]] = []

    def get_attendance(self, period_start, period_end):
        self.windows.append((period_start, period_end))
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ConnectionError("attendance feed unavailable")
        return [r for r in self.records if period_start <= r.date <= period_end]


class FakeDutyFeed:
    def __init__(self, records=(), fail: bool = False):
        self.records = list(records)
        self.fail = fail

    def get_duties(self, period_start, period_end):
        if self.fail:
            raise ConnectionError("duty feed unavailable")
        return [r for r in self.records if period_start <= r.date <= period_end]


class FakeRateProvider:
    def __init__(self, rates: DeductionRateConfig):
        self.rates = rates

    def get_rates(self):
        return self.rates


class FakeFileStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads = []

    def upload(self, file):
        if self.fail:
            raise IOError("storage rejected upload")
        self.uploads.append(file)
        return f"files/{len(self.uploads)}/{file.filename}"


class FakeNotifier:
    """Records every notify call; fails the first ``fail_times`` calls."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = 0
        self.calls = []

    def notify(self, user_ids, title, message, kind):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ConnectionError("notification gateway down")
        self.calls.append(
            {"user_ids": list(user_ids), "title": title, "message": message, "kind": kind}
        )


class FakeLedger:
    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = 0
        self.postings = []

    def post_expense(self, posting):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ConnectionError("ledger unavailable")
        self.postings.append(posting)


def bangkok(year, month, day, hour, minute, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=BANGKOK)


# ---------------------------------------------------------------------------
# Roster and rates
# ---------------------------------------------------------------------------


@pytest.fixture
def alice():
    """Scenario employee: 30000 base, social security, WHT_3."""
    return Employee(
        id=EMP_ALICE_ID,
        name="Alice",
        base_salary=Decimal("30000"),
        social_security_included=True,
        tax_scheme=TaxScheme.WHT_3,
    )


@pytest.fixture
def roster(alice):
    return [
        alice,
        Employee(
            id=EMP_BOB_ID,
            name="Bob",
            base_salary=Decimal("12000"),
            social_security_included=True,
        ),
        Employee(
            id=EMP_CAROL_ID,
            name="Carol",
            base_salary=Decimal("18000"),
            tax_scheme=TaxScheme.WHT_3,
        ),
        Employee(id=EMP_DAN_ID, name="Dan", base_salary=Decimal("9000")),
        Employee(
            id=HR_MANAGER_ID,
            name="Hana",
            base_salary=Decimal("40000"),
            social_security_included=True,
            tax_scheme=TaxScheme.WHT_3,
            position="HR Manager",
        ),
    ]


@pytest.fixture
def new_hire():
    return Employee(id=NEW_HIRE_ID, name="Nina", base_salary=Decimal("15000"))


@pytest.fixture
def rates():
    return DeductionRateConfig(
        late_rate_per_occurrence=Decimal("50"),
        absent_rate_per_day=Decimal("300"),
        missed_duty_rate_per_occurrence=Decimal("100"),
        version="test-1",
    )


@pytest.fixture
def june_attendance():
    """Alice: one late day and one absence in June 2024."""
    return [
        AttendanceRecord(EMP_ALICE_ID, date(2024, 6, 3), "PRESENT", bangkok(2024, 6, 3, 9, 45)),
        AttendanceRecord(EMP_ALICE_ID, date(2024, 6, 4), "PRESENT", bangkok(2024, 6, 4, 10, 20)),
        AttendanceRecord(EMP_ALICE_ID, date(2024, 6, 5), "ABSENT"),
    ]


@pytest.fixture
def june_duties():
    return [
        DutyRecord(EMP_DAN_ID, date(2024, 6, 10), "Close studio", "ABANDONED"),
        DutyRecord(EMP_DAN_ID, date(2024, 6, 11), "Open studio", "COMPLETED"),
    ]


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture
def hr_actor():
    return Actor(id=HR_MANAGER_ID, name="Hana", role="MEMBER", position="HR Manager")


@pytest.fixture
def admin_actor():
    return Actor(id=ADMIN_ID, name="Root", role="ADMIN")


@pytest.fixture
def alice_actor():
    return Actor(id=EMP_ALICE_ID, name="Alice", role="MEMBER", position="Designer")


@pytest.fixture
def bob_actor():
    return Actor(id=EMP_BOB_ID, name="Bob", role="MEMBER")


@pytest.fixture
def authorizer():
    return Authorizer(
        privileged_roles={"ADMIN"},
        privileged_positions={"CEO", "HR Manager", "Senior HR"},
    )


# ---------------------------------------------------------------------------
# Collaborators and manager
# ---------------------------------------------------------------------------


@pytest.fixture
def directory(roster):
    return FakeDirectory(roster)


@pytest.fixture
def attendance_feed(june_attendance):
    return FakeAttendanceFeed(june_attendance)


@pytest.fixture
def duty_feed(june_duties):
    return FakeDutyFeed(june_duties)


@pytest.fixture
def rate_provider(rates):
    return FakeRateProvider(rates)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def file_storage():
    return FakeFileStorage()


@pytest.fixture
def payroll_config():
    return PayrollConfig(feed_timeout_seconds=2.0, max_delivery_attempts=3)


@pytest.fixture
def make_manager(
    session,
    authorizer,
    directory,
    attendance_feed,
    duty_feed,
    rate_provider,
    notifier,
    ledger,
    file_storage,
    payroll_config,
    deterministic_clock,
):
    """Build a CycleManager, overriding any collaborator by keyword."""

    def _make(**overrides):
        kwargs = dict(
            authorizer=authorizer,
            directory=directory,
            attendance_feed=attendance_feed,
            duty_feed=duty_feed,
            rate_provider=rate_provider,
            notifier=notifier,
            ledger=ledger,
            file_storage=file_storage,
            config=payroll_config,
            clock=deterministic_clock,
        )
        kwargs.update(overrides)
        return CycleManager(session, **kwargs)

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def draft_cycle(manager, hr_actor):
    """A generated June 2024 cycle, still DRAFT."""
    return manager.generate_cycle(hr_actor, "2024-06")


@pytest.fixture
def review_cycle(manager, hr_actor, draft_cycle):
    """The June 2024 cycle sent to review."""
    return manager.send_to_review(hr_actor, draft_cycle.id, due_date=date(2024, 7, 5))


@pytest.fixture
def slip_for(manager, admin_actor):
    """Look up the slip of one employee in a cycle."""

    def _slip(cycle_id, user_id):
        (slip,) = [
            s for s in manager.get_slips(admin_actor, cycle_id) if s.user_id == user_id
        ]
        return slip

    return _slip
