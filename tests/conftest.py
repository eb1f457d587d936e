"""
Pytest fixtures for the inventory ledger test suite.

Provides:
- A deterministic clock
- A small seeded catalog (two hospitals, five departments, four access levels)
- In-memory and SQLite-backed ``InventoryLedgerService`` instances
- Captured structured logs

SQLite databases live under ``tmp_path``; no external database is needed.
"""

import json
import logging
from io import StringIO

import pytest

from inventory_config import EngineSettings, ReferenceData, ThresholdDef
from inventory_kernel.db.repository import InMemoryRepository, LedgerWrite
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.values import (
    AccessLevel,
    Department,
    Hospital,
    Item,
    User,
)
from inventory_kernel.exceptions import StoreUnavailableError
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_services import InventoryLedgerService

ADMIN = "U-ADMIN"
MANAGER = "U-MANAGER"
NURSE = "U-NURSE"
AUDITOR = "U-AUDITOR"

SURGERY = "Surgery"
PHARMACY = "Pharmacy"
ICU = "ICU"
EMERGENCY = "Emergency"
PEDIATRICS = "Pediatrics"


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
    Capture inventory_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.book_in(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_booked_in" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
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
# Reference data
# =============================================================================


def build_reference_data() -> ReferenceData:
    general = Hospital(
        hospital_id="H1",
        name="General Hospital",
        location="Downtown",
        hospital_type="public",
        departments=(
            Department(SURGERY, "Surgery", "H1", "clinical", 38),
            Department(PHARMACY, "Pharmacy", "H1", "support", 15),
            Department(ICU, "Intensive Care Unit", "H1", "clinical", 28),
            Department(EMERGENCY, "Emergency Department", "H1", "clinical", 45),
        ),
    )
    childrens = Hospital(
        hospital_id="H2",
        name="Children's Medical Center",
        location="Westside",
        hospital_type="specialized",
        departments=(Department(PEDIATRICS, "Pediatrics", "H2", "clinical", 32),),
    )
    items = (
        Item("ITM-001", "Surgical Gloves", "Protective Equipment", "boxes", 100),
        Item("ITM-002", "IV Catheters", "Medical Supplies", "units", 50),
        Item("ITM-003", "Oxygen Masks", "Respiratory", "units", 30),
        Item("ITM-005", "Syringes", "Medical Supplies", "units", 200),
        Item("IV-003", "IV Solution", "Medical Supplies", "bags", 40),
        Item("ITM-009", "Éclairage frontal", "Equipment", "units", 2),
        Item("ITM-OLD", "Retired Tourniquet", "Equipment", "units", 10, is_active=False),
    )
    users = (
        User(ADMIN, "Dr. John Smith", EMERGENCY, AccessLevel.ADMIN, "H1"),
        User(MANAGER, "Sarah Johnson", PHARMACY, AccessLevel.MANAGER, "H1"),
        User(NURSE, "Emily Rodriguez", SURGERY, AccessLevel.USER, "H1"),
        User(AUDITOR, "Ward Auditor", SURGERY, AccessLevel.READ_ONLY, "H1"),
    )
    return ReferenceData(
        hospitals=(general, childrens),
        items=items,
        users=users,
        thresholds=(ThresholdDef("IV-003", ICU, 60),),
    )


@pytest.fixture
def reference_data() -> ReferenceData:
    return build_reference_data()


@pytest.fixture
def clock() -> DeterministicClock:
    """Advances one second per reading so log timestamps are distinct."""
    return DeterministicClock(step_seconds=1)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(lock_timeout_seconds=2.0)


# =============================================================================
# Ledgers
# =============================================================================


@pytest.fixture
def ledger(settings, reference_data, clock):
    """In-memory InventoryLedgerService, opened for the test."""
    service = InventoryLedgerService(
        settings=settings,
        reference=reference_data,
        clock=clock,
        configure_logs=False,
    ).open()
    yield service
    service.close()


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def open_sql_ledger(settings, reference_data, clock, sqlite_url):
    """Factory opening SQLite-backed ledgers over one database file.

    Only one may be open at a time: the SQL repository uses the
    process-wide engine.
    """
    opened: list[InventoryLedgerService] = []

    def _open(**overrides) -> InventoryLedgerService:
        service = InventoryLedgerService(
            settings=EngineSettings(
                lock_timeout_seconds=settings.lock_timeout_seconds,
                database_url=sqlite_url,
            ),
            reference=overrides.get("reference", reference_data),
            clock=overrides.get("clock", clock),
            configure_logs=False,
        ).open()
        opened.append(service)
        return service

    yield _open

    for service in opened:
        service.close()


@pytest.fixture
def sql_ledger(open_sql_ledger):
    return open_sql_ledger()


class FlakyRepository(InMemoryRepository):
    """In-memory repository whose next commits can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_commits = 0
        self.commit_count = 0
        # fail once after this many successful commits
        self.fail_after: int | None = None

    def commit(self, write: LedgerWrite) -> None:
        if self.fail_after is not None and self.commit_count >= self.fail_after:
            self.fail_after = None
            raise StoreUnavailableError("commit")
        if self.fail_commits > 0:
            self.fail_commits -= 1
            raise StoreUnavailableError("commit")
        super().commit(write)
        self.commit_count += 1


@pytest.fixture
def flaky_repository() -> FlakyRepository:
    return FlakyRepository()


@pytest.fixture
def flaky_ledger(settings, reference_data, clock, flaky_repository):
    service = InventoryLedgerService(
        settings=settings,
        reference=reference_data,
        repository=flaky_repository,
        clock=clock,
        configure_logs=False,
    ).open()
    yield service
    service.close()
