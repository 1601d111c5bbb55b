"""Pytest configuration and fixtures."""

import os
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

# Set test environment variables before importing settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_FORMAT", "console")

from arq_cashflow.audit import AuditEntry  # noqa: E402
from arq_cashflow.clock import FixedClock  # noqa: E402
from arq_cashflow.config import get_settings  # noqa: E402
from arq_cashflow.models import TenantContext  # noqa: E402
from arq_cashflow.service import RecurringExpenseService  # noqa: E402
from arq_cashflow.store import SqlSeriesStore  # noqa: E402

TODAY = date(2026, 10, 18)


class RecordingAuditSink:
    """Audit sink that keeps entries in memory."""

    def __init__(self):
        self.entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [f"{e.entity_type.value}:{e.action.value}" for e in self.entries]


@pytest.fixture
def settings():
    """Fresh settings read from the test environment."""
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def clock():
    """Clock pinned to the reference date of the test suite."""
    return FixedClock.on(TODAY)


@pytest.fixture
def ctx():
    return TenantContext(team_id=uuid4(), user_id=uuid4(), user_email="owner@example.com")


@pytest.fixture
def other_ctx():
    """A second, unrelated team."""
    return TenantContext(team_id=uuid4(), user_id=uuid4(), user_email="other@example.com")


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest_asyncio.fixture
async def store():
    """Fresh in-memory SQLite store with the schema created."""
    sql_store = SqlSeriesStore.from_url("sqlite+aiosqlite://", transaction_timeout=5)
    await sql_store.create_schema()
    yield sql_store
    await sql_store.dispose()


@pytest.fixture
def service(store, audit_sink, clock, settings):
    return RecurringExpenseService(store, audit_sink=audit_sink, clock=clock, settings=settings)


@pytest.fixture
def monthly_fields():
    """Monthly rent on the 10th, started two months before today."""
    return {
        "description": "Office rent",
        "amount": Decimal("100.00"),
        "category": "rent",
        "frequency": "monthly",
        "interval": 1,
        "day_of_month": 10,
        "start_date": date(2026, 8, 10),
        "vendor": "Landlord LLC",
        "notes": "Paid by bank transfer",
        "invoice_number": "RENT",
        "expense_type": "operational",
    }
