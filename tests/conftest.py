from datetime import date, datetime, timezone

import pytest

from ledger.config import LedgerSettings
from ledger.engine import BudgetLedger
from ledger.events import EventBus
from ledger.policy import AccessibilityPolicy
from ledger.store import LedgerStore
from ledger.transactions import TransactionBook

# every record created in these tests is stamped in January 2024,
# so category chains start at 2024-01
CREATED = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)
TODAY = date(2024, 4, 10)


def make_ledger(store=None, bus=None, **settings) -> BudgetLedger:
    return BudgetLedger(
        store or LedgerStore.in_memory(clock=lambda: CREATED),
        LedgerSettings(**settings),
        policy=AccessibilityPolicy(
            months_ahead=settings.get("ACCESSIBLE_MONTHS_AHEAD", 1),
            enforce=settings.get("ENFORCE_MONTH_ACCESS", True),
            today=lambda: TODAY,
        ),
        bus=bus or EventBus(),
    )


@pytest.fixture
def store():
    return LedgerStore.in_memory(clock=lambda: CREATED)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def ledger(store, bus):
    return make_ledger(store, bus)


@pytest.fixture
def book(ledger):
    return TransactionBook(ledger)


@pytest.fixture
def groceries(book):
    return book.create_category("Groceries")


@pytest.fixture
def checking(book):
    return book.open_account("Checking", "checking", 1000)


@pytest.fixture
def ledger_factory():
    return make_ledger
