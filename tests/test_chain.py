import pytest

from ledger.errors import ChainResolutionUnbounded, RecordNotFound
from ledger.repository import Repository
from ledger.transactions import TransactionBook
from ledger.transforms import chain_breaks


def months_of(ledger, category_id):
    return [b.month for b in ledger.list_budgets(category_id)]


def test_creates_chain_from_creation_month(ledger, groceries):
    budget = ledger.get_or_create_budget(groceries.id, "2024-03")
    assert budget.month == "2024-03"
    rows = ledger.list_budgets(groceries.id)
    assert [b.month for b in rows] == ["2024-01", "2024-02", "2024-03"]
    assert all(b.starting_balance == 0 and b.available == 0 for b in rows)


def test_existing_budget_returned_unchanged(ledger, groceries):
    first = ledger.get_or_create_budget(groceries.id, "2024-02")
    again = ledger.get_or_create_budget(groceries.id, "2024-02")
    assert again.id == first.id
    assert months_of(ledger, groceries.id) == ["2024-01", "2024-02"]


def test_new_month_carries_previous_available(ledger, groceries):
    ledger.assign_to_budget(groceries.id, "2024-01", 50)
    budget = ledger.get_or_create_budget(groceries.id, "2024-03")
    assert budget.starting_balance == 50
    assert budget.available == 50
    assert months_of(ledger, groceries.id) == ["2024-01", "2024-02", "2024-03"]


def test_month_before_floor_is_its_own_anchor(ledger, groceries):
    budget = ledger.get_or_create_budget(groceries.id, "2023-11")
    assert budget.starting_balance == 0
    assert months_of(ledger, groceries.id) == ["2023-11"]


def test_chain_epoch_replaces_creation_month(ledger_factory):
    ledger = ledger_factory(CHAIN_EPOCH="2024-02")
    category = TransactionBook(ledger).create_category("Rent")
    ledger.get_or_create_budget(category.id, "2024-04")
    assert months_of(ledger, category.id) == ["2024-02", "2024-03", "2024-04"]


def test_depth_cap_raises_and_creates_nothing(ledger_factory):
    ledger = ledger_factory(MAX_CHAIN_DEPTH=2)
    category = TransactionBook(ledger).create_category("Rent")
    with pytest.raises(ChainResolutionUnbounded) as exc:
        ledger.get_or_create_budget(category.id, "2024-06")
    assert exc.value.details["max_depth"] == 2
    assert ledger.list_budgets(category.id) == []
    assert len(ledger.cache) == 0


def test_walk_within_cap_succeeds(ledger_factory):
    ledger = ledger_factory(MAX_CHAIN_DEPTH=2)
    category = TransactionBook(ledger).create_category("Rent")
    ledger.get_or_create_budget(category.id, "2024-03")
    assert months_of(ledger, category.id) == ["2024-01", "2024-02", "2024-03"]


def test_unknown_category(ledger):
    with pytest.raises(RecordNotFound):
        ledger.get_or_create_budget("nope", "2024-03")


def test_invalid_month(ledger, groceries):
    with pytest.raises(ValueError):
        ledger.get_or_create_budget(groceries.id, "March")


def test_resolved_budgets_are_cached(ledger, groceries):
    ledger.get_or_create_budget(groceries.id, "2024-03")
    assert ledger.cache.cached_months(groceries.id) == ["2024-01", "2024-02", "2024-03"]
    hits = ledger.cache.hits
    ledger.get_or_create_budget(groceries.id, "2024-03")
    assert ledger.cache.hits == hits + 1


def test_budgets_for_month_covers_every_category(ledger, book):
    rent = book.create_category("Rent")
    food = book.create_category("Food")
    budgets = ledger.get_budgets_for_month("2024-02")
    assert [b.category_id for b in budgets] == [food.id, rent.id]
    assert len(Repository(ledger.store).budgets_for_month("2024-02")) == 2


def test_warm_months(ledger, book):
    book.create_category("Rent")
    book.create_category("Food")
    assert ledger.warm_months("2024-01", "2024-03") == 6
    assert len(ledger.list_budgets()) == 6


def test_floor_month_links_to_existing_earlier_month(ledger, groceries):
    ledger.assign_to_budget(groceries.id, "2023-12", 100)
    budget = ledger.get_or_create_budget(groceries.id, "2024-01")
    assert budget.starting_balance == 100
    assert budget.available == 100
    assert chain_breaks(ledger.list_budgets(groceries.id)) == []


def test_month_before_floor_carries_earlier_overspending(ledger, book, groceries, checking):
    book.add_transaction(checking.id, "expense", 40, "2023-11-20", category_id=groceries.id)
    budget = ledger.get_or_create_budget(groceries.id, "2023-12")
    assert budget.starting_balance == -40
    assert months_of(ledger, groceries.id) == ["2023-11", "2023-12"]
    assert chain_breaks(ledger.list_budgets(groceries.id)) == []


def test_filling_a_gap_relinks_later_months(ledger, groceries):
    ledger.assign_to_budget(groceries.id, "2024-01", 30)
    ledger.get_or_create_budget(groceries.id, "2024-02")
    ledger.assign_to_budget(groceries.id, "2023-11", 20)
    ledger.get_or_create_budget(groceries.id, "2023-12")
    rows = ledger.list_budgets(groceries.id)
    assert [b.month for b in rows] == ["2023-11", "2023-12", "2024-01", "2024-02"]
    assert [b.available for b in rows] == [20, 20, 50, 50]
    assert chain_breaks(rows) == []
