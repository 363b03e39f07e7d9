import pytest

from ledger.domain import CategoryBudget
from ledger.errors import RecordNotFound
from ledger.repository import Repository


def test_transactions_by_category_and_month(ledger, book, groceries, checking):
    book.add_transaction(checking.id, "expense", 5, "2024-03-01", category_id=groceries.id)
    book.add_transaction(checking.id, "expense", 6, "2024-04-01", category_id=groceries.id)
    repo = Repository(ledger.store)
    assert [t.amount for t in repo.list_transactions_by_category_and_month(groceries.id, "2024-03")] == [5]
    assert repo.count_transactions_for_category(groceries.id) == 2


def test_budget_lookup_and_save(store, groceries):
    repo = Repository(store)
    created = repo.create_budget(CategoryBudget.opening("", groceries.id, "2024-03", 12))
    assert created.id
    assert repo.find_budget(groceries.id, "2024-03") == created
    assert repo.find_budget(groceries.id, "2024-04") is None
    saved = repo.save_budget(created.with_assigned(8))
    assert saved.available == 20
    assert [b.month for b in repo.budgets_for_month("2024-03")] == ["2024-03"]


def test_categories_sorted_by_name(store):
    repo = Repository(store)
    repo.create_category("rent")
    repo.create_category("Food")
    assert [c.name for c in repo.list_categories()] == ["Food", "rent"]


def test_missing_records_raise(store):
    repo = Repository(store)
    with pytest.raises(RecordNotFound):
        repo.get_account("nope")
    with pytest.raises(RecordNotFound):
        repo.get_transaction("nope")
    with pytest.raises(RecordNotFound):
        repo.delete_category_cascade("nope")
