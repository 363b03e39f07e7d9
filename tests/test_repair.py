import pytest

from ledger.events import CHAIN_REPAIRED
from ledger.repository import Repository
from ledger.store import CATEGORY_BUDGETS


def corrupt(store, category_id, month, **fields):
    record = store.filter(CATEGORY_BUDGETS, category_id=category_id, month=month)[0]
    store.update(CATEGORY_BUDGETS, record["id"], fields)


def test_repair_fixes_broken_carry_and_formula(ledger, store, groceries):
    ledger.assign_to_budget(groceries.id, "2024-02", 100)
    ledger.assign_to_budget(groceries.id, "2024-03", 10)
    corrupt(store, groceries.id, "2024-03", starting_balance=0, available=0)
    kinds = {(i.kind, i.month) for i in ledger.find_inconsistencies(groceries.id)}
    assert ("formula", "2024-03") in kinds
    assert ("chain", "2024-03") in kinds

    report = ledger.repair_chain(groceries.id, "2024-01", "2024-03")
    assert report.changed_months == ("2024-03",)
    march = Repository(store).find_budget(groceries.id, "2024-03")
    assert march.starting_balance == 100
    assert march.available == 110
    assert ledger.find_inconsistencies() == []


def test_repair_recomputes_activity_from_ledger(ledger, book, store, groceries, checking):
    ledger.assign_to_budget(groceries.id, "2024-03", 100)
    book.add_transaction(checking.id, "expense", 30, "2024-03-02", category_id=groceries.id)
    book.add_transaction(checking.id, "expense", 12, "2024-03-09", category_id=groceries.id)
    corrupt(store, groceries.id, "2024-03", activity=0, available=100)
    assert [i.kind for i in ledger.find_inconsistencies()] == ["activity"]

    ledger.repair_chain(groceries.id, "2024-03", "2024-03")
    march = Repository(store).find_budget(groceries.id, "2024-03")
    assert march.activity == -42
    assert march.available == 58


def test_repair_starts_from_last_budget_before_range(ledger, store, groceries):
    ledger.assign_to_budget(groceries.id, "2024-01", 40)
    ledger.get_or_create_budget(groceries.id, "2024-03")
    corrupt(store, groceries.id, "2024-02", starting_balance=0, available=0)
    ledger.repair_chain(groceries.id, "2024-02", "2024-03")
    repo = Repository(store)
    assert repo.find_budget(groceries.id, "2024-02").available == 40
    assert repo.find_budget(groceries.id, "2024-03").starting_balance == 40


def test_repair_without_earlier_budget_starts_at_zero(ledger, store, groceries):
    ledger.assign_to_budget(groceries.id, "2024-01", 40)
    corrupt(store, groceries.id, "2024-01", starting_balance=15, available=55)
    ledger.repair_chain(groceries.id, "2024-01", "2024-01")
    assert Repository(store).find_budget(groceries.id, "2024-01").available == 40


def test_repair_skips_missing_months_and_links_later_ones(ledger, store, groceries):
    for month in ("2024-01", "2024-02", "2024-05"):
        store.create(CATEGORY_BUDGETS, {"category_id": groceries.id, "month": month,
                                        "starting_balance": 0, "assigned": 10, "activity": 0, "available": 10})
    store.create(CATEGORY_BUDGETS, {"category_id": groceries.id, "month": "2024-06",
                                    "starting_balance": 0, "assigned": 0, "activity": 0, "available": 0})
    report = ledger.repair_chain(groceries.id, "2024-01", "2024-05")

    repo = Repository(store)
    assert repo.find_budget(groceries.id, "2024-03") is None
    assert repo.find_budget(groceries.id, "2024-02").available == 20
    # the carry continues over the gap to the next existing month
    assert repo.find_budget(groceries.id, "2024-05").starting_balance == 20
    assert repo.find_budget(groceries.id, "2024-06").starting_balance == 30
    assert report.changed_months == ("2024-02", "2024-05", "2024-06")
    assert [b.month for b in report.budgets] == ["2024-01", "2024-02", "2024-05"]


def test_repair_of_consistent_chain_changes_nothing(ledger, store, bus, groceries):
    seen = []
    bus.subscribe(CHAIN_REPAIRED, lambda event, payload: seen.append(payload) or {})
    ledger.assign_to_budget(groceries.id, "2024-03", 10)
    before = store.get(CATEGORY_BUDGETS)
    report = ledger.repair_chain(groceries.id, "2024-01", "2024-04")
    assert not report.changed
    assert store.get(CATEGORY_BUDGETS) == before
    assert seen[0]["changed_months"] == []


def test_repair_rejects_reversed_range(ledger, groceries):
    with pytest.raises(ValueError):
        ledger.repair_chain(groceries.id, "2024-04", "2024-01")


def test_repair_all(ledger, book, store, groceries):
    rent = book.create_category("Rent")
    ledger.assign_to_budget(groceries.id, "2024-02", 10)
    ledger.assign_to_budget(rent.id, "2024-02", 20)
    corrupt(store, rent.id, "2024-02", available=0)
    reports = ledger.repair_all("2024-01", "2024-04")
    assert {r.category_id: r.changed for r in reports} == {groceries.id: False, rent.id: True}
