import json

import pytest

from ledger.domain import CategoryBudget, Transaction, TransactionType
from ledger.filters import all_of, by_account, by_month, by_type, iter_category_expenses, iter_transactions
from ledger.store import ACCOUNTS, CATEGORIES, LedgerStore
from ledger.transforms import account_balance, activity_by_category_month, chain_breaks, load_seed


def tx(id, type, amount, date, account_id="a1", **kw):
    return Transaction(id=id, account_id=account_id, type=TransactionType(type), amount=amount, date=date, **kw)


TRANS = (
    tx("t1", "income", 500, "2024-03-01"),
    tx("t2", "expense", 40, "2024-03-04", category_id="food"),
    tx("t3", "expense", 10, "2024-03-20", category_id="food"),
    tx("t4", "expense", 25, "2024-04-02", category_id="food"),
    tx("t5", "transfer", 100, "2024-03-05", transfer_account_id="a2"),
    tx("t6", "expense", 60, "2024-03-06", account_id="a2", category_id="rent"),
)


def test_account_balance_applies_every_effect():
    assert account_balance(1000, TRANS, "a1") == 1000 + 500 - 40 - 10 - 25 - 100
    assert account_balance(0, TRANS, "a2") == 100 - 60
    assert account_balance(7, (), "a1") == 7


def test_activity_by_category_month():
    assert activity_by_category_month(TRANS) == {
        ("food", "2024-03"): -50,
        ("food", "2024-04"): -25,
        ("rent", "2024-03"): -60,
    }


def test_filters_compose():
    march_a2 = iter_transactions(TRANS, all_of(by_month("2024-03"), by_account("a2")))
    assert [t.id for t in march_a2] == ["t5", "t6"]
    assert [t.id for t in iter_transactions(TRANS, by_type(TransactionType.INCOME))] == ["t1"]
    assert [t.id for t in iter_category_expenses(TRANS, "food")] == ["t2", "t3", "t4"]


def test_chain_breaks_only_between_adjacent_months():
    jan = CategoryBudget.opening("b1", "c1", "2024-01").with_assigned(30)
    feb = CategoryBudget.opening("b2", "c1", "2024-02", 30)
    apr = CategoryBudget.opening("b4", "c1", "2024-04", 99)
    bad_mar = CategoryBudget.opening("b3", "c2", "2024-03", 1)
    c2_feb = CategoryBudget.opening("b5", "c2", "2024-02", 0)
    breaks = chain_breaks([apr, feb, jan, bad_mar, c2_feb])
    assert [(p.id, n.id) for p, n in breaks] == [("b5", "b3")]


def test_load_seed(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps({
        "accounts": [{"id": "a1", "name": "Checking", "type": "checking",
                      "initial_balance": 10, "current_balance": 10}],
        "categories": [{"id": "c1", "name": "Food"}, {"id": "c2", "name": "Rent"}],
    }), encoding="utf-8")
    store = LedgerStore.in_memory()
    counts = load_seed(str(path), store)
    assert counts == {"categories": 2, "accounts": 1, "transactions": 0, "category_budgets": 0}
    assert store.find(ACCOUNTS, "a1")["created_at"]
    assert {c["id"] for c in store.get(CATEGORIES)} == {"c1", "c2"}


def test_load_seed_rejects_unknown_collections(tmp_path):
    path = tmp_path / "seed.json"
    path.write_text(json.dumps({"payees": []}), encoding="utf-8")
    store = LedgerStore.in_memory()
    with pytest.raises(ValueError):
        load_seed(str(path), store)
    assert store.get(CATEGORIES) == []
