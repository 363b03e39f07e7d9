"""Typed access to the four ledger collections.

Works against either a :class:`~ledger.store.LedgerStore` or one of its units
of work, so the same calls read staged writes inside an engine operation.
"""

from typing import List, Optional

from ledger.domain import Account, Category, CategoryBudget, Transaction
from ledger.errors import RecordNotFound
from ledger.store import ACCOUNTS, CATEGORIES, CATEGORY_BUDGETS, TRANSACTIONS


class Repository:
    def __init__(self, db):
        self.db = db

    # accounts
    def list_accounts(self) -> List[Account]:
        return [Account.from_record(r) for r in self.db.get(ACCOUNTS)]

    def get_account(self, account_id: str) -> Account:
        record = self.db.find(ACCOUNTS, account_id)
        if record is None:
            raise RecordNotFound(ACCOUNTS, account_id)
        return Account.from_record(record)

    def create_account(self, name: str, account_type, initial_balance: float) -> Account:
        record = self.db.create(ACCOUNTS, {
            "name": name,
            "type": getattr(account_type, "value", account_type),
            "initial_balance": float(initial_balance),
            "current_balance": float(initial_balance),
        })
        return Account.from_record(record)

    def update_account_balance(self, account_id: str, new_balance: float) -> Account:
        return Account.from_record(self.db.update(ACCOUNTS, account_id, {"current_balance": float(new_balance)}))

    # categories
    def list_categories(self) -> List[Category]:
        return sorted(
            (Category.from_record(r) for r in self.db.get(CATEGORIES)),
            key=lambda c: (c.name.casefold(), c.id),
        )

    def find_category(self, category_id: str) -> Optional[Category]:
        record = self.db.find(CATEGORIES, category_id)
        return Category.from_record(record) if record else None

    def get_category(self, category_id: str) -> Category:
        category = self.find_category(category_id)
        if category is None:
            raise RecordNotFound(CATEGORIES, category_id)
        return category

    def create_category(self, name: str, icon: str = "", color: str = "") -> Category:
        return Category.from_record(self.db.create(CATEGORIES, {"name": name, "icon": icon, "color": color}))

    def delete_category_cascade(self, category_id: str) -> int:
        """Delete a category and its budgets; returns the number of budgets removed."""
        removed = 0
        for record in self.db.filter(CATEGORY_BUDGETS, category_id=category_id):
            removed += bool(self.db.delete(CATEGORY_BUDGETS, record["id"]))
        if not self.db.delete(CATEGORIES, category_id):
            raise RecordNotFound(CATEGORIES, category_id)
        return removed

    # budgets
    def list_budgets(self, category_id: Optional[str] = None) -> List[CategoryBudget]:
        records = (
            self.db.filter(CATEGORY_BUDGETS, category_id=category_id)
            if category_id is not None
            else self.db.get(CATEGORY_BUDGETS)
        )
        return sorted((CategoryBudget.from_record(r) for r in records), key=lambda b: (b.category_id, b.month))

    def find_budget(self, category_id: str, month: str) -> Optional[CategoryBudget]:
        records = self.db.filter(CATEGORY_BUDGETS, category_id=category_id, month=month)
        return CategoryBudget.from_record(records[0]) if records else None

    def budgets_for_month(self, month: str) -> List[CategoryBudget]:
        return [CategoryBudget.from_record(r) for r in self.db.filter(CATEGORY_BUDGETS, month=month)]

    def create_budget(self, budget: CategoryBudget) -> CategoryBudget:
        fields = {"category_id": budget.category_id, "month": budget.month, **budget.ledger_fields()}
        if budget.id:
            fields["id"] = budget.id
        return CategoryBudget.from_record(self.db.create(CATEGORY_BUDGETS, fields))

    def save_budget(self, budget: CategoryBudget) -> CategoryBudget:
        return CategoryBudget.from_record(self.db.update(CATEGORY_BUDGETS, budget.id, budget.ledger_fields()))

    # transactions
    def list_transactions(self) -> List[Transaction]:
        return [Transaction.from_record(r) for r in self.db.get(TRANSACTIONS)]

    def get_transaction(self, transaction_id: str) -> Transaction:
        record = self.db.find(TRANSACTIONS, transaction_id)
        if record is None:
            raise RecordNotFound(TRANSACTIONS, transaction_id)
        return Transaction.from_record(record)

    def list_transactions_by_category_and_month(self, category_id: str, month: str) -> List[Transaction]:
        return [
            t for t in (Transaction.from_record(r) for r in self.db.filter(TRANSACTIONS, category_id=category_id))
            if t.month == month
        ]

    def count_transactions_for_category(self, category_id: str) -> int:
        return len(self.db.filter(TRANSACTIONS, category_id=category_id))

    def create_transaction(self, t: Transaction) -> Transaction:
        fields = {k: v for k, v in t.to_record().items() if k not in ("created_at", "updated_at")}
        if not fields.get("id"):
            fields.pop("id", None)
        return Transaction.from_record(self.db.create(TRANSACTIONS, fields))

    def save_transaction(self, t: Transaction) -> Transaction:
        fields = {k: v for k, v in t.to_record().items() if k not in ("id", "created_at", "updated_at")}
        return Transaction.from_record(self.db.update(TRANSACTIONS, t.id, fields))

    def delete_transaction(self, transaction_id: str) -> bool:
        return self.db.delete(TRANSACTIONS, transaction_id)
