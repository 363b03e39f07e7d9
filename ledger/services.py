import logging
from typing import Any, Callable, Dict, List, Optional

from ledger.domain import Account, Category, CategoryBudget, Transaction
from ledger.engine import BudgetLedger, Inconsistency, RepairReport
from ledger.errors import LedgerError
from ledger.functional import Either, Left, Right, safe_category
from ledger.repository import Repository
from ledger.transactions import TransactionBook

logger = logging.getLogger(__name__)


class LedgerService:
    """Facade the UI talks to.

    Every call returns ``Right(snapshot)`` or ``Left(error dict)``; snapshots are
    frozen dataclasses, never live handles. Ledger errors and bad input become
    ``Left`` values, anything else propagates.
    """

    def __init__(self, ledger: BudgetLedger, book: Optional[TransactionBook] = None):
        self.ledger = ledger
        self.book = book or TransactionBook(ledger)

    def _run(self, op: Callable[..., Any], *args, **kwargs) -> Either[Dict[str, Any], Any]:
        name = getattr(op, "__name__", str(op))
        try:
            return Right(op(*args, **kwargs))
        except LedgerError as e:
            logger.warning("%s failed: %s", name, e.message)
            return Left(e.to_dict())
        except ValueError as e:
            logger.warning("%s rejected input: %s", name, e)
            return Left({"error": "invalid_input", "message": str(e), "retryable": False})

    # budgets
    def assign_to_budget(self, category_id: str, month: str, amount: float) -> Either[dict, CategoryBudget]:
        return self._run(self.ledger.assign_to_budget, category_id, month, amount)

    def get_or_create_budget(self, category_id: str, month: str) -> Either[dict, CategoryBudget]:
        return self._run(self.ledger.get_or_create_budget, category_id, month)

    def get_budgets_for_month(self, month: str) -> Either[dict, List[CategoryBudget]]:
        return self._run(self.ledger.get_budgets_for_month, month)

    def calculate_ready_to_assign(self, month: str) -> Either[dict, float]:
        return self._run(self.ledger.calculate_ready_to_assign, month)

    def accessible_months(self) -> Either[dict, List[str]]:
        return self._run(self.ledger.accessible_months)

    def category_history(self, category_id: str) -> Either[dict, List[CategoryBudget]]:
        return self._run(self.ledger.list_budgets, category_id)

    def month_summary(self, month: str) -> Either[dict, Dict[str, Any]]:
        """Budget rows for a month with category names, plus ready to assign."""
        def _rows(budgets: List[CategoryBudget]) -> Dict[str, Any]:
            cats = Repository(self.ledger.store).list_categories()
            return {
                "month": month,
                "ready_to_assign": self.ledger.calculate_ready_to_assign(month),
                "rows": [
                    {
                        "category_id": b.category_id,
                        "category": safe_category(cats, b.category_id).map(lambda c: c.name).get_or_else(b.category_id),
                        "starting_balance": b.starting_balance,
                        "assigned": b.assigned,
                        "activity": b.activity,
                        "available": b.available,
                    }
                    for b in budgets
                ],
            }

        return self.get_budgets_for_month(month).bind(lambda budgets: self._run(_rows, budgets))

    # consistency
    def repair_chain(self, category_id: str, start_month: str, end_month: str) -> Either[dict, RepairReport]:
        return self._run(self.ledger.repair_chain, category_id, start_month, end_month)

    def repair_all(self, start_month: str, end_month: str) -> Either[dict, List[RepairReport]]:
        return self._run(self.ledger.repair_all, start_month, end_month)

    def find_inconsistencies(self, category_id: Optional[str] = None) -> Either[dict, List[Inconsistency]]:
        return self._run(self.ledger.find_inconsistencies, category_id)

    # transactions, accounts, categories
    def add_transaction(self, **fields) -> Either[dict, Transaction]:
        return self._run(self.book.add_transaction, **fields)

    def edit_transaction(self, transaction_id: str, **changes) -> Either[dict, Transaction]:
        return self._run(self.book.edit_transaction, transaction_id, **changes)

    def delete_transaction(self, transaction_id: str) -> Either[dict, Transaction]:
        return self._run(self.book.delete_transaction, transaction_id)

    def list_transactions(self, **criteria) -> Either[dict, List[Transaction]]:
        return self._run(self.book.list_transactions, **criteria)

    def recalculate_account_balances(self) -> Either[dict, List[Account]]:
        return self._run(self.book.recalculate_account_balances)

    def open_account(self, name: str, account_type="checking", initial_balance: float = 0.0) -> Either[dict, Account]:
        return self._run(self.book.open_account, name, account_type, initial_balance)

    def list_accounts(self) -> Either[dict, List[Account]]:
        return self._run(Repository(self.ledger.store).list_accounts)

    def create_category(self, name: str, icon: str = "", color: str = "") -> Either[dict, Category]:
        return self._run(self.book.create_category, name, icon, color)

    def list_categories(self) -> Either[dict, List[Category]]:
        return self._run(Repository(self.ledger.store).list_categories)

    def delete_category(self, category_id: str) -> Either[dict, int]:
        return self._run(self.book.delete_category, category_id)
