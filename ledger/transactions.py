"""Accounts, categories and transactions on top of the budget engine.

Posting a transaction moves account balances (income adds, expense subtracts,
transfer moves money between two accounts) and, for categorized expenses,
updates the category's monthly activity. Both happen in the same unit of work.
"""

import logging
import math
from typing import List, Optional

from ledger.domain import Account, AccountType, Category, CategoryBudget, Transaction, TransactionType
from ledger.engine import BudgetLedger
from ledger.errors import CategoryInUse
from ledger.events import TRANSACTION_RECORDED
from ledger.filters import all_of, by_account, by_category, by_month, iter_transactions
from ledger.repository import Repository
from ledger.transforms import account_balance, balance_effects

logger = logging.getLogger(__name__)


def account_key(account_id: Optional[str]) -> Optional[str]:
    return f"account:{account_id}" if account_id else None


def _lock_keys(*txs: Optional[Transaction]) -> List[str]:
    keys = []
    for t in txs:
        if t is None:
            continue
        keys += [t.category_id, account_key(t.account_id), account_key(t.transfer_account_id)]
    return [k for k in keys if k]


def _normalize(changes: dict) -> dict:
    changes = dict(changes)
    if "type" in changes:
        changes["type"] = TransactionType(changes["type"])
    if "amount" in changes:
        changes["amount"] = float(changes["amount"])
    for key in ("category_id", "transfer_account_id"):
        if key in changes:
            changes[key] = changes[key] or None
    return changes


class TransactionBook:
    def __init__(self, ledger: BudgetLedger):
        self.ledger = ledger
        self.store = ledger.store

    # accounts and categories

    def open_account(
        self, name: str, account_type: AccountType = AccountType.CHECKING, initial_balance: float = 0.0
    ) -> Account:
        with self.ledger.session() as repo:
            account = repo.create_account(name, AccountType(account_type), initial_balance)
        logger.info("Opened %s account %s with %.2f", account.type.value, account.name, account.initial_balance)
        return account

    def create_category(self, name: str, icon: str = "", color: str = "") -> Category:
        if not name.strip():
            raise ValueError("Category name cannot be empty")
        with self.ledger.session() as repo:
            category = repo.create_category(name.strip(), icon, color)
        logger.info("Created category %s (%s)", category.name, category.id)
        return category

    def delete_category(self, category_id: str) -> int:
        """Delete a category with no transactions, along with its budgets."""
        with self.ledger.session(category_id) as repo:
            repo.get_category(category_id)
            in_use = repo.count_transactions_for_category(category_id)
            if in_use:
                raise CategoryInUse(category_id, in_use)
            removed = repo.delete_category_cascade(category_id)
        self.ledger.cache.invalidate_category(category_id)
        logger.info("Deleted category %s and %d budget(s)", category_id, removed)
        return removed

    # transactions

    def list_transactions(
        self,
        month: Optional[str] = None,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> List[Transaction]:
        preds = []
        if month:
            preds.append(by_month(month))
        if account_id:
            preds.append(by_account(account_id))
        if category_id:
            preds.append(by_category(category_id))
        trans = Repository(self.store).list_transactions()
        return sorted(iter_transactions(trans, all_of(*preds)), key=lambda t: (t.date, t.created_at), reverse=True)

    def add_transaction(
        self,
        account_id: str,
        type: TransactionType,
        amount: float,
        date: str,
        category_id: Optional[str] = None,
        transfer_account_id: Optional[str] = None,
        payee: str = "",
        notes: str = "",
    ) -> Transaction:
        tx = Transaction(
            id="",
            account_id=account_id,
            type=TransactionType(type),
            amount=float(amount),
            date=date,
            category_id=category_id or None,
            transfer_account_id=transfer_account_id or None,
            payee=payee,
            notes=notes,
        ).validate()

        with self.ledger.session(*_lock_keys(tx)) as repo:
            self._check_references(repo, tx)
            saved = repo.create_transaction(tx)
            self._move_balances(repo, saved, 1)
            budget = self.ledger.apply_transaction_impact(repo, saved)

        logger.info("Recorded %s of %.2f on %s", saved.type.value, saved.amount, saved.date)
        self._announce(saved, budget)
        return saved

    def _locked(self, transaction_id: str, target, work):
        """Run ``work(repo, old, new)`` holding the locks of both versions.

        Keys come from a first unlocked read. If the record moved before the
        locks were taken, the session ends without writing and is retried
        with the combined keys, so every lock is taken in sorted order.
        """
        current = Repository(self.store).get_transaction(transaction_id)
        keys = set(_lock_keys(current, target(current)))
        while True:
            with self.ledger.session(*keys) as repo:
                old = repo.get_transaction(transaction_id)
                new = target(old)
                needed = set(_lock_keys(old, new))
                if needed <= keys:
                    return old, work(repo, old, new)
            logger.debug("Transaction %s moved while locking; retrying", transaction_id)
            keys |= needed

    def edit_transaction(self, transaction_id: str, **changes) -> Transaction:
        changes = _normalize(changes)

        def work(repo: Repository, old: Transaction, new: Transaction):
            self._check_references(repo, new)
            self._move_balances(repo, old, -1)
            self._move_balances(repo, new, 1)
            saved = repo.save_transaction(new)
            return saved, self.ledger.apply_transaction_impact(repo, saved, old)

        _, (saved, budget) = self._locked(
            transaction_id, lambda t: t.with_changes(**changes).validate(), work
        )
        logger.info("Updated transaction %s", transaction_id)
        self._announce(saved, budget)
        return saved

    def delete_transaction(self, transaction_id: str) -> Transaction:
        def work(repo: Repository, old: Transaction, new: None):
            self._move_balances(repo, old, -1)
            budget = self.ledger.apply_removal(repo, old)
            repo.delete_transaction(transaction_id)
            return budget

        old, budget = self._locked(transaction_id, lambda t: None, work)
        logger.info("Deleted transaction %s", transaction_id)
        self._announce(old, budget)
        return old

    def recalculate_account_balances(self) -> List[Account]:
        """Rebuild every account's current balance from the ledger; returns the accounts that changed."""
        accounts = Repository(self.store).list_accounts()
        with self.ledger.session(*(account_key(a.id) for a in accounts)) as repo:
            trans = repo.list_transactions()
            changed = []
            for account in repo.list_accounts():
                expected = account_balance(account.initial_balance, trans, account.id)
                if not math.isclose(expected, account.current_balance, abs_tol=1e-9):
                    changed.append(repo.update_account_balance(account.id, expected))
        if changed:
            logger.warning("Corrected balances of %d account(s)", len(changed))
        return changed

    # helpers

    def _check_references(self, repo: Repository, tx: Transaction) -> None:
        repo.get_account(tx.account_id)
        if tx.transfer_account_id:
            repo.get_account(tx.transfer_account_id)
        if tx.category_id:
            repo.get_category(tx.category_id)

    def _move_balances(self, repo: Repository, tx: Transaction, sign: int) -> None:
        for account_id, delta in balance_effects(tx):
            account = repo.get_account(account_id)
            repo.update_account_balance(account_id, account.current_balance + sign * delta)

    def _announce(self, tx: Transaction, budget: Optional[CategoryBudget]) -> None:
        if budget is None:
            return
        self.ledger.bus.publish(TRANSACTION_RECORDED, {
            "transaction_id": tx.id,
            "category_id": budget.category_id,
            "month": budget.month,
            "activity": budget.activity,
            "available": budget.available,
        })
