"""Budget chain engine.

Every (category, month) budget links to the month before it: a month's
``starting_balance`` is the previous month's ``available``. The engine creates
missing months along that chain, applies assignments and transaction activity
to a single month and carries the result forward through the months that
already exist.

Each public mutation runs as one logical operation: the category locks are
held, writes are staged in a single unit of work and committed together. If
any step fails nothing is persisted and the cache entries of the touched
categories are dropped.
"""

import logging
import math
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from ledger.cache import BudgetCache
from ledger.config import LedgerSettings, get_settings
from ledger.domain import Category, CategoryBudget, Transaction
from ledger.errors import ChainResolutionUnbounded, InaccessibleMonth, InvalidAmount
from ledger.events import (
    BUDGET_ASSIGNED,
    CHAIN_PROPAGATED,
    CHAIN_REPAIRED,
    TRANSACTION_RECORDED,
    EventBus,
    event_bus,
)
from ledger.filters import iter_category_expenses
from ledger.months import month_range, next_month, parse_month, previous_month
from ledger.policy import AccessibilityPolicy
from ledger.repository import Repository
from ledger.store import CATEGORY_BUDGETS, LedgerStore
from ledger.transforms import activity_by_category_month, calculate_ready_to_assign, chain_breaks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepairReport:
    category_id: str
    start_month: str
    end_month: str
    changed_months: Tuple[str, ...]
    budgets: Tuple[CategoryBudget, ...]

    @property
    def changed(self) -> bool:
        return bool(self.changed_months)


@dataclass(frozen=True)
class Inconsistency:
    kind: str  # formula | chain | activity
    category_id: str
    month: str
    expected: float
    actual: float


class BudgetLedger:
    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[LedgerSettings] = None,
        policy: Optional[AccessibilityPolicy] = None,
        cache: Optional[BudgetCache] = None,
        bus: Optional[EventBus] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.max_chain_depth = settings.MAX_CHAIN_DEPTH
        self.chain_epoch = settings.CHAIN_EPOCH
        self.policy = policy or AccessibilityPolicy.from_settings(settings)
        self.cache = cache if cache is not None else BudgetCache(settings.CACHE_SIZE)
        self.bus = bus if bus is not None else event_bus
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._local = threading.local()

    # sessions

    def _category_lock(self, category_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(category_id)
            if lock is None:
                lock = self._locks[category_id] = threading.RLock()
            return lock

    @contextmanager
    def session(self, *category_ids: str) -> Iterator[Repository]:
        """Run one logical operation over ``category_ids``.

        Yields a repository over a fresh unit of work, committed on success.
        Nested sessions in the same thread join the outer one.
        """
        with ExitStack() as stack:
            for category_id in sorted({c for c in category_ids if c}):
                stack.enter_context(self._category_lock(category_id))

            outer = getattr(self._local, "uow", None)
            if outer is not None:
                yield Repository(outer)
                return

            uow = self.store.unit_of_work()
            self._local.uow = uow
            try:
                yield Repository(uow)
                written = uow.written(CATEGORY_BUDGETS)
                uow.commit()
            except BaseException:
                for category_id in {r["category_id"] for r in uow.written(CATEGORY_BUDGETS)}:
                    self.cache.invalidate_category(category_id)
                uow.discard()
                raise
            finally:
                self._local.uow = None
            for record in written:
                self.cache.put(CategoryBudget.from_record(record))

    def _write(self, repo: Repository, budget: CategoryBudget, create: bool = False) -> CategoryBudget:
        # staged values stay out of the cache until commit
        self.cache.discard(budget.category_id, budget.month)
        return repo.create_budget(budget) if create else repo.save_budget(budget)

    def _lookup(self, repo: Repository, category_id: str, month: str) -> Optional[CategoryBudget]:
        cached = self.cache.get(category_id, month)
        if cached is not None:
            return cached
        budget = repo.find_budget(category_id, month)
        if budget is not None:
            self.cache.put(budget)
        return budget

    def _floor(self, category: Category) -> Optional[str]:
        return self.chain_epoch or category.created_month

    # chain resolver

    def get_or_create_budget(self, category_id: str, month: str) -> CategoryBudget:
        parse_month(month)
        with self.session(category_id) as repo:
            return self.resolve(repo, category_id, month)

    def resolve(self, repo: Repository, category_id: str, month: str) -> CategoryBudget:
        """Existing budget for ``month``, or the chain of months leading up to it created.

        An existing predecessor is always linked, whichever side of the floor it
        is on. The floor only stops the creation of missing months. Later months
        that already exist are relinked to the new one.
        """
        existing = self._lookup(repo, category_id, month)
        if existing is not None:
            return existing

        floor = self._floor(repo.get_category(category_id))
        known = {b.month: b for b in repo.list_budgets(category_id)}
        missing = [month]
        carry = 0.0
        cursor = month
        depth = 0
        while True:
            prev = previous_month(cursor)
            found = self.cache.get(category_id, prev) or known.get(prev)
            if found is not None:
                carry = found.available
                break
            if floor is not None and cursor <= floor:
                break
            depth += 1
            if depth > self.max_chain_depth:
                raise ChainResolutionUnbounded(category_id, month, self.max_chain_depth)
            missing.append(prev)
            cursor = prev

        logger.debug("Creating %d month(s) for category %s up to %s", len(missing), category_id, month)
        budget = None
        for m in reversed(missing):
            budget = self._write(repo, CategoryBudget.opening("", category_id, m, carry), create=True)
            carry = budget.available
        if next_month(month) in known:
            self.carry_forward(repo, category_id, month, budget.available)
        return budget

    # assignment

    def assign_to_budget(self, category_id: str, month: str, amount: float) -> CategoryBudget:
        parse_month(month)
        amount = float(amount)
        if math.isnan(amount) or amount < 0:
            raise InvalidAmount(f"Assigned amount must be zero or positive, got {amount}", amount=amount)

        with self.session(category_id) as repo:
            budgets = repo.list_budgets()
            if not self.policy.is_accessible(month, budgets):
                raise InaccessibleMonth(month, self.policy.latest_accessible(budgets))
            budget = self.resolve(repo, category_id, month)
            updated = self._write(repo, budget.with_assigned(amount))
            self.carry_forward(repo, category_id, month, updated.available)

        ready = self.calculate_ready_to_assign(month)
        logger.info("Assigned %.2f to %s in %s (available %.2f)", amount, category_id, month, updated.available)
        self.bus.publish(BUDGET_ASSIGNED, {
            "category_id": category_id,
            "month": month,
            "assigned": updated.assigned,
            "available": updated.available,
            "ready_to_assign": ready,
        })
        return updated

    # forward propagation

    def propagate_forward(self, category_id: str, from_month: str, new_available: float) -> List[CategoryBudget]:
        parse_month(from_month)
        with self.session(category_id) as repo:
            updated = self.carry_forward(repo, category_id, from_month, new_available)
        self.bus.publish(CHAIN_PROPAGATED, {
            "category_id": category_id,
            "from_month": from_month,
            "months": [b.month for b in updated],
        })
        return updated

    def carry_forward(
        self, repo: Repository, category_id: str, from_month: str, carry: float
    ) -> List[CategoryBudget]:
        """Rewrite every existing month after ``from_month`` until the first gap."""
        month = next_month(from_month)
        self.cache.invalidate_forward(category_id, month)
        known = {b.month: b for b in repo.list_budgets(category_id)}
        updated = []
        while month in known:
            current = known[month]
            budget = current.with_starting_balance(carry)
            if budget.ledger_fields() != current.ledger_fields():
                budget = self._write(repo, budget)
                updated.append(budget)
            carry = budget.available
            month = next_month(month)
        if updated:
            logger.debug("Carried %s forward through %s", category_id, updated[-1].month)
        return updated

    # transaction impact

    def record_transaction_impact(
        self, tx: Transaction, old_tx: Optional[Transaction] = None
    ) -> Optional[CategoryBudget]:
        with self.session(tx.category_id, old_tx.category_id if old_tx else None) as repo:
            budget = self.apply_transaction_impact(repo, tx, old_tx)
        if budget is not None:
            self.bus.publish(TRANSACTION_RECORDED, {
                "transaction_id": tx.id,
                "category_id": budget.category_id,
                "month": budget.month,
                "activity": budget.activity,
                "available": budget.available,
            })
        return budget

    def apply_transaction_impact(
        self, repo: Repository, tx: Transaction, old_tx: Optional[Transaction] = None
    ) -> Optional[CategoryBudget]:
        old_counts = old_tx is not None and old_tx.is_categorized_expense
        same_slot = (
            old_counts
            and tx.is_categorized_expense
            and old_tx.category_id == tx.category_id
            and old_tx.month == tx.month
        )
        if old_counts and not same_slot:
            self._adjust_activity(repo, old_tx.category_id, old_tx.month, old_tx.amount)

        if not tx.is_categorized_expense:
            return None
        delta = tx.amount - (old_tx.amount if same_slot else 0.0)
        return self._adjust_activity(repo, tx.category_id, tx.month, -delta)

    def remove_transaction_impact(self, tx: Transaction) -> Optional[CategoryBudget]:
        if not tx.is_categorized_expense:
            return None
        with self.session(tx.category_id) as repo:
            return self.apply_removal(repo, tx)

    def apply_removal(self, repo: Repository, tx: Transaction) -> Optional[CategoryBudget]:
        if not tx.is_categorized_expense:
            return None
        return self._adjust_activity(repo, tx.category_id, tx.month, tx.amount)

    def _adjust_activity(self, repo: Repository, category_id: str, month: str, change: float) -> CategoryBudget:
        budget = self.resolve(repo, category_id, month)
        updated = self._write(repo, budget.with_activity(budget.activity + change))
        self.carry_forward(repo, category_id, month, updated.available)
        return updated

    # reads

    def calculate_ready_to_assign(self, month: str) -> float:
        parse_month(month)
        repo = Repository(self.store)
        return calculate_ready_to_assign(repo.list_accounts(), repo.list_budgets(), month)

    def get_budgets_for_month(self, month: str) -> List[CategoryBudget]:
        """One budget per category for ``month``, in category name order."""
        parse_month(month)
        categories = Repository(self.store).list_categories()
        return [self.get_or_create_budget(c.id, month) for c in categories]

    def list_budgets(self, category_id: Optional[str] = None) -> List[CategoryBudget]:
        return Repository(self.store).list_budgets(category_id)

    def accessible_months(self) -> List[str]:
        return self.policy.accessible_months(Repository(self.store).list_budgets())

    def is_month_accessible(self, month: str) -> bool:
        parse_month(month)
        return self.policy.is_accessible(month, Repository(self.store).list_budgets())

    def warm_months(self, start_month: str, end_month: str) -> int:
        """Materialize and cache every category's budgets over a month range; returns the count."""
        months = list(month_range(start_month, end_month))
        count = 0
        for category in Repository(self.store).list_categories():
            for month in months:
                self.get_or_create_budget(category.id, month)
                count += 1
        logger.info("Warmed %d budget(s) across %d month(s)", count, len(months))
        return count

    # repair

    def repair_chain(self, category_id: str, start_month: str, end_month: str) -> RepairReport:
        parse_month(start_month)
        parse_month(end_month)
        if start_month > end_month:
            raise ValueError(f"start_month {start_month} is after end_month {end_month}")

        with self.session(category_id) as repo:
            repo.get_category(category_id)
            known = {b.month: b for b in repo.list_budgets(category_id)}
            activity = activity_by_category_month(iter_category_expenses(repo.list_transactions(), category_id))

            before = [m for m in known if m < start_month]
            carry = known[max(before)].available if before else 0.0
            self.cache.invalidate_forward(category_id, start_month)

            changed, repaired = [], []
            last = None
            for month in month_range(start_month, end_month):
                current = known.get(month)
                if current is None:
                    continue
                fixed = current.with_ledger(
                    starting_balance=carry,
                    assigned=max(0.0, current.assigned),
                    activity=activity.get((category_id, month), 0.0),
                )
                if fixed.ledger_fields() != current.ledger_fields():
                    fixed = self._write(repo, fixed)
                    changed.append(month)
                repaired.append(fixed)
                carry = fixed.available
                last = month
            if last is not None:
                changed.extend(b.month for b in self.carry_forward(repo, category_id, last, carry))

        report = RepairReport(category_id, start_month, end_month, tuple(changed), tuple(repaired))
        if report.changed:
            logger.warning("Repaired %d month(s) for category %s: %s", len(changed), category_id, ", ".join(changed))
        else:
            logger.info("Chain for category %s is consistent from %s to %s", category_id, start_month, end_month)
        self.bus.publish(CHAIN_REPAIRED, {
            "category_id": category_id,
            "start_month": start_month,
            "end_month": end_month,
            "changed_months": list(changed),
        })
        return report

    def repair_all(self, start_month: str, end_month: str) -> List[RepairReport]:
        return [
            self.repair_chain(c.id, start_month, end_month)
            for c in Repository(self.store).list_categories()
        ]

    def find_inconsistencies(self, category_id: Optional[str] = None) -> List[Inconsistency]:
        """Report drift in stored budgets without writing anything."""
        repo = Repository(self.store)
        budgets = repo.list_budgets(category_id)
        activity = activity_by_category_month(repo.list_transactions())
        found = []
        for b in budgets:
            expected = CategoryBudget.derive_available(b.starting_balance, b.assigned, b.activity)
            if not b.is_consistent():
                found.append(Inconsistency("formula", b.category_id, b.month, expected, b.available))
            ledger_activity = activity.get((b.category_id, b.month), 0.0)
            if not math.isclose(ledger_activity, b.activity, abs_tol=1e-9):
                found.append(Inconsistency("activity", b.category_id, b.month, ledger_activity, b.activity))
        for prev, nxt in chain_breaks(budgets):
            found.append(Inconsistency("chain", nxt.category_id, nxt.month, prev.available, nxt.starting_balance))
        return found
