import json
from collections import defaultdict
from functools import reduce
from typing import Dict, Iterable, List, Tuple

from ledger.domain import Account, CategoryBudget, Transaction, TransactionType
from ledger.filters import iter_transactions, by_type
from ledger.months import next_month
from ledger.store import ACCOUNTS, CATEGORIES, CATEGORY_BUDGETS, COLLECTIONS, TRANSACTIONS


def load_seed(path: str, store) -> Dict[str, int]:
    """Create every record of a seed document in ``store``; returns counts per collection.

    The document is a JSON object keyed by collection name, each a list of records.
    All records are written in one unit of work.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    unknown = set(data) - set(COLLECTIONS)
    if unknown:
        raise ValueError(f"Unknown collections in seed: {', '.join(sorted(unknown))}")

    uow = store.unit_of_work()
    counts = {}
    # categories and accounts before the records that point at them
    for collection in (CATEGORIES, ACCOUNTS, TRANSACTIONS, CATEGORY_BUDGETS):
        rows = data.get(collection, [])
        for row in rows:
            uow.create(collection, row)
        counts[collection] = len(rows)
    uow.commit()
    return counts


def balance_effects(t: Transaction) -> Tuple[Tuple[str, float], ...]:
    """Signed balance changes a transaction applies, as (account_id, delta) pairs."""
    if t.type == TransactionType.INCOME:
        return ((t.account_id, t.amount),)
    if t.type == TransactionType.EXPENSE:
        return ((t.account_id, -t.amount),)
    return ((t.account_id, -t.amount), (t.transfer_account_id, t.amount))


def account_balance(initial_balance: float, trans: Iterable[Transaction], acc_id: str) -> float:
    return reduce(
        lambda acc, t: acc + sum(delta for a, delta in balance_effects(t) if a == acc_id),
        trans,
        initial_balance,
    )


def activity_by_category_month(trans: Iterable[Transaction]) -> Dict[Tuple[str, str], float]:
    """Activity per (category_id, month) straight from the ledger: negated expense totals."""
    activity: Dict[Tuple[str, str], float] = defaultdict(float)
    for t in iter_transactions(trans, by_type(TransactionType.EXPENSE)):
        if t.category_id:
            activity[(t.category_id, t.month)] -= t.amount
    return dict(activity)


def calculate_ready_to_assign(
    accounts: Iterable[Account], budgets: Iterable[CategoryBudget], month: str
) -> float:
    total_balance = sum(a.current_balance for a in accounts)
    total_assigned = sum(b.assigned for b in budgets if b.month <= month)
    return max(0.0, total_balance - total_assigned)


def chain_breaks(budgets: Iterable[CategoryBudget]) -> List[Tuple[CategoryBudget, CategoryBudget]]:
    """Adjacent (previous, next) month pairs whose carry-over does not match."""
    by_key = {(b.category_id, b.month): b for b in budgets}
    breaks = []
    for (category_id, month), prev in sorted(by_key.items()):
        nxt = by_key.get((category_id, next_month(month)))
        if nxt is not None and nxt.starting_balance != prev.available:
            breaks.append((prev, nxt))
    return breaks
