from typing import Callable, Iterable, Iterator

from ledger.domain import Transaction, TransactionType

Predicate = Callable[[Transaction], bool]


def by_category(category_id: str) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.category_id == category_id

    return _filter


def by_month(month: str) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.month == month

    return _filter


def by_account(account_id: str) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.account_id == account_id or t.transfer_account_id == account_id

    return _filter


def by_type(tx_type: TransactionType) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return t.type == tx_type

    return _filter


def all_of(*preds: Predicate) -> Predicate:
    def _filter(t: Transaction) -> bool:
        return all(p(t) for p in preds)

    return _filter


def iter_transactions(trans: Iterable[Transaction], pred: Predicate) -> Iterator[Transaction]:
    for t in trans:
        if pred(t):
            yield t


def iter_category_expenses(trans: Iterable[Transaction], category_id: str) -> Iterator[Transaction]:
    return iter_transactions(trans, all_of(by_type(TransactionType.EXPENSE), by_category(category_id)))
