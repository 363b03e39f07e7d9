import asyncio

import pytest

from ledger.async_ledger import AsyncLedger
from ledger.domain import Transaction, TransactionType


@pytest.mark.asyncio
async def test_concurrent_assignments_same_category(ledger, groceries):
    aledger = AsyncLedger(ledger)
    await asyncio.gather(*(
        aledger.assign_to_budget(groceries.id, month, amount)
        for month, amount in (("2024-01", 10), ("2024-02", 20), ("2024-03", 30))
    ))
    budgets = {b.month: b for b in ledger.list_budgets(groceries.id)}
    assert budgets["2024-03"].available == 60
    assert ledger.find_inconsistencies() == []


@pytest.mark.asyncio
async def test_concurrent_impacts_across_categories(ledger, book, groceries):
    rent = book.create_category("Rent")
    aledger = AsyncLedger(ledger)
    txs = [
        Transaction(id=f"t{i}", account_id="a1", type=TransactionType.EXPENSE, amount=5,
                    date="2024-02-10", category_id=cat.id)
        for i, cat in enumerate([groceries, rent] * 4)
    ]
    await asyncio.gather(*(aledger.record_transaction_impact(t) for t in txs))
    for cat in (groceries, rent):
        feb = [b for b in ledger.list_budgets(cat.id) if b.month == "2024-02"][0]
        assert feb.activity == -20


@pytest.mark.asyncio
async def test_moving_between_categories_in_both_directions(ledger, book, groceries):
    rent = book.create_category("Rent")
    aledger = AsyncLedger(ledger)
    a = Transaction(id="ta", account_id="a1", type=TransactionType.EXPENSE, amount=7,
                    date="2024-02-10", category_id=groceries.id)
    b = a.with_changes(id="tb", category_id=rent.id)
    await aledger.record_transaction_impact(a)
    await aledger.record_transaction_impact(b)
    await asyncio.gather(
        aledger.record_transaction_impact(a.with_changes(category_id=rent.id), a),
        aledger.record_transaction_impact(b.with_changes(category_id=groceries.id), b),
    )
    for cat in (groceries, rent):
        feb = [bud for bud in ledger.list_budgets(cat.id) if bud.month == "2024-02"][0]
        assert feb.activity == -7
        assert feb.is_consistent()


@pytest.mark.asyncio
async def test_non_expense_impact_is_noop(ledger):
    aledger = AsyncLedger(ledger)
    income = Transaction(id="ti", account_id="a1", type=TransactionType.INCOME, amount=7, date="2024-02-10")
    assert await aledger.record_transaction_impact(income) is None


@pytest.mark.asyncio
async def test_fan_out_reads(ledger, book, groceries):
    book.open_account("Checking", "checking", 500)
    aledger = AsyncLedger(ledger)
    await aledger.assign_to_budget(groceries.id, "2024-02", 100)
    budgets = await aledger.budgets_for_months(groceries.id, ["2024-01", "2024-02", "2024-03"])
    assert budgets["2024-03"].starting_balance == 100
    ready = await aledger.ready_to_assign_by_month(["2024-01", "2024-02"])
    assert ready == {"2024-01": 500, "2024-02": 400}


@pytest.mark.asyncio
async def test_repair_through_async_front(ledger, groceries):
    aledger = AsyncLedger(ledger)
    await aledger.get_or_create_budget(groceries.id, "2024-02")
    report = await aledger.repair_chain(groceries.id, "2024-01", "2024-02")
    assert not report.changed
