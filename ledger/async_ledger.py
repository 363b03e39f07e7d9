import asyncio
from typing import Dict, List, Optional, Tuple

from ledger.domain import CategoryBudget, Transaction
from ledger.engine import BudgetLedger, RepairReport


class AsyncLedger:
    """Asyncio front for :class:`BudgetLedger`.

    Mutations for one category queue behind that category's lock and run in a
    worker thread; different categories proceed concurrently.
    """

    def __init__(self, ledger: BudgetLedger):
        self.ledger = ledger
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, category_id: str) -> asyncio.Lock:
        if category_id not in self._locks:
            self._locks[category_id] = asyncio.Lock()
        return self._locks[category_id]

    async def assign_to_budget(self, category_id: str, month: str, amount: float) -> CategoryBudget:
        async with self._lock(category_id):
            return await asyncio.to_thread(self.ledger.assign_to_budget, category_id, month, amount)

    async def get_or_create_budget(self, category_id: str, month: str) -> CategoryBudget:
        async with self._lock(category_id):
            return await asyncio.to_thread(self.ledger.get_or_create_budget, category_id, month)

    async def record_transaction_impact(
        self, tx: Transaction, old_tx: Optional[Transaction] = None
    ) -> Optional[CategoryBudget]:
        categories = sorted({t.category_id for t in (tx, old_tx) if t is not None and t.category_id})
        if not categories:
            return None
        # acquire in a fixed order so two moves in opposite directions can't deadlock
        locks = [self._lock(c) for c in categories]
        for lock in locks:
            await lock.acquire()
        try:
            return await asyncio.to_thread(self.ledger.record_transaction_impact, tx, old_tx)
        finally:
            for lock in reversed(locks):
                lock.release()

    async def repair_chain(self, category_id: str, start_month: str, end_month: str) -> RepairReport:
        async with self._lock(category_id):
            return await asyncio.to_thread(self.ledger.repair_chain, category_id, start_month, end_month)

    async def calculate_ready_to_assign(self, month: str) -> float:
        return await asyncio.to_thread(self.ledger.calculate_ready_to_assign, month)

    async def budgets_for_months(self, category_id: str, months: List[str]) -> Dict[str, CategoryBudget]:
        """Resolve several months of one category; results keyed by month."""
        async def one(month: str) -> Tuple[str, CategoryBudget]:
            return month, await self.get_or_create_budget(category_id, month)

        results = await asyncio.gather(*(one(m) for m in months))
        return {k: v for k, v in results}

    async def ready_to_assign_by_month(self, months: List[str]) -> Dict[str, float]:
        async def one(month: str) -> Tuple[str, float]:
            return month, await self.calculate_ready_to_assign(month)

        results = await asyncio.gather(*(one(m) for m in months))
        return {k: v for k, v in results}
