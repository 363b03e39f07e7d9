import bisect
import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from ledger.domain import CategoryBudget


class BudgetCache:
    """Bounded LRU of budget snapshots keyed by (category_id, month).

    A sorted month index per category lets forward invalidation drop exactly
    the months at or after a given month.
    """

    def __init__(self, maxsize: int = 2048):
        self.maxsize = maxsize
        self._entries: "OrderedDict[Tuple[str, str], CategoryBudget]" = OrderedDict()
        self._months: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._entries

    def get(self, category_id: str, month: str) -> Optional[CategoryBudget]:
        with self._lock:
            budget = self._entries.get((category_id, month))
            if budget is None:
                self.misses += 1
                return None
            self._entries.move_to_end((category_id, month))
            self.hits += 1
            return budget

    def put(self, budget: CategoryBudget) -> None:
        key = (budget.category_id, budget.month)
        with self._lock:
            if key not in self._entries:
                bisect.insort(self._months.setdefault(budget.category_id, []), budget.month)
            self._entries[key] = budget
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                (old_category, old_month), _ = self._entries.popitem(last=False)
                self._unindex(old_category, old_month)

    def _unindex(self, category_id: str, month: str) -> None:
        months = self._months.get(category_id, [])
        idx = bisect.bisect_left(months, month)
        if idx < len(months) and months[idx] == month:
            del months[idx]
        if not months:
            self._months.pop(category_id, None)

    def discard(self, category_id: str, month: str) -> bool:
        with self._lock:
            if self._entries.pop((category_id, month), None) is None:
                return False
            self._unindex(category_id, month)
            return True

    def invalidate_forward(self, category_id: str, from_month: str) -> int:
        """Drop every cached month >= ``from_month`` for the category; returns the count."""
        with self._lock:
            months = self._months.get(category_id, [])
            idx = bisect.bisect_left(months, from_month)
            dropped = months[idx:]
            for month in dropped:
                self._entries.pop((category_id, month), None)
            del months[idx:]
            if not months:
                self._months.pop(category_id, None)
            return len(dropped)

    def invalidate_category(self, category_id: str) -> int:
        with self._lock:
            months = self._months.pop(category_id, [])
            for month in months:
                self._entries.pop((category_id, month), None)
            return len(months)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._months.clear()
            self.hits = self.misses = 0

    def cached_months(self, category_id: str) -> List[str]:
        with self._lock:
            return list(self._months.get(category_id, []))
