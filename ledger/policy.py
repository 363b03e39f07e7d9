from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, List, Optional

from ledger.domain import CategoryBudget
from ledger.months import add_months, current_month, month_range


@dataclass(frozen=True)
class AccessibilityPolicy:
    """Which months may receive assignments.

    Every month up to the current calendar month is open, plus ``months_ahead``
    months past the later of the current month and the latest month holding a
    nonzero assignment.
    """

    months_ahead: int = 1
    enforce: bool = True
    today: Callable[[], date] = date.today

    @classmethod
    def from_settings(cls, settings, today: Callable[[], date] = date.today) -> "AccessibilityPolicy":
        return cls(
            months_ahead=settings.ACCESSIBLE_MONTHS_AHEAD,
            enforce=settings.ENFORCE_MONTH_ACCESS,
            today=today,
        )

    def current_month(self) -> str:
        return current_month(self.today())

    def latest_accessible(self, budgets: Iterable[CategoryBudget]) -> str:
        latest = self.current_month()
        for b in budgets:
            if b.assigned != 0 and b.month > latest:
                latest = b.month
        return add_months(latest, self.months_ahead)

    def is_accessible(self, month: str, budgets: Iterable[CategoryBudget]) -> bool:
        if not self.enforce or month <= self.current_month():
            return True
        return month <= self.latest_accessible(budgets)

    def accessible_months(self, budgets: Iterable[CategoryBudget]) -> List[str]:
        budgets = list(budgets)
        earliest: Optional[str] = min((b.month for b in budgets), default=None)
        start = min(earliest, self.current_month()) if earliest else self.current_month()
        return list(month_range(start, self.latest_accessible(budgets)))
