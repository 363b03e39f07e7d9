from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from ledger.errors import InvalidTransaction
from ledger.months import month_of


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    CASH = "cash"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


def _record(obj) -> Dict[str, Any]:
    data = asdict(obj)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
    return data


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    type: AccountType
    initial_balance: float
    current_balance: float
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, r: dict) -> "Account":
        return cls(
            id=r["id"],
            name=r["name"],
            type=AccountType(r.get("type", AccountType.CHECKING.value)),
            initial_balance=float(r.get("initial_balance", 0)),
            current_balance=float(r.get("current_balance", r.get("initial_balance", 0))),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )

    def to_record(self) -> dict:
        return _record(self)

    def with_balance(self, new_balance: float) -> "Account":
        return replace(self, current_balance=float(new_balance))


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    icon: str = ""
    color: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, r: dict) -> "Category":
        return cls(
            id=r["id"],
            name=r["name"],
            icon=r.get("icon", ""),
            color=r.get("color", ""),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )

    def to_record(self) -> dict:
        return _record(self)

    @property
    def created_month(self) -> Optional[str]:
        return month_of(self.created_at) if self.created_at else None


@dataclass(frozen=True)
class Transaction:
    id: str
    account_id: str
    type: TransactionType
    amount: float          # always a positive magnitude
    date: str              # YYYY-MM-DD
    category_id: Optional[str] = None
    transfer_account_id: Optional[str] = None
    payee: str = ""
    notes: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, r: dict) -> "Transaction":
        return cls(
            id=r["id"],
            account_id=r["account_id"],
            type=TransactionType(r["type"]),
            amount=float(r["amount"]),
            date=r["date"],
            category_id=r.get("category_id"),
            transfer_account_id=r.get("transfer_account_id"),
            payee=r.get("payee", ""),
            notes=r.get("notes", ""),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )

    def to_record(self) -> dict:
        return _record(self)

    @property
    def month(self) -> str:
        return month_of(self.date)

    @property
    def is_categorized_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE and bool(self.category_id)

    def validate(self) -> "Transaction":
        if self.amount <= 0:
            raise InvalidTransaction(f"Transaction amount must be positive, got {self.amount}")
        try:
            month_of(self.date)
        except ValueError as e:
            raise InvalidTransaction(str(e)) from e
        if self.type == TransactionType.EXPENSE and not self.category_id:
            raise InvalidTransaction("Expense transactions require a category")
        if self.type != TransactionType.EXPENSE and self.category_id:
            raise InvalidTransaction(f"{self.type.value.capitalize()} transactions cannot carry a category")
        if self.type == TransactionType.TRANSFER:
            if not self.transfer_account_id:
                raise InvalidTransaction("Transfer transactions require a destination account")
            if self.transfer_account_id == self.account_id:
                raise InvalidTransaction("Cannot transfer to the same account")
        elif self.transfer_account_id:
            raise InvalidTransaction("Only transfers may set a destination account")
        return self

    def with_changes(self, **changes) -> "Transaction":
        return replace(self, **changes)


@dataclass(frozen=True)
class CategoryBudget:
    """Ledger entry for one category in one month.

    ``available`` is derived (``starting_balance + assigned + activity``) by
    every constructor helper and update method below; build new values with
    them rather than setting ``available`` directly.
    """

    id: str
    category_id: str
    month: str
    assigned: float
    starting_balance: float
    activity: float
    available: float
    created_at: str = ""
    updated_at: str = ""

    @staticmethod
    def derive_available(starting_balance: float, assigned: float, activity: float) -> float:
        return starting_balance + assigned + activity

    @classmethod
    def opening(cls, id: str, category_id: str, month: str, starting_balance: float = 0.0) -> "CategoryBudget":
        return cls(
            id=id,
            category_id=category_id,
            month=month,
            assigned=0.0,
            starting_balance=float(starting_balance),
            activity=0.0,
            available=float(starting_balance),
        )

    @classmethod
    def from_record(cls, r: dict) -> "CategoryBudget":
        starting = float(r.get("starting_balance", 0))
        assigned = float(r.get("assigned", 0))
        activity = float(r.get("activity", 0))
        return cls(
            id=r["id"],
            category_id=r["category_id"],
            month=r["month"],
            assigned=assigned,
            starting_balance=starting,
            activity=activity,
            available=float(r.get("available", cls.derive_available(starting, assigned, activity))),
            created_at=r.get("created_at", ""),
            updated_at=r.get("updated_at", ""),
        )

    def to_record(self) -> dict:
        return _record(self)

    def ledger_fields(self) -> dict:
        return {
            "assigned": self.assigned,
            "starting_balance": self.starting_balance,
            "activity": self.activity,
            "available": self.available,
        }

    def recomputed(self) -> "CategoryBudget":
        return replace(self, available=self.derive_available(self.starting_balance, self.assigned, self.activity))

    def with_assigned(self, assigned: float) -> "CategoryBudget":
        return replace(self, assigned=float(assigned)).recomputed()

    def with_activity(self, activity: float) -> "CategoryBudget":
        return replace(self, activity=float(activity)).recomputed()

    def with_starting_balance(self, starting_balance: float) -> "CategoryBudget":
        return replace(self, starting_balance=float(starting_balance)).recomputed()

    def with_ledger(self, starting_balance: float, assigned: float, activity: float) -> "CategoryBudget":
        return replace(
            self,
            starting_balance=float(starting_balance),
            assigned=float(assigned),
            activity=float(activity),
        ).recomputed()

    def is_consistent(self) -> bool:
        return self.available == self.derive_available(self.starting_balance, self.assigned, self.activity)
