from typing import Any, Dict, Optional

__all__ = [
    "LedgerError",
    "StoreUnavailable",
    "InaccessibleMonth",
    "CategoryInUse",
    "ChainResolutionUnbounded",
    "RecordNotFound",
    "InvalidAmount",
    "InvalidTransaction",
]


class LedgerError(Exception):
    """Base class for every failure the ledger reports to its callers."""

    code = "ledger_error"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


class StoreUnavailable(LedgerError):
    """The record store failed or timed out. Retry the whole logical operation."""

    code = "store_unavailable"
    retryable = True


class InaccessibleMonth(LedgerError):
    code = "inaccessible_month"

    def __init__(self, month: str, latest_accessible: Optional[str] = None):
        super().__init__(
            f"Month {month} is not accessible yet (latest accessible: {latest_accessible})",
            month=month,
            latest_accessible=latest_accessible,
        )


class CategoryInUse(LedgerError):
    code = "category_in_use"

    def __init__(self, category_id: str, transaction_count: int):
        super().__init__(
            f"Category {category_id} is referenced by {transaction_count} transaction(s)",
            category_id=category_id,
            transaction_count=transaction_count,
        )


class ChainResolutionUnbounded(LedgerError):
    code = "chain_unbounded"

    def __init__(self, category_id: str, month: str, max_depth: int):
        super().__init__(
            f"Budget chain for {category_id} at {month} did not reach a floor within {max_depth} months",
            category_id=category_id,
            month=month,
            max_depth=max_depth,
        )


class RecordNotFound(LedgerError):
    code = "not_found"

    def __init__(self, collection: str, record_id: str):
        super().__init__(
            f"No record {record_id} in {collection}",
            collection=collection,
            record_id=record_id,
        )


class InvalidAmount(LedgerError, ValueError):
    code = "invalid_amount"


class InvalidTransaction(LedgerError, ValueError):
    code = "invalid_transaction"
