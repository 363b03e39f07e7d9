"""Record store adapter over a key-value backend.

Each collection is stored under its own key as a list of plain dict records.
Every record carries ``id``, ``created_at`` and ``updated_at``.

Backend failures surface as :class:`StoreUnavailable`; nothing here retries.
Multi-record writes go through :meth:`LedgerStore.unit_of_work`, which stages
changes and commits them in a single backend write.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from ledger.errors import RecordNotFound, StoreUnavailable

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
CATEGORIES = "categories"
CATEGORY_BUDGETS = "category_budgets"
TRANSACTIONS = "transactions"
COLLECTIONS = (ACCOUNTS, CATEGORIES, CATEGORY_BUDGETS, TRANSACTIONS)

# (op, collection, record id, payload)
Op = Tuple[str, str, str, dict]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryBackend:
    """Process-local backend. Values are deep-copied in and out."""

    def __init__(self, data: Optional[Dict[str, list]] = None):
        self._data: Dict[str, list] = copy.deepcopy(data or {})
        self._lock = threading.Lock()

    def acquire(self, timeout: float) -> bool:
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()

    def read(self, key: str) -> list:
        return copy.deepcopy(self._data.get(key, []))

    def write(self, items: Dict[str, list]) -> None:
        for key, rows in items.items():
            self._data[key] = copy.deepcopy(rows)


class JsonFileBackend:
    """Single JSON document on disk; every write replaces the file atomically."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def acquire(self, timeout: float) -> bool:
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()

    def _load(self) -> Dict[str, list]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as e:
            raise StoreUnavailable(f"Could not read ledger file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreUnavailable(f"Ledger file {self.path} is not a JSON object")
        return data

    def read(self, key: str) -> list:
        return self._load().get(key, [])

    def write(self, items: Dict[str, list]) -> None:
        data = self._load()
        data.update(items)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".ledger-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, sort_keys=True)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise StoreUnavailable(f"Could not write ledger file {self.path}: {e}") from e


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection {collection!r}; expected one of {', '.join(COLLECTIONS)}")


def _apply_op(rows: List[dict], op: str, collection: str, record_id: str, payload: dict):
    if op == "create":
        rows.append(dict(payload))
        return dict(payload)
    for idx, row in enumerate(rows):
        if row.get("id") == record_id:
            if op == "update":
                rows[idx] = {**row, **payload}
                return dict(rows[idx])
            del rows[idx]
            return True
    if op == "update":
        raise RecordNotFound(collection, record_id)
    return False


class _Queries:
    def get(self, collection: str) -> List[dict]:
        raise NotImplementedError

    def _scan(self, collection: str) -> Iterable[dict]:
        # rows returned here are copied before leaving find/filter
        return self.get(collection)

    def find(self, collection: str, record_id: str) -> Optional[dict]:
        found = next((r for r in self._scan(collection) if r.get("id") == record_id), None)
        return copy.deepcopy(found) if found is not None else None

    def filter(self, collection: str, **criteria) -> List[dict]:
        return [
            copy.deepcopy(r) for r in self._scan(collection)
            if all(r.get(field) == value for field, value in criteria.items())
        ]


class LedgerStore(_Queries):
    def __init__(self, backend, timeout: float = 5.0, clock: Callable[[], datetime] = utc_now):
        self.backend = backend
        self.timeout = timeout
        self.clock = clock

    @classmethod
    def in_memory(cls, data: Optional[Dict[str, list]] = None, **kwargs) -> "LedgerStore":
        return cls(MemoryBackend(data), **kwargs)

    @classmethod
    def from_settings(cls, settings) -> "LedgerStore":
        return cls(JsonFileBackend(settings.STORE_PATH), timeout=settings.STORE_TIMEOUT_SECONDS)

    @contextmanager
    def _locked(self):
        if not self.backend.acquire(self.timeout):
            raise StoreUnavailable(f"Timed out after {self.timeout}s waiting for the record store")
        try:
            yield self.backend
        finally:
            self.backend.release()

    def now(self) -> str:
        return self.clock().isoformat()

    def stamp_new(self, fields: dict) -> dict:
        ts = self.now()
        record = dict(fields)
        record["id"] = fields.get("id") or str(uuid4())
        record["created_at"] = fields.get("created_at") or ts
        record["updated_at"] = ts
        return record

    def stamp_update(self, fields: dict) -> dict:
        changes = {k: v for k, v in fields.items() if k not in ("id", "created_at")}
        changes["updated_at"] = self.now()
        return changes

    def get(self, collection: str) -> List[dict]:
        _check_collection(collection)
        with self._locked() as backend:
            return backend.read(collection)

    def create(self, collection: str, fields: dict) -> dict:
        record = self.stamp_new(fields)
        return self.apply([("create", collection, record["id"], record)])[0]

    def update(self, collection: str, record_id: str, fields: dict) -> dict:
        return self.apply([("update", collection, record_id, self.stamp_update(fields))])[0]

    def delete(self, collection: str, record_id: str) -> bool:
        return self.apply([("delete", collection, record_id, {})])[0]

    def apply(self, ops: Iterable[Op]) -> list:
        """Apply ``ops`` in order and persist every touched collection in one write."""
        ops = list(ops)
        if not ops:
            return []
        for _, collection, _, _ in ops:
            _check_collection(collection)
        with self._locked() as backend:
            working: Dict[str, List[dict]] = {}
            results = []
            for op, collection, record_id, payload in ops:
                if collection not in working:
                    working[collection] = backend.read(collection)
                results.append(_apply_op(working[collection], op, collection, record_id, payload))
            backend.write(working)
        logger.debug("Committed %d store operation(s) across %s", len(ops), ", ".join(sorted(working)))
        return results

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)


class UnitOfWork(_Queries):
    """Staged view of the store. Reads see staged writes; ``commit`` persists them atomically."""

    def __init__(self, store: LedgerStore):
        self._store = store
        self._rows: Dict[str, List[dict]] = {}
        self._ops: List[Op] = []
        self.committed = False

    def _working(self, collection: str) -> List[dict]:
        _check_collection(collection)
        if collection not in self._rows:
            self._rows[collection] = self._store.get(collection)
        return self._rows[collection]

    def now(self) -> str:
        return self._store.now()

    def get(self, collection: str) -> List[dict]:
        return copy.deepcopy(self._working(collection))

    def _scan(self, collection: str) -> Iterable[dict]:
        return self._working(collection)

    def create(self, collection: str, fields: dict) -> dict:
        record = self._store.stamp_new(fields)
        result = _apply_op(self._working(collection), "create", collection, record["id"], record)
        self._ops.append(("create", collection, record["id"], record))
        return result

    def update(self, collection: str, record_id: str, fields: dict) -> dict:
        changes = self._store.stamp_update(fields)
        result = _apply_op(self._working(collection), "update", collection, record_id, changes)
        self._ops.append(("update", collection, record_id, changes))
        return result

    def delete(self, collection: str, record_id: str) -> bool:
        removed = _apply_op(self._working(collection), "delete", collection, record_id, {})
        if removed:
            self._ops.append(("delete", collection, record_id, {}))
        return removed

    @property
    def pending(self) -> int:
        return len(self._ops)

    def written(self, collection: str) -> List[dict]:
        """Final staged state of every record created or updated in ``collection``."""
        ids = {record_id for op, coll, record_id, _ in self._ops if coll == collection and op != "delete"}
        return [copy.deepcopy(r) for r in self._rows.get(collection, []) if r.get("id") in ids]

    def commit(self) -> None:
        self._store.apply(self._ops)
        self._ops = []
        self.committed = True

    def discard(self) -> None:
        self._ops = []
        self._rows = {}
