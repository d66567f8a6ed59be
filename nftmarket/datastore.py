"""
nftmarket/datastore.py

Embedded document store: named collections of JSON records, persisted as one
snapshot file that is rewritten on every mutation.

Contract:
- create / update_by_id / delete_by_id flush synchronously before returning
- the snapshot is written to a temp file and renamed over the old one, so a
  crash never leaves a half-written file behind
- a failed flush rolls the in-memory change back (one record write is all-or-nothing)
- single writer process; a lock serializes mutations inside this process only

Filters are a small tagged AST (Or / Regex / In / Range, literals, nested dicts),
evaluated by `matches()`:

    store.find("assets", {
        "$or": Or([{"rental.is_rented": True}, {"is_listed": True}]),
        "metadata.name": Regex("punk", case_insensitive=True),
        "rental.rental_end": Range(gte=1700000000),
    }, sort=("created_at", DESCENDING), limit=20)
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from nftmarket.config import IS_DEV
from nftmarket.errors import StoreError

ASCENDING = 1
DESCENDING = -1

# Fields the store owns; patches cannot overwrite them
_IMMUTABLE_FIELDS = ("id", "created_at")


# ---------------------------------------------------------
# Filter AST
# ---------------------------------------------------------
@dataclass(frozen=True)
class Or:
    """True if any subfilter matches the record."""
    subfilters: Sequence[Mapping[str, Any]]


@dataclass(frozen=True)
class Regex:
    """Regular-expression search; only string values can match."""
    pattern: str
    case_insensitive: bool = False

    def compiled(self) -> "re.Pattern[str]":
        return re.compile(self.pattern, re.IGNORECASE if self.case_insensitive else 0)


@dataclass(frozen=True)
class In:
    """Membership test; a list value matches if any element is in the set."""
    values: Iterable[Any] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class Range:
    """Inclusive range on comparable values (either bound may be omitted)."""
    gte: Any = None
    lte: Any = None


Filter = Mapping[str, Any]

_MISSING = object()


def get_path(record: Any, path: str) -> Any:
    """Resolve a dot-separated path ("rental.current_renter"); _MISSING if absent."""
    current = record
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _compare_range(actual: Any, node: Range) -> bool:
    if actual is _MISSING or actual is None:
        return False
    try:
        if node.gte is not None and not actual >= node.gte:
            return False
        if node.lte is not None and not actual <= node.lte:
            return False
    except TypeError:
        # Incomparable types never match
        return False
    return True


def _match_value(actual: Any, expected: Any) -> bool:
    if isinstance(expected, Regex):
        return isinstance(actual, str) and expected.compiled().search(actual) is not None
    if isinstance(expected, In):
        if isinstance(actual, list):
            return any(item in expected.values for item in actual)
        return actual is not _MISSING and actual in expected.values
    if isinstance(expected, Range):
        return _compare_range(actual, expected)
    if isinstance(expected, Mapping):
        # Nested object: recurse into the addressed sub-record
        return matches(actual if isinstance(actual, Mapping) else {}, expected)
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    if actual is _MISSING:
        return expected is None
    return actual == expected


def matches(record: Mapping[str, Any], flt: Optional[Filter]) -> bool:
    """Evaluate a filter against one record; top-level keys compose by AND."""
    if not flt:
        return True
    for key, expected in flt.items():
        if isinstance(expected, Or):
            if not any(matches(record, sub) for sub in expected.subfilters):
                return False
            continue
        if not _match_value(get_path(record, key), expected):
            return False
    return True


def _sort_key(value: Any) -> Tuple[int, Any]:
    # None < numbers < strings < anything else (compared by repr)
    if value is None or value is _MISSING:
        return (0, 0)
    if isinstance(value, (bool, int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, repr(value))


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


# ---------------------------------------------------------
# DocumentStore
# ---------------------------------------------------------
class DocumentStore:
    """
    JSON-file-backed collections with explicit open/flush/close lifecycle.

    Use as a context manager or call open() before the first operation:

        with DocumentStore("data/datastore.json") as store:
            store.create("accounts", {"username": "alice"})
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._opened = False

    # -- lifecycle ---------------------------------------------------------
    def open(self) -> "DocumentStore":
        with self._lock:
            if self._opened:
                return self
            directory = os.path.dirname(os.path.abspath(self.path))
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Cannot create datastore directory {directory}: {e}")
            self._data = self._load()
            self._opened = True
            if IS_DEV:
                counts = {name: len(docs) for name, docs in self._data.items()}
                print(f"[STORE] Opened {self.path} collections={counts}")
            return self

    def close(self) -> None:
        with self._lock:
            if not self._opened:
                return
            self._write_snapshot()
            self._opened = False
            if IS_DEV:
                print(f"[STORE] Closed {self.path}")

    def flush(self) -> None:
        with self._lock:
            self._require_open()
            self._write_snapshot()

    def __enter__(self) -> "DocumentStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def _require_open(self) -> None:
        if not self._opened:
            raise StoreError("Datastore is not open")

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                parsed = json.load(f)
        except OSError as e:
            raise StoreError(f"Cannot read datastore {self.path}: {e}")
        except json.JSONDecodeError:
            parsed = None

        if not isinstance(parsed, dict) or not all(isinstance(v, list) for v in parsed.values()):
            backup = f"{self.path}.corrupt-{int(time.time())}"
            print(f"[STORE] WARNING: unreadable snapshot {self.path}, moved to {backup}; starting empty")
            try:
                os.replace(self.path, backup)
            except OSError as e:
                raise StoreError(f"Cannot move corrupt datastore aside: {e}")
            return {}
        return parsed

    def _write_snapshot(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".datastore-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StoreError(f"Failed to write datastore snapshot: {e}")

    def _commit(self, undo) -> None:
        """Flush; on failure run `undo` so memory matches the last good snapshot."""
        try:
            self._write_snapshot()
        except StoreError:
            undo()
            raise

    def _collection(self, name: str, create: bool = False) -> List[Dict[str, Any]]:
        self._require_open()
        if create:
            return self._data.setdefault(name, [])
        return self._data.get(name, [])

    def _index_of(self, coll: List[Dict[str, Any]], record_id: str) -> int:
        for i, doc in enumerate(coll):
            if doc.get("id") == record_id:
                return i
        return -1

    # -- mutations ---------------------------------------------------------
    def create(self, collection: str, doc: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            coll = self._collection(collection, create=True)
            now = now_iso()
            record = {"id": uuid.uuid4().hex, "created_at": now, "updated_at": now}
            record.update(copy.deepcopy({k: v for k, v in doc.items() if k not in _IMMUTABLE_FIELDS + ("updated_at",)}))
            coll.append(record)
            self._commit(lambda: coll.remove(record))
            return copy.deepcopy(record)

    def update_by_id(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            coll = self._collection(collection)
            idx = self._index_of(coll, record_id)
            if idx == -1:
                return None
            previous = coll[idx]
            updated = dict(previous)
            updated.update(copy.deepcopy({k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS}))
            updated["updated_at"] = now_iso()
            coll[idx] = updated

            def undo() -> None:
                coll[idx] = previous

            self._commit(undo)
            return copy.deepcopy(updated)

    def delete_by_id(self, collection: str, record_id: str) -> bool:
        with self._lock:
            coll = self._collection(collection)
            idx = self._index_of(coll, record_id)
            if idx == -1:
                return False
            removed = coll.pop(idx)
            self._commit(lambda: coll.insert(idx, removed))
            return True

    # -- queries -----------------------------------------------------------
    def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            coll = self._collection(collection)
            idx = self._index_of(coll, record_id)
            return copy.deepcopy(coll[idx]) if idx != -1 else None

    def find_one(self, collection: str, flt: Optional[Filter] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            for doc in self._collection(collection):
                if matches(doc, flt):
                    return copy.deepcopy(doc)
            return None

    def find(
        self,
        collection: str,
        flt: Optional[Filter] = None,
        sort: Optional[Tuple[str, int]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Matching records in creation order, optionally sorted on one field.

        sorted() is stable, so records with equal sort values keep their creation
        order in both directions.
        """
        with self._lock:
            results = [doc for doc in self._collection(collection) if matches(doc, flt)]
            if sort:
                field_path, order = sort
                results = sorted(
                    results,
                    key=lambda d: _sort_key(get_path(d, field_path)),
                    reverse=(order == DESCENDING),
                )
            start = max(0, skip or 0)
            end = None if limit is None else start + max(0, limit)
            return copy.deepcopy(results[start:end])

    def count_documents(self, collection: str, flt: Optional[Filter] = None) -> int:
        with self._lock:
            return sum(1 for doc in self._collection(collection) if matches(doc, flt))

    def collections(self) -> List[str]:
        with self._lock:
            self._require_open()
            return sorted(self._data.keys())
