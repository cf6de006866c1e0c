"""
In-memory key-value store for tests and mock mode.
"""

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..domain.exceptions import ConflictError, TransientStoreError
from ..domain.expressions import Condition, CounterUpdate

logger = logging.getLogger(__name__)

Item = Dict[str, Any]


class InMemoryStore:
    """
    Store that keeps every table in a dict, guarded by a single lock.

    It follows the same rules as the DynamoDB adapter: conditions are
    checked and writes applied under one lock acquisition, increments are
    all-or-nothing, and incrementing a path that does not exist fails unless
    the update asks for missing counters to be created. The nested map of a
    bucket must always exist.
    """

    def __init__(self, key_schema: Mapping[str, Sequence[str]]):
        """
        Initialize the store.

        Args:
            key_schema: Table name -> names of its key attributes
        """
        self.key_schema = {table: tuple(attrs) for table, attrs in key_schema.items()}
        self._tables: Dict[str, Dict[Tuple[str, ...], Item]] = {table: {} for table in self.key_schema}
        self._lock = threading.Lock()

    def _key_of(self, table: str, item: Mapping[str, Any]) -> Tuple[str, ...]:
        try:
            attrs = self.key_schema[table]
        except KeyError as exc:
            raise TransientStoreError(f"Unknown table {table}") from exc
        try:
            return tuple(str(item[attr]) for attr in attrs)
        except KeyError as exc:
            raise TransientStoreError(f"Missing key attribute {exc} for table {table}") from exc

    @staticmethod
    def _check(condition: Optional[Condition], current: Optional[Item]) -> None:
        if condition is None:
            return
        present = current is not None and condition.attribute in current
        if present != condition.must_exist:
            raise ConflictError(
                "Invalid request: conditional check failed",
                f"Condition {condition} failed",
            )

    def put(self, table: str, item: Mapping[str, Any], condition: Optional[Condition] = None) -> None:
        key = self._key_of(table, item)
        with self._lock:
            rows = self._tables[table]
            self._check(condition, rows.get(key))
            rows[key] = copy.deepcopy(dict(item))

    def get(self, table: str, key: Mapping[str, str]) -> Optional[Item]:
        row_key = self._key_of(table, key)
        with self._lock:
            item = self._tables[table].get(row_key)
            return copy.deepcopy(item) if item is not None else None

    def delete(self, table: str, key: Mapping[str, str], condition: Optional[Condition] = None) -> None:
        row_key = self._key_of(table, key)
        with self._lock:
            rows = self._tables[table]
            self._check(condition, rows.get(row_key))
            rows.pop(row_key, None)

    def increment(self, table: str, key: Mapping[str, str], update: CounterUpdate) -> None:
        row_key = self._key_of(table, key)
        with self._lock:
            rows = self._tables[table]
            item = copy.deepcopy(rows.get(row_key)) or dict(key)

            for path, delta in update.resolved().items():
                target = item
                for part in path[:-1]:
                    nested = target.get(part)
                    if not isinstance(nested, dict):
                        raise TransientStoreError(
                            f"Document path {'.'.join(path)} is invalid: map {part} does not exist"
                        )
                    target = nested

                leaf = path[-1]
                if leaf not in target and not update.create_missing:
                    raise TransientStoreError(
                        f"Attribute {'.'.join(path)} does not exist in the item"
                    )
                target[leaf] = target.get(leaf, 0) + delta

            # Applied only once every path has been resolved.
            rows[row_key] = item

    def scan(
        self,
        table: str,
        start_key: Optional[Mapping[str, str]] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Item], Optional[Item]]:
        if limit is not None and limit < 1:
            raise ValueError(f"Scan limit must be at least 1, got {limit}")
        with self._lock:
            rows = sorted(self._tables[table].items())
        if start_key is not None:
            after = self._key_of(table, start_key)
            rows = [(k, v) for k, v in rows if k > after]

        page = rows if limit is None else rows[:limit]
        items = [copy.deepcopy(v) for _, v in page]

        last_key = None
        if limit is not None and len(rows) > limit:
            attrs = self.key_schema[table]
            last_key = {attr: value for attr, value in zip(attrs, page[-1][0])}
        return items, last_key

    def batch_put(self, table: str, items: Sequence[Mapping[str, Any]]) -> None:
        for item in items:
            self.put(table, item)

    def dump(self) -> Dict[str, List[Item]]:
        """Return a JSON-serialisable snapshot of every table."""
        with self._lock:
            return {table: [copy.deepcopy(v) for _, v in sorted(rows.items())]
                    for table, rows in self._tables.items()}

    def save(self, path: Path) -> None:
        """Write a snapshot to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.dump(), f, indent=2, sort_keys=True)

    @classmethod
    def load(cls, path: Path, key_schema: Mapping[str, Sequence[str]]) -> "InMemoryStore":
        """
        Create a store from a snapshot written by ``save``.

        A missing file yields an empty store.
        """
        store = cls(key_schema)
        if not path.exists():
            return store

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid state file {path}: {exc}") from exc

        for table, items in data.items():
            if table not in store.key_schema:
                logger.warning("Ignoring unknown table %s in %s", table, path)
                continue
            for item in items:
                store.put(table, item)
        return store
