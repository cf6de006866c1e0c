"""
Protocol describing the key-value store the services are written against.

The store only offers single-item atomicity: conditional put and delete,
and an atomic multi-path increment on one item. There are no cross-item
transactions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..domain.expressions import Condition, CounterUpdate

Item = Dict[str, Any]
Key = Mapping[str, str]


class KeyValueStore(Protocol):
    """Protocol describing the store behaviour needed by the repository."""

    def put(self, table: str, item: Mapping[str, Any], condition: Optional[Condition] = None) -> None:
        """Write ``item``. Raises ConflictError if ``condition`` fails."""

    def get(self, table: str, key: Key) -> Optional[Item]:
        """Return the item stored under ``key`` or None."""

    def delete(self, table: str, key: Key, condition: Optional[Condition] = None) -> None:
        """Delete ``key``. Raises ConflictError if ``condition`` fails."""

    def increment(self, table: str, key: Key, update: CounterUpdate) -> None:
        """Atomically apply every increment in ``update`` to one item."""

    def scan(
        self,
        table: str,
        start_key: Optional[Key] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Item], Optional[Item]]:
        """Return one page of items and the key to resume from (None when done)."""

    def batch_put(self, table: str, items: Sequence[Mapping[str, Any]]) -> None:
        """Write ``items`` unconditionally."""
