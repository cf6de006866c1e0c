"""
Store-agnostic write conditions and counter updates.

``CounterUpdate`` is the heart of the statistics engine: it collects the
scalar and bucket counters touched by one lifecycle event so they can be
sent to the store as a single atomic request. Bucket keys (cohort and
slot-type tags) are never written into a path directly. Each one gets a
synthetic placeholder such as ``#bc0`` and the literal key is kept in
``names``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple


@dataclass(frozen=True)
class Condition:
    """
    A single-item existence condition on a conditional write.

    Invariant: ``attribute`` names a key attribute of the targeted item.
    """
    attribute: str
    must_exist: bool

    @classmethod
    def exists(cls, attribute: str) -> "Condition":
        return cls(attribute=attribute, must_exist=True)

    @classmethod
    def not_exists(cls, attribute: str) -> "Condition":
        return cls(attribute=attribute, must_exist=False)


# Placeholder prefixes per bucket. Unknown buckets fall back to "k".
BUCKET_PREFIXES: Dict[str, str] = {
    "ownerCohorts": "oc",
    "bookableCohorts": "bc",
    "deleterCohorts": "dc",
    "types": "t",
    "participantCohorts": "pc",
    "cancelerCohorts": "cc",
}


@dataclass
class CounterUpdate:
    """
    Builder for an atomic multi-path increment.

    ``increments`` maps a path to its delta. A path is either a scalar field
    (``created``) or ``<bucket>.<placeholder>`` (``bookableCohorts.#bc1``).
    ``names`` binds every placeholder to the literal bucket key.
    """
    increments: Dict[str, int] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)
    create_missing: bool = False
    _placeholders: Dict[Tuple[str, str], str] = field(default_factory=dict, init=False, repr=False)
    _counters: Dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def add_scalar(self, field_name: str, delta: int = 1) -> "CounterUpdate":
        """Increment a flat counter such as ``created``."""
        self._add(field_name, delta)
        return self

    def add_bucket(self, bucket: str, key: str, delta: int = 1) -> "CounterUpdate":
        """
        Increment ``bucket[key]``.

        Adding the same key to the same bucket again reuses its placeholder
        and merges the deltas.
        """
        if not key:
            raise ValueError(f"Bucket key for {bucket} must not be empty")

        placeholder = self._placeholders.get((bucket, key))
        if placeholder is None:
            prefix = BUCKET_PREFIXES.get(bucket, "k")
            index = self._counters.get(prefix, 0)
            self._counters[prefix] = index + 1
            placeholder = f"#{prefix}{index}"
            self._placeholders[(bucket, key)] = placeholder
            self.names[placeholder] = key

        self._add(f"{bucket}.{placeholder}", delta)
        return self

    def add_buckets(self, bucket: str, keys: Iterable[str], delta: int = 1) -> "CounterUpdate":
        for key in keys:
            self.add_bucket(bucket, key, delta)
        return self

    def _add(self, path: str, delta: int) -> None:
        if delta <= 0:
            raise ValueError(f"Counter deltas must be positive, got {delta} for {path}")
        self.increments[path] = self.increments.get(path, 0) + delta

    def is_empty(self) -> bool:
        return not self.increments

    def resolved(self) -> Dict[Tuple[str, ...], int]:
        """
        Return the increments with placeholders replaced by their keys.

        Used by stores that address nested fields natively.
        """
        result: Dict[Tuple[str, ...], int] = {}
        for path, delta in self.increments.items():
            parts = tuple(
                self.names[part] if part.startswith("#") else part
                for part in path.split(".")
            )
            result[parts] = delta
        return result
