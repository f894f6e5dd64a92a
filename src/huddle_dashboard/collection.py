"""Immutable ordered collections mirroring server-owned sequences."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Item(Generic[T]):
    """One entry of an ordered collection.

    ``local_id`` is stable for the lifetime of the item on the client; for
    server-confirmed items it equals the server key.
    """

    local_id: str
    value: T
    server_id: Optional[str] = None
    pending: bool = False


@dataclass(frozen=True)
class OrderedCollection(Generic[T]):
    items: Tuple[Item[T], ...] = ()

    @classmethod
    def from_values(cls, values: Iterable[T], key: Callable[[T], str]) -> "OrderedCollection[T]":
        """Build a collection of confirmed items keyed by ``key(value)``."""
        return cls(tuple(Item(local_id=key(value), value=value, server_id=key(value)) for value in values))

    def __iter__(self) -> Iterator[Item[T]]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> Item[T]:
        return self.items[index]

    def values(self) -> list[T]:
        return [item.value for item in self.items]

    def keys(self) -> list[str]:
        return [item.server_id or item.local_id for item in self.items]

    def pending(self) -> list[Item[T]]:
        return [item for item in self.items if item.pending]

    def find(self, local_id: str) -> Optional[Item[T]]:
        return next((item for item in self.items if item.local_id == local_id), None)

    def append(self, *items: Item[T]) -> "OrderedCollection[T]":
        return OrderedCollection(self.items + tuple(items))

    def remove(self, local_id: str) -> "OrderedCollection[T]":
        return OrderedCollection(tuple(item for item in self.items if item.local_id != local_id))

    def move(self, source: int, destination: int) -> "OrderedCollection[T]":
        """Remove the item at ``source`` and insert it at ``destination``.

        Out-of-range or equal indices return the collection unchanged.
        """
        size = len(self.items)
        if source == destination or not (0 <= source < size) or not (0 <= destination < size):
            return self
        reordered = list(self.items)
        moved = reordered.pop(source)
        reordered.insert(destination, moved)
        return OrderedCollection(tuple(reordered))
