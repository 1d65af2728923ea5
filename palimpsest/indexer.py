"""
Bidirectional symbol <-> dense id mapping.

Ids are assigned in insertion order starting at zero and never change.
An indexer is append-only while a model is being built and is frozen
before decoding starts; a frozen indexer refuses unseen symbols.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Generic, Hashable, TypeVar

from palimpsest.exceptions import OutOfRangeError, UnknownSymbolError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


class Indexer(Generic[T]):
    """
    Append-only symbol table.

    Attributes:
        name: Label used in error messages ("characters", "languages").

    Example:
        >>> chars = Indexer(["a", "b"], name="characters")
        >>> chars.index_of("-")
        2
        >>> chars.freeze()
        >>> chars.object_of(2)
        '-'
    """

    def __init__(self, symbols: Iterable[T] = (), name: str = "indexer"):
        self.name = name
        self._objects: list[T] = []
        self._ids: dict[T, int] = {}
        self._frozen = False
        for symbol in symbols:
            self.index_of(symbol)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the indexer read-only. Idempotent."""
        if not self._frozen:
            logger.debug("Freezing %s with %d symbols", self.name, len(self._objects))
        self._frozen = True

    def index_of(self, symbol: T) -> int:
        """
        Return the id of a symbol, assigning the next id if it is new.

        Raises:
            UnknownSymbolError: If the symbol is new and the indexer is frozen.
        """
        existing = self._ids.get(symbol)
        if existing is not None:
            return existing
        if self._frozen:
            raise UnknownSymbolError(symbol, self.name)
        new_id = len(self._objects)
        self._objects.append(symbol)
        self._ids[symbol] = new_id
        return new_id

    def get(self, symbol: T, default: int = -1) -> int:
        """Look a symbol up without ever inserting it."""
        return self._ids.get(symbol, default)

    def object_of(self, index: int) -> T:
        """
        Return the symbol assigned to an id.

        Raises:
            OutOfRangeError: If no symbol carries this id.
        """
        if index < 0 or index >= len(self._objects):
            raise OutOfRangeError(
                f"{self.name} has no symbol with id {index} (size {len(self._objects)})"
            )
        return self._objects[index]

    def size(self) -> int:
        return len(self._objects)

    def objects(self) -> list[T]:
        """Symbols in id order."""
        return list(self._objects)

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._ids

    def __iter__(self) -> Iterator[T]:
        return iter(self._objects)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Indexer):
            return NotImplemented
        return self._objects == other._objects

    def __repr__(self) -> str:
        state = "frozen" if self._frozen else "open"
        return f"Indexer(name={self.name!r}, size={len(self._objects)}, {state})"
