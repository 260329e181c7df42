"""Merging of several sorted key iterators into one."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from .util import compare_keys
from .value import Value


class KeyIterator(ABC):
    """A positioned iterator over versioned keys and their values."""

    @abstractmethod
    def next(self) -> None:
        """Move to the next element."""

    @abstractmethod
    def rewind(self) -> None:
        """Move to the first element."""

    @abstractmethod
    def seek(self, key: bytes) -> None:
        """Move to the first element at or past ``key`` in iteration order."""

    @abstractmethod
    def key(self) -> bytes:
        """Key of the current element."""

    @abstractmethod
    def value(self) -> Value:
        """Value of the current element."""

    @abstractmethod
    def valid(self) -> bool:
        """Tell whether the iterator points at an element."""


class _Node:
    """A child iterator together with a copy of its current key."""

    __slots__ = ("iter", "key", "valid")

    def __init__(self, it: KeyIterator) -> None:
        self.iter = it
        self.key = b""
        self.valid = False

    def _set_key(self) -> None:
        self.valid = self.iter.valid()
        if self.valid:
            self.key = bytes(self.iter.key())

    def next(self) -> None:
        self.iter.next()
        self._set_key()

    def rewind(self) -> None:
        self.iter.rewind()
        self._set_key()

    def seek(self, key: bytes) -> None:
        self.iter.seek(key)
        self._set_key()


class MergeIterator(KeyIterator):
    """Merges two iterators; on equal keys the left one wins.

    Build one over any number of iterators with :meth:`from_iterators`.
    """

    def __init__(self, left: KeyIterator, right: KeyIterator, reverse: bool = False) -> None:
        self._left = _Node(left)
        self._right = _Node(right)
        self._is_left_small = True
        self._reverse = reverse
        self._current_key = b""

    @classmethod
    def from_iterators(cls, iters: Sequence[KeyIterator], reverse: bool) -> KeyIterator:
        """Combine iterators into a balanced tree of merges.

        Set ``reverse`` if the iterators emit keys in descending order.
        """
        iters = list(iters)
        if not iters:
            raise ValueError("no element in iters")
        if len(iters) == 1:
            return iters[0]
        if len(iters) == 2:
            return cls(iters[0], iters[1], reverse)
        mid = len(iters) // 2
        return cls(
            cls.from_iterators(iters[:mid], reverse),
            cls.from_iterators(iters[mid:], reverse),
            reverse,
        )

    @property
    def _smaller(self) -> _Node:
        return self._left if self._is_left_small else self._right

    @property
    def _bigger(self) -> _Node:
        return self._right if self._is_left_small else self._left

    def _swap_small(self) -> None:
        self._is_left_small = not self._is_left_small

    def _fix(self) -> None:
        if not self._bigger.valid:
            return
        if not self._smaller.valid:
            self._swap_small()
            return
        order = compare_keys(self._smaller.key, self._bigger.key)
        if order == 0:
            self._right.next()
            if not self._is_left_small:
                self._swap_small()
        elif order < 0:
            if self._reverse:
                self._swap_small()
        elif not self._reverse:
            self._swap_small()

    def _set_current(self) -> None:
        self._current_key = self._smaller.key

    def next(self) -> None:
        while self.valid():
            if self._smaller.key != self._current_key:
                break
            self._smaller.next()
            self._fix()
        self._set_current()

    def rewind(self) -> None:
        self._left.rewind()
        self._right.rewind()
        self._fix()
        self._set_current()

    def seek(self, key: bytes) -> None:
        self._left.seek(key)
        self._right.seek(key)
        self._fix()
        self._set_current()

    def key(self) -> bytes:
        return self._smaller.key

    def value(self) -> Value:
        return self._smaller.iter.value()

    def valid(self) -> bool:
        return self._smaller.valid