"""Time-ordered scanning over tree cursors, singly or merged in groups."""

from __future__ import annotations

import abc
import bisect
from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

from .store import Iter, excluded, included

U64_MAX = (1 << 64) - 1

Watcher = Callable[[int], None]


class TimeKey(abc.ABC):
    """An index key that carries a timestamp."""

    @abc.abstractmethod
    def time(self) -> int:
        """Return the key's timestamp."""

    def cmp(self, other: "TimeKey") -> int:
        """Three-way comparison: negative, zero or positive."""
        mine, theirs = self.time(), other.time()
        return (mine > theirs) - (mine < theirs)

    @abc.abstractmethod
    def change_time(self, key: bytes, time: int) -> bytes:
        """Return the raw key bytes rewritten to carry another time."""


class SortedKeyList:
    """(item, key) pairs ordered by key time; the smallest sits at the end.

    With ``reverse`` the biggest sits at the end instead, so ``pop`` always
    hands out the next key in scanning order.
    """

    def __init__(self, reverse: bool = False) -> None:
        self.reverse = reverse
        self._entries: List[Tuple[Any, TimeKey]] = []

    def _order(self, first: TimeKey, second: TimeKey) -> int:
        return first.cmp(second) if self.reverse else second.cmp(first)

    def add(self, item: Any, key: TimeKey) -> None:
        wrap = cmp_to_key(self._order)
        position = bisect.bisect_left(self._entries, wrap(key), key=lambda entry: wrap(entry[1]))
        self._entries.insert(position, (item, key))

    def pop(self) -> Tuple[Any, TimeKey]:
        """Remove and return the last pair; IndexError when empty."""
        return self._entries.pop()

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __iter__(self) -> Iterator[Tuple[Any, TimeKey]]:
        return iter(self._entries)


class MatchResult(Enum):
    """Outcomes of a matcher other than a found key."""

    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True)
class Found:
    """A matcher outcome carrying the key that was found."""

    key: TimeKey


Matcher = Callable[["Scanner", Tuple[bytes, bytes]], Union[MatchResult, Found]]


class Scanner:
    """Walks a cursor, turning matching entries into keys within a time range."""

    def __init__(
        self,
        iter: Iter,
        key: bytes,
        prefix: bytes,
        reverse: bool = False,
        since: Optional[int] = None,
        until: Optional[int] = None,
        matcher: Optional[Matcher] = None,
    ) -> None:
        if matcher is None:
            raise TypeError("a matcher is required")
        self.inner = iter
        self.key = key
        self.prefix = prefix
        self.reverse = reverse
        self.since = since
        self.until = until
        self._matcher = matcher
        self.times = 0
        self.cur_times = 0

    def set_watcher(self, watcher: Watcher) -> None:
        """Scanners report counts to their group; a watcher here is ignored."""

    def __iter__(self) -> "Scanner":
        return self

    def _out_of_range(self, found: TimeKey, raw_key: bytes) -> bool:
        """Reposition the cursor if the key falls outside the time range."""
        time = found.time()
        if self.reverse:
            if self.until is not None and time > self.until:
                self.inner.seek(included(found.change_time(raw_key, self.until)), True)
                return True
            if self.since is not None and time < self.since:
                self.inner.seek(excluded(found.change_time(raw_key, 0)), True)
                return True
        else:
            if self.since is not None and time < self.since:
                self.inner.seek(included(found.change_time(raw_key, self.since)), False)
                return True
            if self.until is not None and time > self.until:
                self.inner.seek(excluded(found.change_time(raw_key, U64_MAX)), False)
                return True
        return False

    def __next__(self) -> TimeKey:
        self.cur_times = 0
        while True:
            self.times += 1
            self.cur_times += 1
            entry = next(self.inner, None)
            if entry is None:
                raise StopIteration
            result = self._matcher(self, entry)
            if result is MatchResult.CONTINUE:
                continue
            if result is MatchResult.STOP:
                raise StopIteration
            if not isinstance(result, Found):
                raise TypeError(f"matcher returned {result!r}")
            if self._out_of_range(result.key, entry[0]):
                continue
            return result.key


class Group:
    """Merges several scanners in time order: their union, or with ``and_``
    their intersection. ``dup`` removes keys repeated across scanners."""

    def __init__(self, reverse: bool = False, and_: bool = False, dup: bool = False) -> None:
        self._onlyone = None
        self._items: list = []
        self._founds = SortedKeyList(reverse)
        self.scan_times = 0
        self.cur_times = 0
        self._and = and_
        self._done = False
        self._dup = dup
        self._watcher: Optional[Watcher] = None

    def _watch(self, count: int) -> None:
        self.scan_times += count
        self.cur_times += count
        if self._watcher is not None:
            self._watcher(self.scan_times)

    def _step(self, scanner) -> Optional[TimeKey]:
        try:
            return next(scanner, None)
        finally:
            self._watch(scanner.cur_times)

    def add(self, scanner) -> None:
        """Add a scanner (or a nested group) to the merge."""
        if self._done:
            return
        if not self._items and self._onlyone is None:
            self._onlyone = scanner
            return
        if self._onlyone is not None:
            first, self._onlyone = self._onlyone, None
            self._add_to_list(first)
        self._add_to_list(scanner)

    def _add_to_list(self, scanner) -> None:
        if self._done:
            return
        index = len(self._items)
        try:
            first = next(scanner, None)
        finally:
            self.scan_times += scanner.cur_times
            self.cur_times += scanner.cur_times
        if first is not None:
            self._founds.add(index, first)
        elif self._and:
            self._done = True
            self._founds.clear()
            return
        self._items.append(scanner)

    def set_watcher(self, watcher: Watcher) -> None:
        """Call ``watcher`` with the total scan count after every step.

        The watcher stops the scan by raising an exception.
        """
        self._watcher = watcher
        if self._onlyone is not None:
            self._onlyone.set_watcher(watcher)
        for scanner in self._items:
            scanner.set_watcher(watcher)

    def __iter__(self) -> "Group":
        return self

    def __next__(self) -> TimeKey:
        self.cur_times = 0
        if self._onlyone is not None:
            found = self._step(self._onlyone)
        elif not self._founds or self._done:
            found = None
        elif self._and:
            found = self._next_and()
        else:
            found = self._next_or()
        if found is None:
            raise StopIteration
        return found

    def _next_and(self) -> Optional[TimeKey]:
        while True:
            index, key = self._founds.pop()
            mismatch = any(other.cmp(key) != 0 for _, other in reversed(self._founds))
            following = self._step(self._items[index])
            if mismatch:
                if following is None:
                    # one scanner is out of data, so the intersection is complete
                    self._founds.clear()
                    return None
                self._founds.add(index, following)
                continue
            if following is not None:
                self._founds.add(index, following)
            else:
                self._founds.clear()
            return key

    def _next_or(self) -> Optional[TimeKey]:
        if self._dup:
            same = [self._founds.pop()]
            while self._founds and self._founds[-1][1].cmp(same[0][1]) == 0:
                same.append(self._founds.pop())
            current = same.pop()
            for index, _ in same:
                following = self._step(self._items[index])
                if following is not None:
                    self._founds.add(index, following)
        else:
            current = self._founds.pop()

        index, key = current
        following = self._step(self._items[index])
        if following is not None:
            self._founds.add(index, following)
        return key