"""A thin, typed layer over an LMDB environment with named trees and cursors."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, IntFlag, auto
from operator import methodcaller
from typing import Iterator, Optional, Tuple, Union

import lmdb

from .errors import LmdbError, MessageError

BytesLike = Union[bytes, bytearray, memoryview, str]
Item = Tuple[bytes, bytes]

DEFAULT_MAXDBS = 20
DEFAULT_MAXREADERS = 100
DEFAULT_MAPSIZE = 1_000_000_000_000


class TreeFlags(IntFlag):
    """Flags accepted when opening a tree (named database)."""

    NONE = 0
    REVERSEKEY = 0x02
    DUPSORT = 0x04
    INTEGERKEY = 0x08
    DUPFIXED = 0x10
    INTEGERDUP = 0x20
    CREATE = 0x40000


# Environment flag bits mapped onto keyword options of ``lmdb.open``.
_ENV_FLAG_OPTIONS = {
    0x4000: ("subdir", False),  # NOSUBDIR
    0x10000: ("sync", False),  # NOSYNC
    0x20000: ("readonly", True),  # RDONLY
    0x40000: ("metasync", False),  # NOMETASYNC
    0x80000: ("writemap", True),  # WRITEMAP
    0x100000: ("map_async", True),  # MAPASYNC
    0x200000: None,  # NOTLS, always in effect
    0x400000: ("lock", False),  # NOLOCK
    0x800000: ("readahead", False),  # NORDAHEAD
    0x1000000: ("meminit", False),  # NOMEMINIT
}


@contextmanager
def _lmdb_errors() -> Iterator[None]:
    try:
        yield
    except lmdb.Error as exc:
        raise LmdbError(str(exc)) from exc


def _as_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"expected bytes or str, got {type(value).__name__}")


def _check_nul(data: bytes) -> None:
    position = data.find(b"\0")
    if position >= 0:
        raise MessageError(f"nul byte found in provided data at position: {position}")


def _env_options(flags: int) -> dict:
    options = {}
    remaining = flags
    for bit, option in _ENV_FLAG_OPTIONS.items():
        if flags & bit:
            remaining &= ~bit
            if option is not None:
                options[option[0]] = option[1]
    if remaining:
        raise MessageError(f"unsupported environment flags: {remaining:#x}")
    return options


class BoundKind(Enum):
    INCLUDED = auto()
    EXCLUDED = auto()
    UNBOUNDED = auto()


@dataclass(frozen=True)
class Bound:
    """Where an iteration starts: at a key, just past a key, or at an end."""

    kind: BoundKind
    key: Optional[bytes] = None


def included(key: BytesLike) -> Bound:
    return Bound(BoundKind.INCLUDED, _as_bytes(key))


def excluded(key: BytesLike) -> Bound:
    return Bound(BoundKind.EXCLUDED, _as_bytes(key))


def unbounded() -> Bound:
    return Bound(BoundKind.UNBOUNDED)


@dataclass(frozen=True)
class Tree:
    """An opened tree; pass it to transaction methods."""

    name: Optional[str]
    flags: TreeFlags
    handle: object = field(repr=False, compare=False)

    @property
    def dup(self) -> bool:
        return bool(self.flags & TreeFlags.DUPSORT)


class Db:
    """An LMDB environment holding any number of trees."""

    def __init__(
        self,
        path: Union[str, os.PathLike],
        maxdbs: Optional[int] = DEFAULT_MAXDBS,
        maxreaders: Optional[int] = DEFAULT_MAXREADERS,
        mapsize: Optional[int] = DEFAULT_MAPSIZE,
        flags: int = 0,
    ) -> None:
        path_str = os.fsdecode(path)
        _check_nul(path_str.encode("utf-8", "surrogateescape"))
        options = _env_options(flags)

        directory = path_str if options.get("subdir", True) else os.path.dirname(path_str)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise MessageError(f"Failed to create LMDB directory: `{exc!r}`.") from exc

        if maxdbs is not None:
            options["max_dbs"] = maxdbs
        if maxreaders is not None:
            options["max_readers"] = maxreaders
        if mapsize is not None:
            options["map_size"] = mapsize

        with _lmdb_errors():
            self._env = lmdb.open(path_str, mode=0o644, **options)
        self._trees: dict = {}
        self._lock = threading.RLock()

    def open_tree(self, name: Optional[str] = None, flags: int = 0) -> Tree:
        """Open a tree by name (None for the main tree), creating it if needed."""
        flags = TreeFlags(flags)
        with self._lock:
            handle = self._trees.get(name)
            if handle is not None:
                return Tree(name, flags, handle)
            key = None
            if name is not None:
                key = name.encode("utf-8")
                _check_nul(key)
            with _lmdb_errors():
                handle = self._env.open_db(
                    key,
                    create=True,
                    reverse_key=bool(flags & TreeFlags.REVERSEKEY),
                    dupsort=bool(flags & TreeFlags.DUPSORT),
                    integerkey=bool(flags & TreeFlags.INTEGERKEY),
                    integerdup=bool(flags & TreeFlags.INTEGERDUP),
                    dupfixed=bool(flags & TreeFlags.DUPFIXED),
                )
            self._trees[name] = handle
            return Tree(name, flags | TreeFlags.CREATE, handle)

    def drop_tree(self, name: Optional[str] = None) -> bool:
        """Delete an opened tree and its contents; False if it was not open."""
        with self._lock:
            handle = self._trees.pop(name, None)
            if handle is None:
                return False
            with _lmdb_errors():
                with self._env.begin(write=True) as txn:
                    txn.drop(handle, delete=True)
            return True

    def reader(self) -> "Reader":
        return Reader(self._env)

    def writer(self) -> "Writer":
        return Writer(self._env)

    def flush(self) -> None:
        """Force the environment's buffers to disk."""
        with _lmdb_errors():
            self._env.sync(True)

    def close(self) -> None:
        with self._lock:
            self._trees.clear()
            self._env.close()

    def __enter__(self) -> "Db":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_db(
    path: Union[str, os.PathLike],
    maxdbs: Optional[int] = DEFAULT_MAXDBS,
    maxreaders: Optional[int] = DEFAULT_MAXREADERS,
    mapsize: Optional[int] = DEFAULT_MAPSIZE,
    flags: int = 0,
) -> Db:
    return Db(path, maxdbs, maxreaders, mapsize, flags)


class Transaction:
    """Common behaviour of read and write transactions."""

    _write = False
    _commit_on_exit = False

    def __init__(self, env: "lmdb.Environment") -> None:
        with _lmdb_errors():
            self._txn = env.begin(write=self._write, buffers=False)
        self._done = False

    def _raw(self) -> "lmdb.Transaction":
        if self._done:
            raise MessageError("transaction already finished")
        return self._txn

    def get(self, tree: Tree, key: BytesLike) -> Optional[bytes]:
        """Return the (first) value stored under key, or None."""
        txn = self._raw()
        with _lmdb_errors():
            return txn.get(_as_bytes(key), db=tree.handle)

    def iter_from(self, tree: Tree, bound: Optional[Bound] = None, rev: bool = False) -> "Iter":
        iterator = Iter(self, tree)
        iterator.seek(bound if bound is not None else unbounded(), rev)
        return iterator

    def iter(self, tree: Tree) -> "Iter":
        return self.iter_from(tree, unbounded(), False)

    def commit(self) -> None:
        txn = self._raw()
        self._done = True
        with _lmdb_errors():
            txn.commit()

    def abort(self) -> None:
        if self._done:
            return
        self._done = True
        self._txn.abort()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._done:
            return
        if exc_type is None and self._commit_on_exit:
            self.commit()
        else:
            self.abort()


class Reader(Transaction):
    """A read-only snapshot; aborted when its block ends."""


class Writer(Transaction):
    """A write transaction; commits when its block ends without an error."""

    _write = True
    _commit_on_exit = True

    def put(self, tree: Tree, key: BytesLike, value: BytesLike) -> None:
        txn = self._raw()
        with _lmdb_errors():
            txn.put(_as_bytes(key), _as_bytes(value), dupdata=True, overwrite=True, db=tree.handle)

    def delete(self, tree: Tree, key: BytesLike, value: Optional[BytesLike] = None) -> None:
        """Delete a key, or one key/value pair in a duplicate tree; missing keys are ignored."""
        txn = self._raw()
        data = b"" if value is None else _as_bytes(value)
        with _lmdb_errors():
            txn.delete(_as_bytes(key), data, db=tree.handle)


class _Op(Enum):
    GET_CURRENT = auto()
    FIRST = auto()
    LAST = auto()
    NEXT = auto()
    PREV = auto()
    NEXT_NODUP = auto()
    PREV_NODUP = auto()


_MOVES = {
    _Op.FIRST: methodcaller("first"),
    _Op.LAST: methodcaller("last"),
    _Op.NEXT: methodcaller("next"),
    _Op.PREV: methodcaller("prev"),
    _Op.NEXT_NODUP: methodcaller("next_nodup"),
    _Op.PREV_NODUP: methodcaller("prev_nodup"),
}


class Iter:
    """A cursor over a tree yielding (key, value) pairs in either direction."""

    def __init__(self, txn: Transaction, tree: Tree) -> None:
        self._txn = txn
        self._dup = tree.dup
        self._error: Optional[LmdbError] = None
        self._cursor = None
        self._rev = False
        self._op = _Op.FIRST
        self._next_op = _Op.NEXT
        self._positioned = False
        self._exhausted = False
        try:
            raw = txn._raw()
            with _lmdb_errors():
                self._cursor = raw.cursor(db=tree.handle)
        except LmdbError as exc:
            self._error = exc

    def _set_range(self, key: bytes) -> Optional[bytes]:
        self._positioned = self._cursor.set_range(key)
        return self._cursor.key() if self._positioned else None

    def _move(self, op: _Op) -> Optional[Item]:
        if op is not _Op.GET_CURRENT:
            self._positioned = _MOVES[op](self._cursor)
        return self._cursor.item() if self._positioned else None

    def seek(self, bound: Bound, rev: bool = False) -> None:
        """Reposition the cursor; iteration continues from the new place."""
        self._rev = rev
        self._exhausted = False
        if self._cursor is None:
            return
        try:
            with _lmdb_errors():
                self._seek(bound, rev)
        except LmdbError as exc:
            self._error = exc
            self._cursor = None

    def _seek(self, bound: Bound, rev: bool) -> None:
        kind = bound.kind
        if rev:
            self._next_op = _Op.PREV
            if kind is BoundKind.UNBOUNDED:
                self._op = _Op.LAST
                return
            self._op = _Op.GET_CURRENT
            found = self._set_range(bound.key)
            if found is None:
                # beyond every key
                self._op = _Op.LAST
            elif kind is BoundKind.INCLUDED:
                if found > bound.key:
                    self._op = _Op.PREV
                elif found == bound.key and self._dup:
                    self._cursor.last_dup()
            elif found >= bound.key:
                self._op = _Op.PREV_NODUP if self._dup else _Op.PREV
        else:
            self._next_op = _Op.NEXT
            if kind is BoundKind.UNBOUNDED:
                self._op = _Op.FIRST
                return
            self._op = _Op.GET_CURRENT
            found = self._set_range(bound.key)
            if kind is BoundKind.EXCLUDED and found == bound.key:
                self._op = _Op.NEXT_NODUP if self._dup else _Op.NEXT

    def __iter__(self) -> "Iter":
        return self

    def __next__(self) -> Item:
        if self._cursor is None:
            if self._error is not None:
                raise self._error
            raise StopIteration
        if self._exhausted:
            raise StopIteration
        op, self._op = self._op, self._next_op
        with _lmdb_errors():
            item = self._move(op)
        if item is None:
            self._exhausted = True
            raise StopIteration
        return item