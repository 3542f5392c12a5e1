# nokv

A small key-value layer over LMDB for building time-ordered indexes, plus
scanners that walk and combine those indexes.

## Install

```
pip install nokv
```

For the test suite:

```
pip install "nokv[test]"
pytest
```

## Storage

`nokv.store` wraps an LMDB environment. A `Db` holds named trees; a `Reader`
or `Writer` transaction reads and writes them, and `Iter` walks a tree in key
order, either way, starting from a `Bound` made with `included`, `excluded`
or `unbounded`.

```python
from nokv.store import open_db, included, excluded, unbounded

db = open_db("/tmp/mydb")
tree = db.open_tree("t1", 0)

writer = db.writer()
writer.put(tree, b"k1", b"v1")
writer.put(tree, b"k3", b"v3")
writer.put(tree, b"k5", b"v5")
writer.commit()

reader = db.reader()
assert reader.get(tree, b"k3") == b"v3"
assert [k for k, _ in reader.iter_from(tree, excluded(b"k3"), False)] == [b"k5"]
assert [k for k, _ in reader.iter_from(tree, included(b"k4"), True)] == [b"k3", b"k1"]
reader.abort()

db.close()
```

`open_db(path, maxdbs, maxreaders, mapsize, flags)` is the same as
`Db(...)`; by default it allows 20 trees, 100 readers and a map size of
1,000,000,000,000 bytes, and creates the directory if it is missing.
`Db.open_tree(None)` opens the main tree. `Db.flush()` syncs the environment
to disk.

`Db`, `Reader` and `Writer` can be used as context managers. A `Writer`
block commits when it ends without an error and aborts otherwise; a `Reader`
block aborts its snapshot at the end. Keys and values may be given as bytes
or as strings, which are encoded as UTF-8.

A tree opened with `TreeFlags.DUPSORT` keeps several sorted values under the
same key. In such a tree, an included bound on an existing key lands on that
key's first value going forward and on its last value going backward.
`Writer.delete(tree, key, value)` removes a single value, or the whole key
when `value` is `None`; deleting something that is not there is not an error.
`Db.drop_tree(name)` deletes an opened tree and all its data and returns
`False` if the tree was not open.

`Iter.seek(bound, rev)` repositions an iterator in place; iteration then
continues from the new position and in the new direction.

## Errors

Errors are raised as `nokv.errors.KvError` and its subclasses:

- `LmdbError`: an error reported by the LMDB engine.
- `MessageError`: a NUL byte in a path or tree name, unsupported environment
  flags, a directory that cannot be created, or use of a transaction that has
  already been committed or aborted.

## Scanners

`nokv.scanner` reads index trees whose keys carry a timestamp:

- `TimeKey`: the base class for the keys your index yields. Subclasses give
  `time()` and `change_time(key, time)`, which rewrites raw key bytes to
  another time; `cmp` orders keys by time and may be overridden.
- `Scanner`: iterates one cursor and passes each `(key, value)` entry to a
  matcher that returns `MatchResult.CONTINUE`, `MatchResult.STOP` or
  `Found(key)`. It keeps only keys inside a `since`/`until` window, seeking
  the cursor past keys outside it.
- `Group`: merges several scanners (or nested groups) in time order, either
  as a union, optionally removing keys that compare equal across scanners
  (`dup`), or as an intersection (`and_`).
- `SortedKeyList`: the time-ordered queue that `Group` is built on; `pop`
  returns the next key in scanning order.

A watcher passed to `Group.set_watcher` is called with the running total of
cursor steps after each step. When it raises, the exception ends the scan,
which makes it a way to stop queries that run too long. A watcher set on a
single `Scanner` is ignored.

## Benchmark helpers

`nokv.benchutil` has small helpers for load tests: random key/value
generation (`gen_pairs`, `gen_bytes`, `gen_str`, `gen_num_pair`), batching
(`chunk_list`), and rate formatting (`fmt_num`, `fmt_per_sec`, which takes
seconds or a `timedelta`; for example `fmt_per_sec(1100, 1.0) == "1.1K/s"`).

## What it does not do

nokv is a library only. It has no command-line tool, no server and no
benchmark runner, and it defines no index layout of its own: the key formats
and `TimeKey` subclasses that the scanners read are up to the caller.