import pytest

from nokv.scanner import Found, Group, MatchResult, Scanner, SortedKeyList, TimeKey
from nokv.store import TreeFlags, included, open_db


def be(value):
    return value.to_bytes(8, "big")


class SimpleKey(TimeKey):
    def __init__(self, time):
        self._time = time

    def time(self):
        return self._time

    def change_time(self, key, time):
        return b""


class Key(TimeKey):
    def __init__(self, k, v):
        self.k = k
        self.v = v

    @staticmethod
    def encode(kind, time):
        return be(kind) + be(time)

    def uid(self):
        return self.v

    def time(self):
        return int.from_bytes(self.k[8:16], "big")

    def cmp(self, other):
        mine = (self.time(), self.uid())
        theirs = (other.time(), other.uid())
        return (mine > theirs) - (mine < theirs)

    def change_time(self, key, time):
        return key[0:8] + be(time)


class LongQuery(Exception):
    pass


def prefix_matcher(scanner, item):
    k, v = item
    if k.startswith(scanner.prefix):
        return Found(Key(k, v))
    return MatchResult.STOP


def make_scanner(reader, tree, kind, *, since=None, until=None, matcher=prefix_matcher):
    prefix = be(kind)
    iterator = reader.iter_from(tree, included(prefix), False)
    return Scanner(iterator, prefix, prefix, False, since, until, matcher)


@pytest.fixture
def db(tmp_path):
    database = open_db(tmp_path / "db", mapsize=1 << 24)
    yield database
    database.close()


@pytest.fixture
def tree(db):
    flags = TreeFlags.DUPSORT | TreeFlags.DUPFIXED | TreeFlags.INTEGERDUP
    t = db.open_tree("t1", flags)
    with db.writer() as writer:
        for i in range(1, 4):
            writer.put(t, Key.encode(1, 10), be(i))
        writer.put(t, Key.encode(2, 10), be(3))
        for i in range(4, 6):
            writer.put(t, Key.encode(2, 30), be(i))
        writer.put(t, Key.encode(3, 30), be(5))
        for i in range(6, 8):
            writer.put(t, Key.encode(3, 20), be(i))
    return t


def test_sorted_key_list_reverse():
    sl = SortedKeyList(True)
    sl.add([1], SimpleKey(1))
    sl.add([10], SimpleKey(10))
    sl.add([5], SimpleKey(5))
    sl.add([6], SimpleKey(6))
    assert len(sl) == 4
    assert sl.pop()[0] == [10]
    assert sl.pop()[0] == [6]
    assert len(sl) == 2


def test_sorted_key_list_forward():
    sl = SortedKeyList(False)
    sl.add([1], SimpleKey(1))
    sl.add([10], SimpleKey(10))
    sl.add([5], SimpleKey(5))
    sl.add([6], SimpleKey(6))
    assert len(sl) == 4
    assert sl.pop()[0] == [1]
    assert sl.pop()[0] == [5]
    assert len(sl) == 2


def test_sorted_key_list_indexing_and_clear():
    sl = SortedKeyList(False)
    sl.add("a", SimpleKey(3))
    sl.add("b", SimpleKey(7))
    assert sl[-1][0] == "a"
    assert sl[0][0] == "b"
    sl.clear()
    assert len(sl) == 0
    with pytest.raises(IndexError):
        sl.pop()


def test_group_or_dedup(db, tree):
    with db.reader() as reader:
        group = Group(False, False, True)
        for kind in range(1, 4):
            group.add(make_scanner(reader, tree, kind))

        k = next(group)
        assert k.time() == 10
        assert k.uid() == be(1)
        k = next(group)
        assert k.time() == 10
        assert k.uid() == be(2)
        k = next(group)
        assert k.time() == 10
        assert k.uid() == be(3)
        k = next(group)
        assert k.time() == 20
        assert k.uid() == be(6)


def test_group_and(db, tree):
    with db.reader() as reader:
        group = Group(False, True, True)
        for kind in range(1, 3):
            group.add(make_scanner(reader, tree, kind))
        k = next(group)
        assert k.uid() == be(3)
        assert next(group, None) is None


def test_group_watcher_stops_scan(db, tree):
    seen = []

    def watcher(count):
        seen.append(count)
        if count > 3:
            raise LongQuery()

    with db.reader() as reader:
        group = Group(False, False, True)
        group.set_watcher(watcher)
        for kind in range(1, 4):
            group.add(make_scanner(reader, tree, kind))
        collected = []
        with pytest.raises(LongQuery):
            for k in group:
                collected.append(k.uid())
        assert collected == []
        assert seen == [4]


def test_group_single_scanner_counts(db, tree):
    with db.reader() as reader:
        scanner = make_scanner(reader, tree, 1)
        group = Group()
        group.add(scanner)
        uids = [k.uid() for k in group]
        assert uids == [be(1), be(2), be(3)]
        assert group.scan_times == scanner.times


def test_group_and_with_empty_scanner(db, tree):
    with db.reader() as reader:
        group = Group(False, True, False)
        group.add(make_scanner(reader, tree, 1))
        group.add(make_scanner(reader, tree, 9))
        assert list(group) == []


def test_scanner_continue_skips(db, tree):
    def skip_two(scanner, item):
        k, v = item
        if not k.startswith(scanner.prefix):
            return MatchResult.STOP
        if v == be(2):
            return MatchResult.CONTINUE
        return Found(Key(k, v))

    with db.reader() as reader:
        scanner = make_scanner(reader, tree, 1, matcher=skip_two)
        assert [k.uid() for k in scanner] == [be(1), be(3)]


def test_scanner_since(db, tree):
    with db.reader() as reader:
        scanner = make_scanner(reader, tree, 3, since=25)
        keys = list(scanner)
        assert [k.uid() for k in keys] == [be(5)]
        assert keys[0].time() == 30


def test_scanner_until(db, tree):
    with db.reader() as reader:
        scanner = make_scanner(reader, tree, 2, until=15)
        assert [k.uid() for k in scanner] == [be(3)]


def test_scanner_reverse_until(db, tree):
    with db.reader() as reader:
        prefix = be(2)
        iterator = reader.iter_from(tree, included(Key.encode(2, (1 << 64) - 1)), True)
        scanner = Scanner(iterator, prefix, prefix, True, None, 20, prefix_matcher)
        assert [k.uid() for k in scanner] == [be(3)]


def test_scanner_reverse_all(db, tree):
    with db.reader() as reader:
        prefix = be(2)
        iterator = reader.iter_from(tree, included(Key.encode(2, (1 << 64) - 1)), True)
        scanner = Scanner(iterator, prefix, prefix, True, None, None, prefix_matcher)
        assert [k.uid() for k in scanner] == [be(5), be(4), be(3)]


def test_scanner_requires_matcher(db, tree):
    with db.reader() as reader:
        iterator = reader.iter(tree)
        with pytest.raises(TypeError):
            Scanner(iterator, b"", b"")