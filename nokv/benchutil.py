"""Helpers for generating benchmark data and formatting throughput."""

from __future__ import annotations

import random
import string
from datetime import timedelta
from typing import List, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")

_ALPHANUMERIC = string.ascii_letters + string.digits


def chunk_list(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into lists of ``size`` elements; the last may be shorter."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def gen_bytes(length: int) -> bytes:
    """Random bytes of the given length."""
    return random.randbytes(length)


def gen_str(length: int) -> bytes:
    """Random ASCII letters and digits of the given length."""
    return "".join(random.choices(_ALPHANUMERIC, k=length)).encode("ascii")


def gen_pairs(klen: int, vlen: int, length: int) -> List[Tuple[bytes, bytes]]:
    """``length`` pairs of random binary keys and alphanumeric values."""
    return [(gen_bytes(klen), gen_str(vlen)) for _ in range(length)]


def gen_num_pair() -> Tuple[bytes, bytes]:
    """A pair of random 64-bit big-endian numbers."""
    return (
        random.getrandbits(64).to_bytes(8, "big"),
        random.getrandbits(64).to_bytes(8, "big"),
    )


def fmt_num(count: float) -> str:
    """Format a number with one decimal and a K, M or G suffix."""
    if count < 1_000.0:
        return f"{count:.1f}"
    if count < 1_000_000.0:
        return f"{count / 1_000.0:.1f}K"
    if count < 1_000_000_000.0:
        return f"{count / 1_000_000.0:.1f}M"
    return f"{count / 1_000_000_000.0:.1f}G"


def fmt_per_sec(count: int, seconds: Union[float, timedelta]) -> str:
    """Format a rate of ``count`` events over a duration."""
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    return f"{fmt_num(count / seconds)}/s"