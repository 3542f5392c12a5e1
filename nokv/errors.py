"""Exceptions raised by the key-value store."""

from __future__ import annotations


class KvError(Exception):
    """Base class for every error raised by the store."""


class MessageError(KvError):
    """An error described by a plain message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"error: {self.message}"


class LmdbError(KvError):
    """An error reported by the LMDB engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Lmdb error: {self.message}"