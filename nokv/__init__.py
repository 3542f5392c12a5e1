"""LMDB key-value storage with ordered cursors, time-based index scanners and benchmark helpers."""

__version__ = "0.3.2"
__all__ = ["errors", "store", "scanner", "benchutil"]