"""Small helpers shared across the storage engine."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")

_log = logging.getLogger(__name__)

# Keys carry a fixed-length version suffix of this many bytes.
_SUFFIX_LEN = 8

_FAILED = threading.Event()


def bytes_diff(base: bytes, target: bytes) -> bytes:
    """Return the part of ``target`` after its common prefix with ``base``."""
    end = min(len(base), len(target))
    first_diff = next(
        (i for i, (a, b) in enumerate(zip(base, target)) if a != b),
        end,
    )
    return target[first_diff:]


def search(n: int, predicate: Callable[[int], bool]) -> int:
    """Return the smallest index in ``[0, n)`` for which ``predicate`` holds, or ``n``.

    ``predicate`` must be false for a prefix of the range and true afterwards.
    """
    lo, hi = 0, n
    while lo < hi:
        mid = (lo + hi) // 2
        if predicate(mid):
            hi = mid
        else:
            lo = mid + 1
    return lo


def sync_dir(path: str | os.PathLike[str]) -> None:
    """Flush a directory's metadata to disk."""
    fd = os.open(os.fspath(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def user_key(key: bytes) -> bytes:
    """Strip the version suffix from a key."""
    if len(key) < _SUFFIX_LEN:
        raise ValueError(f"key of length {len(key)} is shorter than its version suffix")
    return key[: len(key) - _SUFFIX_LEN]


def compare_keys(a: bytes, b: bytes) -> int:
    """Compare two versioned keys: user keys first, then their suffixes.

    Returns a negative number, zero or a positive number.
    """
    a_user, b_user = user_key(a), user_key(b)
    if a_user != b_user:
        return -1 if a_user < b_user else 1
    a_suffix, b_suffix = a[len(a_user):], b[len(b_user):]
    if a_suffix == b_suffix:
        return 0
    return -1 if a_suffix < b_suffix else 1


def same_key(a: bytes, b: bytes) -> bool:
    """Tell whether two versioned keys share the same user key."""
    if len(a) != len(b):
        return False
    return user_key(a) == user_key(b)


def unix_time() -> int:
    """Milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def has_any_prefixes(s: bytes, prefixes: Iterable[bytes]) -> bool:
    """Tell whether ``s`` starts with any of ``prefixes``."""
    return any(s.startswith(prefix) for prefix in prefixes)


def no_fail(action: Callable[[], T], name: str) -> T | None:
    """Run ``action``; on error log a warning, remember the failure and return None."""
    try:
        return action()
    except Exception as err:  # noqa: BLE001 - failures are recorded, not raised
        _log.warning("WARN: %s, %r", name, err)
        _FAILED.set()
        return None


def panic_if_fail() -> None:
    """Raise if any action run through :func:`no_fail` has failed."""
    if _FAILED.is_set():
        raise RuntimeError("failed")


def _hash_input(value: object) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return repr(value).encode("utf-8")


def default_hash(value: object) -> int:
    """Stable 64-bit hash of a value."""
    digest = hashlib.blake2b(_hash_input(value), digest_size=8).digest()
    return int.from_bytes(digest, "little")