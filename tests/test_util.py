import time

import pytest

from agatekv.util import (
    bytes_diff,
    compare_keys,
    default_hash,
    has_any_prefixes,
    no_fail,
    panic_if_fail,
    same_key,
    search,
    sync_dir,
    unix_time,
    user_key,
)


def test_unix_time():
    now_ms = time.time_ns() // 1_000_000
    assert abs(now_ms // 100 - unix_time() // 100) <= 1


@pytest.mark.parametrize(
    "base, target, expected",
    [
        (b"abcdef", b"abcxyz", b"xyz"),
        (b"abcdef", b"abc", b""),
        (b"abc", b"abcdef", b"def"),
        (b"", b"hello", b"hello"),
        (b"0123456789abcdefXYZ", b"0123456789abcdefXYQ", b"Q"),
        (b"0123456789ab", b"0123456789ab", b""),
        (b"01234567zz", b"01234567ab", b"ab"),
    ],
)
def test_bytes_diff(base, target, expected):
    assert bytes_diff(base, target) == expected


def test_search_finds_first_true():
    assert search(10, lambda i: i >= 4) == 4


def test_search_all_false_returns_n():
    assert search(7, lambda i: False) == 7


def test_search_empty_range():
    assert search(0, lambda i: True) == 0


def test_user_key_strips_suffix():
    assert user_key(b"hello" + b"\x00" * 8) == b"hello"


def test_user_key_too_short():
    with pytest.raises(ValueError):
        user_key(b"abc")


def test_compare_keys_orders_user_key_first():
    a = b"aaa" + b"\xff" * 8
    b = b"aab" + b"\x00" * 8
    assert compare_keys(a, b) < 0
    assert compare_keys(b, a) > 0


def test_compare_keys_uses_suffix_on_tie():
    a = b"key" + b"\x00" * 7 + b"\x01"
    b = b"key" + b"\x00" * 7 + b"\x02"
    assert compare_keys(a, b) < 0
    assert compare_keys(a, a) == 0


def test_same_key():
    assert same_key(b"abc" + b"\x00" * 8, b"abc" + b"\x01" * 8)
    assert not same_key(b"abc" + b"\x00" * 8, b"abd" + b"\x00" * 8)
    assert not same_key(b"abc" + b"\x00" * 8, b"abcd" + b"\x00" * 8)


def test_has_any_prefixes():
    assert has_any_prefixes(b"foobar", [b"x", b"foo"])
    assert not has_any_prefixes(b"foobar", [b"bar", b"baz"])
    assert not has_any_prefixes(b"foobar", [])


def test_no_fail_returns_result():
    assert no_fail(lambda: 42, "ok") == 42


def test_no_fail_records_failure():
    def boom():
        raise OSError("disk")

    assert no_fail(boom, "boom") is None
    with pytest.raises(RuntimeError):
        panic_if_fail()


def test_default_hash_is_stable_and_distinguishes():
    assert default_hash(b"abc") == default_hash(b"abc")
    assert default_hash(b"abc") == default_hash("abc")
    assert default_hash(b"abc") != default_hash(b"abd")
    assert 0 <= default_hash(12345) < 2**64


def test_sync_dir_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        sync_dir(tmp_path / "missing")