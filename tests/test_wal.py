import io

import pytest

from agatekv.value import Entry, ValuePointer
from agatekv.wal import (
    MAX_HEADER_SIZE,
    EntryReader,
    Header,
    LogOptions,
    LogReadError,
    VarDecodeError,
    Wal,
    WalIterator,
)


@pytest.fixture
def opts():
    return LogOptions(value_log_file_size=4096)


def _write_numbered(path, opts, count=20):
    wal = Wal.open(path, opts)
    for i in range(count):
        wal.write_entry(Entry(str(i).encode(), str(i).encode()))
    wal.close_and_save()


def test_wal_create(tmp_path, opts):
    path = tmp_path / "1.wal"
    wal = Wal.open(path, opts)
    assert path.stat().st_size == 8192
    assert wal.size == 8192
    wal.close_and_save()
    assert path.read_bytes()[:MAX_HEADER_SIZE] == bytes(MAX_HEADER_SIZE)


def test_header_encode():
    header = Header(
        key_len=233333,
        value_len=2333,
        expires_at=2**64 - 1 - 2333333,
        user_meta=ord("A"),
        meta=ord("B"),
    )
    buf = header.encode()
    decoded, used = Header.decode(buf)
    assert decoded == header
    assert used == len(buf) == header.encoded_len()


def test_header_layout():
    assert Header(key_len=1, value_len=1).encode() == b"\x00\x00\x01\x01\x00"


def test_header_decode_too_short():
    with pytest.raises(VarDecodeError):
        Header.decode(b"\x00\x00")


def test_wal_iterator(tmp_path, opts):
    path = tmp_path / "1.wal"
    _write_numbered(path, opts)
    wal = Wal.open(path, opts)
    entries = list(wal.iter())
    wal.close()
    assert [e.key for e in entries] == [str(i).encode() for i in range(20)]
    assert [e.value for e in entries] == [str(i).encode() for i in range(20)]


def test_wal_iterator_trunc(tmp_path, opts):
    path = tmp_path / "1.wal"
    _write_numbered(path, opts)
    for trunc_length in range(99, 49, -1):
        with open(path, "r+b") as f:
            f.truncate(trunc_length)
        wal = Wal.open(path, opts)
        entries = list(wal.iter())
        wal.close_and_save()
        expected = [str(i).encode() for i in range(len(entries))]
        assert [e.key for e in entries] == expected
        assert [e.value for e in entries] == expected
        assert len(entries) < 20


def test_close_removes_file(tmp_path, opts):
    path = tmp_path / "1.wal"
    wal = Wal.open(path, opts)
    wal.close()
    assert not path.exists()


def test_context_manager_closes(tmp_path, opts):
    path = tmp_path / "2.wal"
    with Wal.open(path, opts) as wal:
        wal.write_entry(Entry(b"k", b"v"))
        assert wal.write_at == 7
    assert not path.exists()


def test_encode_decode_entry():
    entry = Entry(b"key", b"value", meta=2, user_meta=3, expires_at=99)
    assert Wal.decode_entry(Wal.encode_entry(entry)) == entry


def test_decode_entry_truncated():
    data = Wal.encode_entry(Entry(b"key", b"value"))
    with pytest.raises(LogReadError):
        Wal.decode_entry(data[:-1])


def test_write_at_offset_and_read(tmp_path, opts):
    wal = Wal.open(tmp_path / "1.vlog", opts)
    first = Wal.encode_entry(Entry(b"a", b"1"))
    second = Wal.encode_entry(Entry(b"bb", b"22"))
    wal.write_at_offset(0, first)
    wal.write_at_offset(len(first), second)
    assert wal.size == len(first) + len(second)
    got = wal.read(ValuePointer(file_id=1, len=len(second), offset=len(first)))
    assert Wal.decode_entry(got) == Entry(b"bb", b"22")
    wal.close()


def test_read_past_size(tmp_path, opts):
    wal = Wal.open(tmp_path / "1.vlog", opts)
    wal.write_at_offset(0, b"abc")
    with pytest.raises(LogReadError):
        wal.read(ValuePointer(len=4, offset=0))
    with pytest.raises(LogReadError):
        wal.read(ValuePointer(len=1, offset=10_000))
    wal.close()


def test_done_writing_truncates(tmp_path, opts):
    path = tmp_path / "1.vlog"
    wal = Wal.open(path, opts)
    wal.write_at_offset(0, b"x" * 100)
    wal.done_writing(100)
    assert path.stat().st_size == 100
    assert wal.size == 100
    wal.close_and_save()
    assert path.read_bytes() == b"x" * 100


def test_entry_reader_key_too_long():
    data = Header(key_len=(1 << 16) + 1).encode() + b"x" * 10
    with pytest.raises(LogReadError):
        EntryReader().entry(io.BytesIO(data))


def test_entry_reader_truncated_value():
    data = Header(key_len=3, value_len=3).encode() + b"abc"
    with pytest.raises(EOFError):
        EntryReader().entry(io.BytesIO(data))


def test_iterator_propagates_log_read_error():
    data = Header(key_len=(1 << 16) + 1).encode() + b"x" * 10
    with pytest.raises(LogReadError):
        list(WalIterator(io.BytesIO(data)))


def test_iterator_stops_at_zero_entry():
    data = Wal.encode_entry(Entry(b"a", b"b")) + bytes(MAX_HEADER_SIZE)
    assert list(WalIterator(io.BytesIO(data))) == [Entry(b"a", b"b")]


def test_skip_vlog():
    options = LogOptions(value_threshold=32)
    assert options.skip_vlog(Entry(b"k", b"v" * 31))
    assert not options.skip_vlog(Entry(b"k", b"v" * 32))