"""Write-ahead log files, also used as value log files."""

from __future__ import annotations

import io
import mmap
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from .util import sync_dir
from .value import DecodeError, Entry, ValuePointer, decode_varint, encode_varint, varint_len

MAX_HEADER_SIZE = 21
MAX_KEY_SIZE = 1 << 16
# Largest possible encoded header: two meta bytes, two u32 varints and one u64 varint.
_HEADER_READ_LIMIT = 2 + 5 + 5 + 10


class WalError(Exception):
    """Raised when a log file cannot be written or read."""


class LogReadError(WalError):
    """Raised when reading from a log fails."""


class VarDecodeError(DecodeError):
    """Raised when a header is too short to decode."""


@dataclass
class LogOptions:
    """Options that govern log files."""

    value_dir: Path = field(default_factory=lambda: Path("."))
    value_log_file_size: int = (1 << 30) - 1
    value_log_max_entries: int = 1_000_000
    value_threshold: int = 1 << 10
    sync_writes: bool = False
    in_memory: bool = False

    def skip_vlog(self, entry: Entry) -> bool:
        """Tell whether an entry's value is small enough to stay out of the value log."""
        return len(entry.value) < self.value_threshold


@dataclass
class Header:
    """Metadata that precedes every entry in a log."""

    key_len: int = 0
    value_len: int = 0
    expires_at: int = 0
    meta: int = 0
    user_meta: int = 0

    def encoded_len(self) -> int:
        return (
            2
            + varint_len(self.expires_at)
            + varint_len(self.key_len)
            + varint_len(self.value_len)
        )

    def encode(self) -> bytes:
        """Encode as meta, user_meta, then varint key length, value length and expiry."""
        return (
            bytes((self.meta, self.user_meta))
            + encode_varint(self.key_len)
            + encode_varint(self.value_len)
            + encode_varint(self.expires_at)
        )

    @classmethod
    def decode(cls, data: bytes) -> tuple["Header", int]:
        """Decode a header; return it and the number of bytes it took."""
        if len(data) <= 2:
            raise VarDecodeError("should be at least 2 bytes")
        key_len, pos = decode_varint(data, 2)
        value_len, pos = decode_varint(data, pos)
        expires_at, pos = decode_varint(data, pos)
        header = cls(
            key_len=key_len & 0xFFFFFFFF,
            value_len=value_len & 0xFFFFFFFF,
            expires_at=expires_at,
            meta=data[0],
            user_meta=data[1],
        )
        return header, pos


def _read_exact(stream: BinaryIO, n: int) -> bytes:
    data = stream.read(n)
    if len(data) < n:
        raise EOFError("unexpected end of entry")
    return data


class EntryReader:
    """Reads one entry at a time from a binary stream."""

    def entry(self, stream: BinaryIO) -> Entry:
        start = stream.tell()
        header, used = Header.decode(stream.read(_HEADER_READ_LIMIT))
        stream.seek(start + used)
        if header.key_len > MAX_KEY_SIZE:
            raise LogReadError("key length must not be larger than 1 << 16")
        key = _read_exact(stream, header.key_len)
        value = _read_exact(stream, header.value_len)
        return Entry(
            key=key,
            value=value,
            meta=header.meta,
            user_meta=header.user_meta,
            expires_at=header.expires_at,
            version=0,
        )


class WalIterator:
    """Iterates entries until the first zero or corrupted one."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._reader = EntryReader()

    def __iter__(self) -> "WalIterator":
        return self

    def __next__(self) -> Entry:
        try:
            entry = self._reader.entry(self._stream)
        except (DecodeError, EOFError):
            raise StopIteration from None
        if entry.is_zero():
            raise StopIteration
        return entry


class Wal:
    """A memory-mapped log of entries.

    Closing the log deletes its file unless it was closed with
    :meth:`close_and_save`.
    """

    def __init__(self, path: Path, handle: BinaryIO, opts: LogOptions) -> None:
        self.path = path
        self.opts = opts
        self._file = handle
        self._map: mmap.mmap | None = None
        self._remap()
        self.size = len(self._map) if self._map is not None else 0
        self.write_at = 0
        self._save_after_close = False
        self._closed = False

    @classmethod
    def open(cls, path: str | os.PathLike[str], opts: LogOptions) -> "Wal":
        """Open an existing log, or create one sized to twice the log file size."""
        path = Path(path)
        if path.exists():
            return cls(path, io.open(path, "r+b"), opts)
        handle = io.open(path, "x+b")
        try:
            handle.truncate(2 * opts.value_log_file_size)
            handle.flush()
            os.fsync(handle.fileno())
            sync_dir(path.parent)
            wal = cls(path, handle, opts)
        except BaseException:
            handle.close()
            raise
        wal.zero_next_entry()
        return wal

    def __enter__(self) -> "Wal":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _remap(self) -> None:
        if self._map is not None:
            self._map.close()
            self._map = None
        length = os.fstat(self._file.fileno()).st_size
        if length:
            self._map = mmap.mmap(self._file.fileno(), length)

    def _require_room(self, end: int) -> mmap.mmap:
        if self._map is None or end > len(self._map):
            raise WalError("write past the end of the log")
        return self._map

    def write_entry(self, entry: Entry) -> None:
        data = self.encode_entry(entry)
        end = self.write_at + len(data)
        self._require_room(end)[self.write_at:end] = data
        self.write_at = end
        self.zero_next_entry()

    def sync(self) -> None:
        if self._map is not None:
            self._map.flush()

    def zero_next_entry(self) -> None:
        end = self.write_at + MAX_HEADER_SIZE
        self._require_room(end)[self.write_at:end] = bytes(MAX_HEADER_SIZE)

    @staticmethod
    def encode_entry(entry: Entry) -> bytes:
        """Encode an entry as its header followed by key and value."""
        header = Header(
            key_len=len(entry.key),
            value_len=len(entry.value),
            expires_at=entry.expires_at,
            meta=entry.meta,
            user_meta=entry.user_meta,
        )
        return header.encode() + bytes(entry.key) + bytes(entry.value)

    @staticmethod
    def decode_entry(data: bytes) -> Entry:
        header, pos = Header.decode(data)
        key_end = pos + header.key_len
        value_end = key_end + header.value_len
        if len(data) < value_end:
            raise LogReadError("entry is shorter than its header says")
        return Entry(
            key=bytes(data[pos:key_end]),
            value=bytes(data[key_end:value_end]),
            meta=header.meta,
            user_meta=header.user_meta,
            expires_at=header.expires_at,
            version=0,
        )

    def read(self, pointer: ValuePointer) -> bytes:
        """Return the bytes a value pointer refers to."""
        mapped = len(self._map) if self._map is not None else 0
        end = pointer.offset + pointer.len
        if pointer.offset >= mapped or end > mapped or end > self.size:
            raise LogReadError("EOF")
        return self._map[pointer.offset:end]

    def truncate(self, end: int) -> None:
        if os.fstat(self._file.fileno()).st_size == end:
            return
        self.size = end
        self.set_len(end)
        os.fsync(self._file.fileno())

    def done_writing(self, offset: int) -> None:
        if self.opts.sync_writes:
            self.sync()
            os.fsync(self._file.fileno())
        self.truncate(offset)

    def iter(self) -> WalIterator:
        view = self._map[: self.size] if self._map is not None else b""
        return WalIterator(io.BytesIO(view))

    def should_flush(self) -> bool:
        return self.write_at > self.opts.value_log_file_size

    def set_len(self, length: int) -> None:
        """Resize the underlying file and remap it."""
        if self._map is not None:
            self._map.close()
            self._map = None
        self._file.truncate(length)
        self._remap()

    def write_at_offset(self, offset: int, data: bytes) -> None:
        """Copy ``data`` to ``offset``, growing the file as needed; the log size becomes its end."""
        if not data:
            return
        end = offset + len(data)
        if end >= self.size:
            self.set_len(end)
        self._require_room(end)[offset:end] = data
        self.size = end

    def close_and_save(self) -> None:
        """Close the log and keep its file."""
        self._save_after_close = True
        self.close()

    def close(self) -> None:
        """Close the log, deleting its file unless it is to be saved."""
        if self._closed:
            return
        self._closed = True
        if self._map is not None:
            self._map.close()
            self._map = None
        if self._save_after_close:
            self._file.close()
            return
        self._file.truncate(0)
        self._file.close()
        os.remove(self.path)