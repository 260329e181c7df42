"""Values, value pointers, entries and the varint encoding they use."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Callable, Optional

VALUE_DELETE = 1 << 0
VALUE_POINTER = 1 << 1
VALUE_DISCARD_EARLIER_VERSIONS = 1 << 2
VALUE_MERGE_ENTRY = 1 << 3
VALUE_TXN = 1 << 6
VALUE_FIN_TXN = 1 << 7

_MAX_VARINT_BYTES = 10
_U64_LIMIT = 1 << 64


class DecodeError(ValueError):
    """Raised when encoded bytes cannot be decoded."""


def encode_varint(n: int) -> bytes:
    """Encode a non-negative integer below 2**64 as a LEB128 varint."""
    if n < 0 or n >= _U64_LIMIT:
        raise ValueError(f"varint out of range: {n}")
    out = bytearray()
    while n >= 0x80:
        out.append((n & 0x7F) | 0x80)
        n >>= 7
    out.append(n)
    return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode a varint starting at ``pos``; return the value and the next position."""
    result = 0
    for i in range(_MAX_VARINT_BYTES):
        if pos + i >= len(data):
            raise DecodeError("invalid varint")
        byte = data[pos + i]
        if i == _MAX_VARINT_BYTES - 1 and byte > 1:
            raise DecodeError("invalid varint")
        result |= (byte & 0x7F) << (7 * i)
        if byte < 0x80:
            return result, pos + i + 1
    raise DecodeError("invalid varint")


def varint_len(n: int) -> int:
    """Number of bytes :func:`encode_varint` produces for ``n``."""
    return max(1, (n.bit_length() + 6) // 7)


@dataclass
class Value:
    """A value as stored in a table: metadata, expiry and payload."""

    value: bytes = b""
    meta: int = 0
    user_meta: int = 0
    expires_at: int = 0
    version: int = 0

    def encoded_size(self) -> int:
        return 2 + varint_len(self.expires_at) + len(self.value)

    def encode(self) -> bytes:
        return (
            bytes((self.meta, self.user_meta))
            + encode_varint(self.expires_at)
            + bytes(self.value)
        )

    @classmethod
    def decode(cls, data: bytes) -> "Value":
        if len(data) < 2:
            raise DecodeError("value must be at least 2 bytes")
        expires_at, pos = decode_varint(data, 2)
        return cls(
            value=bytes(data[pos:]),
            meta=data[0],
            user_meta=data[1],
            expires_at=expires_at,
        )


_POINTER = struct.Struct("<III")


@dataclass
class ValuePointer:
    """Position of a value inside a value log file."""

    file_id: int = 0
    len: int = 0
    offset: int = 0

    def encode(self) -> bytes:
        return _POINTER.pack(self.file_id, self.len, self.offset)

    @classmethod
    def decode(cls, data: bytes) -> "ValuePointer":
        if len(data) < _POINTER.size:
            raise DecodeError("value pointer must be 12 bytes")
        file_id, length, offset = _POINTER.unpack_from(data)
        return cls(file_id=file_id, len=length, offset=offset)

    @staticmethod
    def encoded_size() -> int:
        return _POINTER.size


@dataclass
class Entry:
    """A key-value pair with its metadata."""

    key: bytes = b""
    value: bytes = b""
    meta: int = 0
    user_meta: int = 0
    expires_at: int = 0
    version: int = 0

    def is_zero(self) -> bool:
        """Tell whether the entry is all zero, which marks the end of a log."""
        return (
            not self.key
            and not self.value
            and self.meta == 0
            and self.user_meta == 0
            and self.expires_at == 0
        )


@dataclass
class Request:
    """A batch of entries to write, with the pointers filled in once written."""

    entries: list[Entry] = field(default_factory=list)
    ptrs: list[ValuePointer] = field(default_factory=list)
    done: Optional[Callable[[Optional[BaseException]], None]] = None