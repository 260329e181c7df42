"""Value log: append-only files that hold large values out of the LSM tree."""

from __future__ import annotations

import dataclasses
import os
import re
import threading
from pathlib import Path
from typing import Iterable

from .util import no_fail
from .value import VALUE_FIN_TXN, VALUE_TXN, Entry, Request, ValuePointer
from .wal import Header, LogOptions, Wal, WalError

_VLOG_SUFFIX = ".vlog"
_FID_PATTERN = re.compile(r"\+?[0-9]+")
_MAX_FID = 0xFFFFFFFF


class ValueLogError(WalError):
    """Raised when the value log cannot be opened, written or read."""


class InvalidFilenameError(ValueLogError):
    """Raised when the value directory holds a badly named or duplicated log."""


class VlogNotFoundError(ValueLogError):
    """Raised when a value pointer names a log file that does not exist."""

    def __init__(self, file_id: int) -> None:
        super().__init__(f"value log {file_id} not found")
        self.file_id = file_id


class InvalidLogOffsetError(ValueLogError):
    """Raised when a value pointer reaches past what has been written."""

    def __init__(self, offset: int, current: int) -> None:
        super().__init__(f"invalid log offset {offset}, current offset is {current}")
        self.offset = offset
        self.current = current


class InvalidValuePointerError(ValueLogError):
    """Raised when the bytes a value pointer refers to hold an incomplete entry."""

    def __init__(self, pointer: ValuePointer, kv_len: int, key_len: int, value_len: int) -> None:
        super().__init__(
            f"invalid value pointer {pointer}: {kv_len} bytes of key and value, "
            f"header needs {key_len + value_len}"
        )
        self.pointer = pointer
        self.kv_len = kv_len
        self.range = range(key_len, key_len + value_len)


def vlog_file_path(directory: str | os.PathLike[str], fid: int) -> Path:
    """Path of the value log file with the given ID."""
    return Path(directory) / f"{fid:06}{_VLOG_SUFFIX}"


def _parse_fid(filename: str) -> int:
    stem = filename[: -len(_VLOG_SUFFIX)]
    if not _FID_PATTERN.fullmatch(stem):
        raise InvalidFilenameError(f"failed to parse file ID {stem!r}")
    fid = int(stem)
    if fid > _MAX_FID:
        raise InvalidFilenameError(f"failed to parse file ID {stem!r}: too large")
    return fid


class ValueLog:
    """All value log files of a database.

    Writing is meant to happen from one thread at a time; reads may run
    concurrently with it.
    """

    def __init__(self, opts: LogOptions) -> None:
        self.opts = opts
        self.dir_path = Path(opts.value_dir)
        self._lock = threading.RLock()
        self._files: dict[int, Wal] = {}
        self._max_fid = 0
        self._files_to_delete: list[int] = []
        self._num_entries_written = 0
        self._write_offset = 0
        self._closed = False

    @classmethod
    def open(cls, opts: LogOptions) -> "ValueLog | None":
        """Open the value logs in ``opts.value_dir``; return None in in-memory mode."""
        if opts.in_memory:
            return None
        vlog = cls(opts)
        try:
            vlog._populate_files_map()
            vlog._create_vlog_file()
        except BaseException:
            vlog.close()
            raise
        return vlog

    def __enter__(self) -> "ValueLog":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def max_fid(self) -> int:
        """ID of the log currently written to."""
        with self._lock:
            return self._max_fid

    @property
    def writeable_offset(self) -> int:
        """Offset of the next write in the current log."""
        with self._lock:
            return self._write_offset

    def _populate_files_map(self) -> None:
        with os.scandir(self.dir_path) as entries:
            names = sorted(entry.name for entry in entries)
        with self._lock:
            for name in names:
                try:
                    name.encode("utf-8")
                except UnicodeEncodeError:
                    raise InvalidFilenameError(f"Unrecognized filename {name!r}") from None
                if not name.endswith(_VLOG_SUFFIX):
                    continue
                fid = _parse_fid(name)
                wal = Wal.open(self.dir_path / name, self.opts)
                if fid in self._files:
                    wal.close_and_save()
                    raise InvalidFilenameError(f"duplicated vlog found {fid}")
                self._files[fid] = wal
                self._max_fid = max(self._max_fid, fid)

    def _create_vlog_file(self) -> tuple[int, Wal]:
        with self._lock:
            fid = self._max_fid + 1
            wal = Wal.open(vlog_file_path(self.dir_path, fid), self.opts)
            if fid in self._files:
                wal.close_and_save()
                raise ValueLogError(f"value log {fid} already open")
            self._files[fid] = wal
            self._max_fid = fid
            self._write_offset = 0
            self._num_entries_written = 0
            return fid, wal

    def sorted_fids(self) -> list[int]:
        """IDs of all log files not scheduled for deletion, in ascending order."""
        with self._lock:
            to_delete = set(self._files_to_delete)
            fids = [fid for fid in self._files if fid not in to_delete]
        return sorted(fids)

    def write(self, requests: Iterable[Request]) -> None:
        """Write the entries of ``requests`` and fill in each request's pointers."""
        try:
            self._write_requests(list(requests))
        finally:
            if self.opts.sync_writes:
                with self._lock:
                    current = self._files[self._max_fid]
                current.sync()

    def _append(self, data: bytes, log: Wal) -> None:
        if not data:
            return
        with self._lock:
            start = self._write_offset
            self._write_offset = start + len(data)
            log.write_at_offset(start, data)

    def _to_disk(self, log: Wal) -> bool:
        """Finish the current log if it is full; tell whether a new one is needed."""
        with self._lock:
            if (
                self._write_offset > self.opts.value_log_file_size
                or self._num_entries_written > self.opts.value_log_max_entries
            ):
                log.done_writing(self._write_offset)
                return True
            return False

    def _encode(self, entry: Entry) -> bytes:
        stripped = dataclasses.replace(entry, meta=entry.meta & ~(VALUE_FIN_TXN | VALUE_TXN))
        return Wal.encode_entry(stripped)

    def _write_requests(self, requests: list[Request]) -> None:
        with self._lock:
            current_id = self._max_fid
            current_log = self._files[current_id]

        for request in requests:
            request.ptrs.clear()
            written = 0
            for entry in request.entries:
                if self.opts.skip_vlog(entry):
                    request.ptrs.append(ValuePointer())
                    continue
                data = self._encode(entry)
                request.ptrs.append(
                    ValuePointer(file_id=current_id, len=len(data), offset=self.writeable_offset)
                )
                self._append(data, current_log)
                written += 1

            if self._to_disk(current_log):
                current_id, current_log = self._create_vlog_file()

            with self._lock:
                self._num_entries_written += written

        if self._to_disk(current_log):
            self._create_vlog_file()

    def _get_file(self, pointer: ValuePointer) -> Wal:
        with self._lock:
            log = self._files.get(pointer.file_id)
            if log is None:
                raise VlogNotFoundError(pointer.file_id)
            if pointer.file_id == self._max_fid and pointer.offset >= self._write_offset:
                raise InvalidLogOffsetError(pointer.offset, self._write_offset)
            return log

    def read(self, pointer: ValuePointer) -> bytes:
        """Return the whole encoded entry a pointer refers to.

        Decode it with :meth:`Wal.decode_entry`.
        """
        log = self._get_file(pointer)
        with self._lock:
            data = log.read(pointer)
        header, used = Header.decode(data)
        kv_len = len(data) - used
        if kv_len < header.key_len + header.value_len:
            raise InvalidValuePointerError(pointer, kv_len, header.key_len, header.value_len)
        return data

    def close(self) -> None:
        """Close every log file, keeping the files on disk."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            files = list(self._files.values())
        for wal in files:
            no_fail(wal.close_and_save, "ValueLog::close")