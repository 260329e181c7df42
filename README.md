# agatekv

Storage building blocks for an LSM-tree key-value store. It is pure Python
and has no third-party dependencies.

## Modules

- `agatekv.util` holds the key and support helpers:
  - `user_key` strips the 8-byte version suffix from a key.
  - `compare_keys` orders keys by user key first, then by suffix.
  - `same_key` tells whether two keys have the same length and user key.
  - `bytes_diff` returns the part of a key after its common prefix with a base key.
  - `search` is a binary search over `[0, n)`.
  - `has_any_prefixes`, `unix_time` (milliseconds), `sync_dir` and `default_hash`
    (a stable 64-bit hash) are small utilities.
  - `no_fail` runs a callable, logs any error and records it. `panic_if_fail`
    raises `RuntimeError` if any recorded call failed.
- `agatekv.value` holds the records and the encoding they use:
  - `Value`, `ValuePointer`, `Entry` and `Request`.
  - The LEB128 varint helpers `encode_varint`, `decode_varint` and `varint_len`.
  - The meta flags `VALUE_DELETE`, `VALUE_POINTER`, `VALUE_TXN`, `VALUE_FIN_TXN`
    and others.
  - Malformed input raises `DecodeError`.
- `agatekv.wal` is the write-ahead log:
  - `Wal.open` opens an existing file or creates one of twice
    `LogOptions.value_log_file_size`.
  - `write_entry` appends an entry to the memory-mapped file.
  - `iter()` returns a `WalIterator`. It yields entries until the first zeroed,
    truncated or undecodable one.
  - `Wal.close()` deletes the file. `close_and_save()` keeps it.
  - `Header` is the entry header: meta, user meta, then varint key length, value
    length and expiry.
  - `LogOptions.skip_vlog` keeps values shorter than `value_threshold` out of the
    value log.
- `agatekv.value_log` is the value log:
  - `ValueLog.open` loads the numbered `NNNNNN.vlog` files in
    `LogOptions.value_dir` and starts a new one. It returns `None` when
    `in_memory` is set.
  - `write` fills in each `Request.ptrs` and rolls over to a new file once the
    size or entry limit is passed.
  - `read` returns the encoded entry a `ValuePointer` refers to.
  - `close` keeps all files on disk.
- `agatekv.watermark` provides `WaterMark`, which tracks the highest index below
  which every begun index is done:
  - Marks are processed by a background thread. Start it with `init()` and stop
    it with `close()`, or use the object as a context manager.
  - `begin`, `begin_many`, `done` and `done_many` record marks.
  - `done_until` and `last_index` report progress.
  - `wait_for_mark` blocks until an index is done.
- `agatekv.merge_iterator` provides `MergeIterator.from_iterators`:
  - It merges any number of sorted `KeyIterator`s into one, forward or reverse.
  - When several iterators hold an identical key, the entry from the earliest
    iterator is kept.

## Installation

```
pip install .
```

## Examples

Write a log and read it back:

```python
from pathlib import Path
from agatekv.value import Entry
from agatekv.wal import LogOptions, Wal

opts = LogOptions(value_log_file_size=4096)
path = Path("1.wal")

wal = Wal.open(path, opts)
for i in range(3):
    wal.write_entry(Entry(key=str(i).encode(), value=str(i).encode()))
wal.close_and_save()

wal = Wal.open(path, opts)
for entry in wal.iter():
    print(entry.key, entry.value)
wal.close_and_save()
```

Store values in the value log:

```python
from agatekv.value import Entry, Request
from agatekv.value_log import ValueLog
from agatekv.wal import LogOptions, Wal

opts = LogOptions(value_dir="data", value_threshold=32, value_log_file_size=1024)
with ValueLog.open(opts) as vlog:
    request = Request(entries=[Entry(key=b"key", value=b"v" * 40)])
    vlog.write([request])
    entry = Wal.decode_entry(vlog.read(request.ptrs[0]))
```

Track finished work with a watermark:

```python
from agatekv.watermark import WaterMark

with WaterMark("commits") as mark:
    mark.begin_many([1, 2, 3])
    mark.done_many([1, 2, 3])
    mark.wait_for_mark(3)
    assert mark.done_until() == 3
```

## What it does not do

These are components only. There is no database object to open, and nothing
to get or put keys by. The package does not provide:

- sorted table files or memtables;
- transactions;
- compaction;
- garbage collection of value log files;
- checksums or encryption of log entries.

`KeyIterator` is the interface that other iterators would implement to take
part in a merge. The only implementation shipped here is `MergeIterator`.

## Running the tests

```
pip install .[test]
pytest
```