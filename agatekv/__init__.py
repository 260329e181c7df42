"""Write-ahead log, value log, watermark and merge iterator for an LSM key-value store."""

__version__ = "0.1.0"
__all__ = ["util", "value", "wal", "value_log", "watermark", "merge_iterator"]