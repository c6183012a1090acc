"""Per-type record readers and the registry that dispatches to them."""

from health_exporter.readers.base import RecordReader
from health_exporter.readers.registry import ReaderRegistry, default_registry

__all__ = ["RecordReader", "ReaderRegistry", "default_registry"]
