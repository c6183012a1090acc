"""Delivery sinks for export documents."""

from health_exporter.sinks.base import DeliverySink
from health_exporter.sinks.json_file import JSONFileSink
from health_exporter.sinks.sqlite import SQLiteSink


def get_sink(format_name: str, output_dir: str) -> DeliverySink:
    """Factory function to create a sink by format name."""
    from pathlib import Path

    out = Path(output_dir)
    match format_name:
        case "json":
            return JSONFileSink(output_dir=out)
        case "sqlite":
            return SQLiteSink(db_path=out / "health.db")
        case _:
            raise ValueError(f"Unknown sink format: {format_name!r}. Use 'json' or 'sqlite'.")


__all__ = ["DeliverySink", "JSONFileSink", "SQLiteSink", "get_sink"]
