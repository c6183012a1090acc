"""
Health Exporter - incremental export engine for time-series health records.

Reads many record types from a permissioned health data provider and
produces full or differential JSON documents, tracking progress with the
provider's change cursor.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "ExportOrchestrator":
        from health_exporter.core.orchestrator import ExportOrchestrator

        return ExportOrchestrator
    if name == "TrackedRecordType":
        from health_exporter.models.record import TrackedRecordType

        return TrackedRecordType
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["ExportOrchestrator", "TrackedRecordType", "__version__"]
