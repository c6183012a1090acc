"""
DeliverySink Protocol - base interface for document destinations.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from health_exporter.models.document import ExportDocument


@runtime_checkable
class DeliverySink(Protocol):
    """
    Protocol that all delivery sinks must implement.

    ``deliver`` returns only once the document is durably handed off; any
    failure must raise, since the orchestrator advances the cursor only
    after every sink returned.
    """

    name: str

    async def deliver(self, document: ExportDocument) -> None:
        """Persist or transmit one export document."""
        ...

    async def close(self) -> None:
        """Release resources. Called once when the process is done exporting."""
        ...
