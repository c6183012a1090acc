"""
Export Document Model.

An ExportDocument is built once per invocation, handed to the delivery
sinks and then discarded. It is never persisted by the engine itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from health_exporter.models.record import NormalizedRecord, TrackedRecordType


class ExportKind(Enum):
    """Shape of an export document."""

    FULL = "FULL"
    DIFFERENTIAL = "DIFFERENTIAL"

    @property
    def file_tag(self) -> str:
        return "FULL" if self is ExportKind.FULL else "DIFF"


@dataclass(frozen=True)
class ExportDocument:
    """Immutable result of one export run."""

    kind: ExportKind
    generated_at: datetime
    sections: Mapping[TrackedRecordType, tuple[NormalizedRecord, ...]]
    deletions: tuple[str, ...] = ()
    cursor: str | None = field(default=None, compare=False)

    def __post_init__(self):
        frozen = MappingProxyType({t: tuple(records) for t, records in self.sections.items()})
        object.__setattr__(self, "sections", frozen)
        object.__setattr__(self, "deletions", tuple(self.deletions))
        if self.kind is ExportKind.FULL and self.deletions:
            raise ValueError("Full documents cannot carry deletions")

    @property
    def record_types(self) -> list[TrackedRecordType]:
        return list(self.sections.keys())

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.sections.values())

    def counts(self) -> dict[str, int]:
        """Per-type record counts keyed by partition name."""
        return {t.value: len(records) for t, records in self.sections.items()}

    @property
    def is_empty(self) -> bool:
        return self.total_records == 0 and not self.deletions
