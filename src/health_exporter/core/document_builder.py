"""
Document Builder.

Pure functions turning normalized records into an ExportDocument and an
ExportDocument into its JSON form. Nothing else in the package serializes
documents.

Output shape::

    {
      "export_type": "FULL" | "DIFFERENTIAL",
      "timestamp": "...",
      "data_source": "...",
      "weight_records": {"count": 3, "data": [...]},      # FULL
      "weight_changes": {"count": 1, "data": [...]},      # DIFFERENTIAL
      "deletions": {"count": 1, "record_ids": [...]}      # DIFFERENTIAL only
    }
"""

import json
from datetime import datetime, timezone
from typing import Iterable, Mapping

from health_exporter.models.document import ExportDocument, ExportKind
from health_exporter.models.record import CHANGE_TYPE_UPSERT, NormalizedRecord, TrackedRecordType

DATA_SOURCES = {
    ExportKind.FULL: "Health provider - All Sources",
    ExportKind.DIFFERENTIAL: "Health provider - Changes Only",
}


def _sections(
    per_type: Mapping[TrackedRecordType, Iterable[NormalizedRecord]],
    types: Iterable[TrackedRecordType],
) -> dict[TrackedRecordType, tuple[NormalizedRecord, ...]]:
    types = list(types)
    unknown = set(per_type) - set(types)
    if unknown:
        names = ", ".join(sorted(t.value for t in unknown))
        raise ValueError(f"Records supplied for untracked types: {names}")

    sections = {}
    for record_type in types:
        records = tuple(per_type.get(record_type, ()))
        for record in records:
            if record.record_type is not record_type:
                raise ValueError(
                    f"{record.record_type.value} record {record.record_id} filed under {record_type.value}"
                )
        sections[record_type] = records
    return sections


def build_full(
    per_type: Mapping[TrackedRecordType, Iterable[NormalizedRecord]],
    cursor: str | None,
    types: Iterable[TrackedRecordType],
    generated_at: datetime | None = None,
) -> ExportDocument:
    """FULL document with one section per tracked type, empty or not."""
    return ExportDocument(
        kind=ExportKind.FULL,
        generated_at=generated_at or datetime.now(timezone.utc),
        sections=_sections(per_type, types),
        cursor=cursor,
    )


def build_differential(
    per_type_upserts: Mapping[TrackedRecordType, Iterable[NormalizedRecord]],
    deletions: Iterable[str],
    cursor: str | None,
    types: Iterable[TrackedRecordType],
    generated_at: datetime | None = None,
) -> ExportDocument:
    """DIFFERENTIAL document: upserts per type plus the deleted record ids."""
    return ExportDocument(
        kind=ExportKind.DIFFERENTIAL,
        generated_at=generated_at or datetime.now(timezone.utc),
        sections=_sections(per_type_upserts, types),
        deletions=tuple(deletions),
        cursor=cursor,
    )


def to_payload(document: ExportDocument) -> dict:
    """Plain-dict form of a document, ready for ``json.dumps``."""
    payload: dict = {
        "export_type": document.kind.value,
        "timestamp": document.generated_at.isoformat(),
        "data_source": DATA_SOURCES[document.kind],
    }

    differential = document.kind is ExportKind.DIFFERENTIAL
    for record_type, records in document.sections.items():
        data = []
        for record in records:
            entry = record.to_dict()
            if differential:
                entry["change_type"] = CHANGE_TYPE_UPSERT
            data.append(entry)
        key = record_type.changes_key if differential else record_type.records_key
        payload[key] = {"count": len(data), "data": data}

    if differential:
        payload["deletions"] = {"count": len(document.deletions), "record_ids": list(document.deletions)}
    return payload


def render_json(document: ExportDocument, indent: int | None = 2) -> str:
    return json.dumps(to_payload(document), indent=indent, ensure_ascii=False)


def validate_payload(payload: dict) -> None:
    """
    Check a parsed document the way a consumer should before applying it.

    Raises ValueError when the export type is unknown or any section's
    ``count`` disagrees with its contents.
    """
    try:
        kind = ExportKind(payload.get("export_type"))
    except ValueError:
        raise ValueError(f"Unknown export_type: {payload.get('export_type')!r}") from None

    suffix = "_changes" if kind is ExportKind.DIFFERENTIAL else "_records"
    for key, section in payload.items():
        if not key.endswith(suffix):
            continue
        if not isinstance(section, dict) or "count" not in section or "data" not in section:
            raise ValueError(f"Section {key} is malformed")
        if section["count"] != len(section["data"]):
            raise ValueError(f"Section {key}: count {section['count']} != {len(section['data'])} entries")

    if kind is ExportKind.DIFFERENTIAL:
        deletions = payload.get("deletions")
        if not isinstance(deletions, dict) or deletions.get("count") != len(deletions.get("record_ids", [])):
            raise ValueError("Deletions section is missing or inconsistent")
    elif "deletions" in payload:
        raise ValueError("FULL documents cannot carry deletions")
