"""
Normalized Record Model: the uniform shape every reader produces.

Provider records of all categories are flattened into a NormalizedRecord
before they reach the document builder. Values are restricted to the
FieldValue variants so that every record is JSON-representable by
construction.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

FieldValue = Union[str, int, float, bool, None, list["FieldValue"], dict[str, "FieldValue"]]

CHANGE_TYPE_UPSERT = "UPSERT"


class TrackedRecordType(Enum):
    """Record categories exported by the engine.

    The value is the stable partition name used as the document key
    (``<value>_records`` / ``<value>_changes``).
    """

    WEIGHT = "weight"
    HEIGHT = "height"
    BODY_FAT = "body_fat"
    LEAN_BODY_MASS = "lean_body_mass"
    BONE_MASS = "bone_mass"
    BODY_WATER_MASS = "body_water_mass"
    BASAL_METABOLIC_RATE = "basal_metabolic_rate"
    VO2MAX = "vo2max"
    RESTING_HEART_RATE = "resting_heart_rate"
    OXYGEN_SATURATION = "oxygen_saturation"
    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_GLUCOSE = "blood_glucose"
    STEPS = "steps"
    DISTANCE = "distance"
    TOTAL_CALORIES = "total_calories"
    HEART_RATE = "heart_rate"
    EXERCISE_SESSION = "exercise_session"
    SLEEP_SESSION = "sleep_session"
    NUTRITION = "nutrition"

    @property
    def records_key(self) -> str:
        return f"{self.value}_records"

    @property
    def changes_key(self) -> str:
        return f"{self.value}_changes"

    @classmethod
    def from_category(cls, category: str) -> "TrackedRecordType | None":
        """Map a provider category name to a tracked type, or None if untracked."""
        try:
            return cls(category)
        except ValueError:
            return None


def check_field_value(value, path: str = "value") -> None:
    """Raise TypeError unless ``value`` is a valid FieldValue."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for i, item in enumerate(value):
            check_field_value(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path}: mapping keys must be str, got {type(key).__name__}")
            check_field_value(item, f"{path}.{key}")
        return
    raise TypeError(f"{path}: unsupported field type {type(value).__name__}")


@dataclass(frozen=True)
class NormalizedRecord:
    """
    A provider record flattened into the export shape.

    Instant records carry ``timestamp``; interval and session records carry
    ``start_time``/``end_time``. ``record_id`` is the provider's stable id
    and the join key between a full export and later changes.
    """

    record_type: TrackedRecordType
    record_id: str
    source: str | None = None
    timestamp: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    fields: dict[str, FieldValue] = field(default_factory=dict)
    client_record_id: str | None = None

    def __post_init__(self):
        if not self.record_id:
            raise ValueError(f"{self.record_type.value} record without record_id")
        if self.timestamp is None and self.start_time is None:
            raise ValueError(f"{self.record_type.value} record {self.record_id} has no temporal anchor")
        check_field_value(self.fields, "fields")

    def to_dict(self) -> dict[str, FieldValue]:
        """Serialize to the flat field map written into export documents."""
        data: dict[str, FieldValue] = {"record_id": self.record_id}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        else:
            data["start_time"] = self.start_time
            data["end_time"] = self.end_time
        data.update(self.fields)
        data["source"] = self.source
        data["client_record_id"] = self.client_record_id
        return data

    @classmethod
    def from_dict(cls, record_type: TrackedRecordType, data: dict) -> "NormalizedRecord":
        """Deserialize from a document data entry."""
        reserved = {"record_id", "timestamp", "start_time", "end_time", "source", "client_record_id", "change_type"}
        return cls(
            record_type=record_type,
            record_id=data["record_id"],
            source=data.get("source"),
            timestamp=data.get("timestamp"),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            fields={k: v for k, v in data.items() if k not in reserved},
            client_record_id=data.get("client_record_id"),
        )
