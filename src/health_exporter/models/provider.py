"""
Provider-side data structures.

These mirror what the health data provider hands back: raw records, change
feed events and session aggregates. Readers turn ProviderRecord objects into
NormalizedRecord; nothing downstream of the readers sees these types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Union


def parse_instant(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 instant (``Z`` suffix allowed)."""
    if value is None or isinstance(value, datetime):
        return value
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass
class ProviderRecord:
    """A single record as returned by the provider."""

    record_id: str
    category: str
    source: str | None = None
    time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    zone_offset: str | None = None
    end_zone_offset: str | None = None
    client_record_id: str | None = None
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderRecord":
        """Build from the provider's wire representation."""
        metadata = data.get("metadata", {})
        return cls(
            record_id=data.get("record_id") or metadata["id"],
            category=data["category"],
            source=data.get("source") or metadata.get("data_origin"),
            time=parse_instant(data.get("time")),
            start_time=parse_instant(data.get("start_time")),
            end_time=parse_instant(data.get("end_time")),
            zone_offset=data.get("zone_offset") or data.get("start_zone_offset"),
            end_zone_offset=data.get("end_zone_offset"),
            client_record_id=data.get("client_record_id") or metadata.get("client_record_id"),
            values=data.get("values", {}),
        )


@dataclass
class AggregateMetrics:
    """Aggregates computed by the provider over a session's interval."""

    active_duration: timedelta | None = None
    total_steps: int | None = None
    distance_meters: float | None = None
    total_energy_kcal: float | None = None
    active_energy_kcal: float | None = None
    min_heart_rate: int | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "AggregateMetrics":
        seconds = data.get("active_duration_seconds")
        return cls(
            active_duration=timedelta(seconds=seconds) if seconds is not None else None,
            total_steps=data.get("total_steps"),
            distance_meters=data.get("distance_meters"),
            total_energy_kcal=data.get("total_energy_kcal"),
            active_energy_kcal=data.get("active_energy_kcal"),
            min_heart_rate=data.get("min_heart_rate"),
            avg_heart_rate=data.get("avg_heart_rate"),
            max_heart_rate=data.get("max_heart_rate"),
        )


@dataclass(frozen=True)
class Upsert:
    """A record was inserted or updated."""

    record: ProviderRecord


@dataclass(frozen=True)
class Deletion:
    """A record was deleted; only its id survives."""

    record_id: str


ChangeEvent = Union[Upsert, Deletion]


@dataclass
class ChangeBatch:
    """One page of the provider's change feed."""

    events: list[ChangeEvent] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False
    expired: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeBatch":
        events: list[ChangeEvent] = []
        for change in data.get("changes", []):
            kind = change.get("type", "").lower()
            if kind == "upsert":
                events.append(Upsert(ProviderRecord.from_dict(change["record"])))
            elif kind == "deletion":
                events.append(Deletion(change["record_id"]))
            else:
                raise ValueError(f"Unknown change type: {change.get('type')!r}")
        return cls(
            events=events,
            next_cursor=data.get("next_token"),
            has_more=bool(data.get("has_more", False)),
            expired=bool(data.get("token_expired", False)),
        )
