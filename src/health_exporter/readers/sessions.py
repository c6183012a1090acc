"""
Session readers.

Exercise sessions are the only records that need a second provider lookup:
their steps, distance, energy and heart rate live in aggregates computed
over the session interval. Sleep sessions carry their stages inline.
"""

import logging
from datetime import timedelta

from health_exporter.core.errors import NormalizationError
from health_exporter.models.provider import AggregateMetrics, ProviderRecord, parse_instant
from health_exporter.models.record import NormalizedRecord, TrackedRecordType
from health_exporter.readers.base import RecordReader, format_instant

logger = logging.getLogger(__name__)

SLEEP_STAGE_NAMES = {
    1: "Awake",
    2: "Sleeping",
    3: "Out of bed",
    4: "Light sleep",
    5: "Deep sleep",
    6: "REM sleep",
}


def sleep_stage_name(stage: int) -> str:
    return SLEEP_STAGE_NAMES.get(stage, f"Unknown ({stage})")


def _minutes(delta: timedelta | None) -> int | None:
    if delta is None:
        return None
    return int(delta.total_seconds() // 60)


class ExerciseSessionReader(RecordReader):
    """Exercise sessions enriched with their aggregate metrics."""

    record_type = TrackedRecordType.EXERCISE_SESSION

    def __init__(self, min_duration_minutes: float = 2, allowed_sources: frozenset[str] | None = None):
        super().__init__(allowed_sources)
        self.min_duration = timedelta(minutes=min_duration_minutes)

    def accepts(self, record: ProviderRecord) -> bool:
        if not super().accepts(record):
            return False
        duration = record.duration
        # Missing interval is left for normalize() to reject.
        if duration is not None and duration < self.min_duration:
            logger.debug(f"Dropping short exercise session {record.record_id} ({duration})")
            return False
        return True

    async def enrich(self, provider, record):
        return await provider.enrich(record.record_id)

    def normalize(self, record: ProviderRecord, metrics: AggregateMetrics | None = None) -> NormalizedRecord:
        values = record.values
        metrics = metrics or AggregateMetrics()
        duration = metrics.active_duration or record.duration

        return self.interval(record, {
            "title": values.get("title") or "Exercise Session",
            "notes": values.get("notes"),
            "exercise_type": values.get("exercise_type"),
            "start_zone_offset": record.zone_offset,
            "end_zone_offset": record.end_zone_offset,
            "duration_minutes": _minutes(duration),
            "total_steps": metrics.total_steps,
            "distance_meters": metrics.distance_meters,
            "calories_burned": metrics.total_energy_kcal,
            "active_calories": metrics.active_energy_kcal,
            "avg_heart_rate": metrics.avg_heart_rate,
            "min_heart_rate": metrics.min_heart_rate,
            "max_heart_rate": metrics.max_heart_rate,
        })


class SleepSessionReader(RecordReader):
    """Sleep sessions with named stages."""

    record_type = TrackedRecordType.SLEEP_SESSION

    def _stage(self, record: ProviderRecord, raw: dict) -> dict:
        try:
            stage = int(raw["stage"])
            start = parse_instant(raw["start_time"])
            end = parse_instant(raw["end_time"])
        except (KeyError, TypeError, ValueError) as e:
            raise NormalizationError(f"Bad sleep stage in {record.record_id}: {e}") from e
        return {
            "stage_type": stage,
            "stage_name": sleep_stage_name(stage),
            "start_time": format_instant(start, record.zone_offset),
            "end_time": format_instant(end, record.end_zone_offset or record.zone_offset),
        }

    def normalize(self, record, metrics=None):
        values = record.values
        stages = [self._stage(record, raw) for raw in values.get("stages") or []]

        return self.interval(record, {
            "title": values.get("title") or "Sleep Session",
            "notes": values.get("notes"),
            "start_zone_offset": record.zone_offset,
            "end_zone_offset": record.end_zone_offset,
            "duration_minutes": _minutes(record.duration),
            "stages_count": len(stages),
            "stages": stages,
        })
