"""Interval readers: activity totals and heart rate series."""

from health_exporter.core.errors import NormalizationError
from health_exporter.models.record import TrackedRecordType
from health_exporter.readers import units
from health_exporter.readers.base import RecordReader


class StepsReader(RecordReader):
    record_type = TrackedRecordType.STEPS

    def normalize(self, record, metrics=None):
        return self.interval(record, {"count": units.count(record.values.get("count"))})


class DistanceReader(RecordReader):
    record_type = TrackedRecordType.DISTANCE

    def normalize(self, record, metrics=None):
        return self.interval(record, {"distance_meters": units.length_m(record.values.get("distance"))})


class TotalCaloriesReader(RecordReader):
    record_type = TrackedRecordType.TOTAL_CALORIES

    def normalize(self, record, metrics=None):
        return self.interval(record, {"energy_kcal": units.energy_kcal(record.values.get("energy"))})


class HeartRateReader(RecordReader):
    """
    Heart rate series, summarised rather than exported sample by sample.

    The average is truncated to a whole bpm; all summary values are None for
    a series without samples.
    """

    record_type = TrackedRecordType.HEART_RATE

    def normalize(self, record, metrics=None):
        samples = record.values.get("samples") or []
        try:
            bpms = [int(s["bpm"]) if isinstance(s, dict) else int(s) for s in samples]
        except (KeyError, TypeError, ValueError) as e:
            raise NormalizationError(f"Bad heart rate sample in {record.record_id}: {e}") from e

        return self.interval(record, {
            "samples_count": len(bpms),
            "avg_bpm": int(sum(bpms) / len(bpms)) if bpms else None,
            "min_bpm": min(bpms) if bpms else None,
            "max_bpm": max(bpms) if bpms else None,
        })
