"""
Reader Registry: TrackedRecordType → RecordReader dispatch.

The orchestrator never names a concrete type: it iterates ``list_types()``
and calls ``read_all()``. A failing reader is isolated here and turns into
an empty result for its type.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from health_exporter.core.errors import PermissionDeniedError, ReadFailure
from health_exporter.models.provider import AggregateMetrics, ProviderRecord
from health_exporter.models.record import NormalizedRecord, TrackedRecordType
from health_exporter.readers.base import RecordReader
from health_exporter.readers.intervals import DistanceReader, HeartRateReader, StepsReader, TotalCaloriesReader
from health_exporter.readers.measurements import (
    BasalMetabolicRateReader,
    BloodGlucoseReader,
    BloodPressureReader,
    BodyFatReader,
    BodyWaterMassReader,
    BoneMassReader,
    HeightReader,
    LeanBodyMassReader,
    OxygenSaturationReader,
    RestingHeartRateReader,
    Vo2MaxReader,
    WeightReader,
)
from health_exporter.readers.nutrition import NutritionReader
from health_exporter.readers.sessions import ExerciseSessionReader, SleepSessionReader

if TYPE_CHECKING:
    from health_exporter.config import Settings
    from health_exporter.provider.base import HealthProvider

logger = logging.getLogger(__name__)


class ReaderRegistry:
    """Holds exactly one reader per tracked type, in registration order."""

    def __init__(self, provider: HealthProvider):
        self.provider = provider
        self._readers: dict[TrackedRecordType, RecordReader] = {}
        self.failures: dict[TrackedRecordType, ReadFailure] = {}

    def register(self, reader: RecordReader) -> None:
        if reader.record_type in self._readers:
            raise ValueError(f"Reader already registered for {reader.record_type.value}")
        self._readers[reader.record_type] = reader

    def list_types(self) -> list[TrackedRecordType]:
        return list(self._readers)

    def get(self, record_type: TrackedRecordType) -> RecordReader:
        try:
            return self._readers[record_type]
        except KeyError:
            raise KeyError(f"No reader registered for {record_type.value}") from None

    def resolve(self, category: str) -> RecordReader | None:
        """Reader for a provider category name, or None when the category is not tracked."""
        record_type = TrackedRecordType.from_category(category)
        if record_type is None:
            return None
        return self._readers.get(record_type)

    async def read_all(self, record_type: TrackedRecordType, start: datetime, end: datetime) -> list[NormalizedRecord]:
        """
        Read and normalize every record of one type in ``[start, end)``.

        Never raises for provider or mapping failures: the type yields an
        empty list and the failure is kept in ``self.failures``. A permission
        refusal is the exception, since it invalidates the whole run.
        """
        reader = self.get(record_type)
        try:
            records = await reader.read_all(self.provider, start, end)
        except PermissionDeniedError:
            raise
        except Exception as e:
            failure = ReadFailure(record_type.value, e)
            self.failures[record_type] = failure
            logger.error(str(failure))
            return []

        self.failures.pop(record_type, None)
        logger.info(f"[{record_type.value}] {len(records)} records")
        return records

    def normalize(
        self, record_type: TrackedRecordType, record: ProviderRecord, metrics: AggregateMetrics | None = None
    ) -> NormalizedRecord:
        return self.get(record_type).normalize(record, metrics)

    async def normalize_change(self, record: ProviderRecord) -> NormalizedRecord | None:
        """
        Turn an upserted provider record into a NormalizedRecord.

        Returns None when the category is untracked or the reader's
        pre-filter rejects the record. Raises NormalizationError for a
        malformed record.
        """
        reader = self.resolve(record.category)
        if reader is None:
            return None
        return await reader.prepare(self.provider, record)


def default_registry(provider: HealthProvider, settings: Settings | None = None) -> ReaderRegistry:
    """Registry with every built-in reader."""
    allowed = settings.allowed_sources if settings else None
    min_exercise = settings.min_exercise_minutes if settings else 2

    registry = ReaderRegistry(provider)
    for reader in (
        WeightReader(allowed),
        ExerciseSessionReader(min_exercise, allowed),
        SleepSessionReader(allowed),
        Vo2MaxReader(allowed),
        StepsReader(allowed),
        DistanceReader(allowed),
        TotalCaloriesReader(allowed),
        RestingHeartRateReader(allowed),
        OxygenSaturationReader(allowed),
        HeightReader(allowed),
        BodyFatReader(allowed),
        LeanBodyMassReader(allowed),
        BoneMassReader(allowed),
        BasalMetabolicRateReader(allowed),
        BodyWaterMassReader(allowed),
        HeartRateReader(allowed),
        BloodPressureReader(allowed),
        BloodGlucoseReader(allowed),
        NutritionReader(allowed),
    ):
        registry.register(reader)
    return registry

