"""
Instant measurement readers (body composition, vitals, lab values).

Most of these carry a single quantity, so they share QuantityReader and only
declare which provider value to read, how to convert it and what to call it
in the output.
"""

from typing import Callable

from health_exporter.models.provider import AggregateMetrics, ProviderRecord
from health_exporter.models.record import NormalizedRecord, TrackedRecordType
from health_exporter.readers import units
from health_exporter.readers.base import RecordReader


class QuantityReader(RecordReader):
    """Instant record with one converted quantity."""

    value_key: str
    field_name: str
    convert: Callable

    def normalize(self, record: ProviderRecord, metrics: AggregateMetrics | None = None) -> NormalizedRecord:
        return self.instant(record, {self.field_name: self.convert(record.values.get(self.value_key))})


class WeightReader(QuantityReader):
    record_type = TrackedRecordType.WEIGHT
    value_key = "weight"
    field_name = "weight_kg"
    convert = staticmethod(units.mass_kg)


class HeightReader(QuantityReader):
    record_type = TrackedRecordType.HEIGHT
    value_key = "height"
    field_name = "height_meters"
    convert = staticmethod(units.length_m)


class BodyFatReader(QuantityReader):
    record_type = TrackedRecordType.BODY_FAT
    value_key = "percentage"
    field_name = "percentage"
    convert = staticmethod(units.percentage)


class LeanBodyMassReader(QuantityReader):
    record_type = TrackedRecordType.LEAN_BODY_MASS
    value_key = "mass"
    field_name = "mass_kg"
    convert = staticmethod(units.mass_kg)


class BoneMassReader(QuantityReader):
    record_type = TrackedRecordType.BONE_MASS
    value_key = "mass"
    field_name = "mass_kg"
    convert = staticmethod(units.mass_kg)


class BodyWaterMassReader(QuantityReader):
    record_type = TrackedRecordType.BODY_WATER_MASS
    value_key = "mass"
    field_name = "mass_kg"
    convert = staticmethod(units.mass_kg)


class BasalMetabolicRateReader(QuantityReader):
    record_type = TrackedRecordType.BASAL_METABOLIC_RATE
    value_key = "basal_metabolic_rate"
    field_name = "kcal_per_day"
    convert = staticmethod(units.power_kcal_per_day)


class RestingHeartRateReader(QuantityReader):
    record_type = TrackedRecordType.RESTING_HEART_RATE
    value_key = "bpm"
    field_name = "bpm"
    convert = staticmethod(units.count)


class OxygenSaturationReader(QuantityReader):
    record_type = TrackedRecordType.OXYGEN_SATURATION
    value_key = "percentage"
    field_name = "percentage"
    convert = staticmethod(units.percentage)


class Vo2MaxReader(RecordReader):
    record_type = TrackedRecordType.VO2MAX

    def normalize(self, record, metrics=None):
        values = record.values
        return self.instant(record, {
            "vo2_max_ml_per_min_per_kg": units.vo2_max(values.get("vo2_max_ml_per_min_per_kg")),
            "measurement_method": values.get("measurement_method"),
        })


class BloodPressureReader(RecordReader):
    record_type = TrackedRecordType.BLOOD_PRESSURE

    def normalize(self, record, metrics=None):
        values = record.values
        return self.instant(record, {
            "systolic_mmhg": units.pressure_mmhg(values.get("systolic")),
            "diastolic_mmhg": units.pressure_mmhg(values.get("diastolic")),
            "body_position": values.get("body_position"),
            "measurement_location": values.get("measurement_location"),
        })


class BloodGlucoseReader(RecordReader):
    record_type = TrackedRecordType.BLOOD_GLUCOSE

    def normalize(self, record, metrics=None):
        values = record.values
        return self.instant(record, {
            "glucose_mmol_per_l": units.glucose_mmol_per_l(values.get("level")),
            "specimen_source": values.get("specimen_source"),
            "meal_type": values.get("meal_type"),
            "relation_to_meal": values.get("relation_to_meal"),
        })
