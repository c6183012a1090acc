"""Nutrition reader: energy, macronutrients and micronutrients of one meal entry."""

from health_exporter.models.record import TrackedRecordType
from health_exporter.readers import units
from health_exporter.readers.base import RecordReader

# (provider value key, output field, converter)
NUTRIENTS = [
    ("protein", "protein_g", units.mass_g),
    ("total_carbohydrate", "carbs_g", units.mass_g),
    ("total_fat", "fat_total_g", units.mass_g),
    ("dietary_fiber", "fiber_g", units.mass_g),
    ("sugar", "sugar_g", units.mass_g),
    ("saturated_fat", "fat_saturated_g", units.mass_g),
    ("unsaturated_fat", "fat_unsaturated_g", units.mass_g),
    ("monounsaturated_fat", "fat_monounsaturated_g", units.mass_g),
    ("polyunsaturated_fat", "fat_polyunsaturated_g", units.mass_g),
    ("trans_fat", "fat_trans_g", units.mass_g),
    ("cholesterol", "cholesterol_mg", units.mass_mg),
    ("vitamin_a", "vitamin_a_mcg", units.mass_mcg),
    ("vitamin_b6", "vitamin_b6_mg", units.mass_mg),
    ("vitamin_b12", "vitamin_b12_mcg", units.mass_mcg),
    ("vitamin_c", "vitamin_c_mg", units.mass_mg),
    ("vitamin_d", "vitamin_d_mcg", units.mass_mcg),
    ("vitamin_e", "vitamin_e_mg", units.mass_mg),
    ("vitamin_k", "vitamin_k_mcg", units.mass_mcg),
    ("calcium", "calcium_mg", units.mass_mg),
    ("iron", "iron_mg", units.mass_mg),
    ("magnesium", "magnesium_mg", units.mass_mg),
    ("phosphorus", "phosphorus_mg", units.mass_mg),
    ("potassium", "potassium_mg", units.mass_mg),
    ("sodium", "sodium_mg", units.mass_mg),
    ("zinc", "zinc_mg", units.mass_mg),
    ("caffeine", "caffeine_mg", units.mass_mg),
]


class NutritionReader(RecordReader):
    record_type = TrackedRecordType.NUTRITION

    def normalize(self, record, metrics=None):
        values = record.values
        fields = {
            "meal_type": values.get("meal_type"),
            "name": values.get("name"),
            "energy_kcal": units.energy_kcal(values.get("energy")),
        }
        for key, field_name, convert in NUTRIENTS:
            fields[field_name] = convert(values.get(key))
        return self.interval(record, fields)
