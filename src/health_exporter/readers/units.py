"""
Unit normalization for provider quantities.

The provider documents two shapes for a quantity: a bare number already in
the canonical unit, or a ``{"value": x, "unit": "lb"}`` mapping. Every
converter accepts both and returns None for an absent value.
"""

from health_exporter.core.errors import NormalizationError

MASS_KG = {
    "kg": 1.0,
    "kilogram": 1.0,
    "kilograms": 1.0,
    "g": 0.001,
    "gram": 0.001,
    "grams": 0.001,
    "mg": 1e-6,
    "milligram": 1e-6,
    "milligrams": 1e-6,
    "mcg": 1e-9,
    "ug": 1e-9,
    "microgram": 1e-9,
    "micrograms": 1e-9,
    "lb": 0.45359237,
    "lbs": 0.45359237,
    "pound": 0.45359237,
    "pounds": 0.45359237,
    "oz": 0.028349523125,
    "ounce": 0.028349523125,
    "ounces": 0.028349523125,
}

LENGTH_M = {
    "m": 1.0,
    "meter": 1.0,
    "meters": 1.0,
    "km": 1000.0,
    "kilometer": 1000.0,
    "kilometers": 1000.0,
    "cm": 0.01,
    "mi": 1609.344,
    "mile": 1609.344,
    "miles": 1609.344,
    "ft": 0.3048,
    "feet": 0.3048,
    "in": 0.0254,
    "inch": 0.0254,
    "inches": 0.0254,
}

ENERGY_KCAL = {
    "kcal": 1.0,
    "kilocalorie": 1.0,
    "kilocalories": 1.0,
    "cal": 0.001,
    "calorie": 0.001,
    "calories": 0.001,
    "kj": 0.239005736,
    "kilojoule": 0.239005736,
    "kilojoules": 0.239005736,
    "j": 0.000239005736,
    "joule": 0.000239005736,
    "joules": 0.000239005736,
}

PRESSURE_MMHG = {
    "mmhg": 1.0,
    "kpa": 7.50061683,
}

GLUCOSE_MMOL_PER_L = {
    "mmol/l": 1.0,
    "mmol_per_l": 1.0,
    "mg/dl": 1 / 18.0,
    "mg_per_dl": 1 / 18.0,
}

POWER_KCAL_PER_DAY = {
    "kcal/day": 1.0,
    "kcal_per_day": 1.0,
    "w": 20.6362855,
    "watt": 20.6362855,
    "watts": 20.6362855,
}


def _convert(raw, table: dict[str, float], kind: str) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise NormalizationError(f"Invalid {kind} quantity: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, dict):
        value = raw.get("value")
        if value is None:
            return None
        unit = str(raw.get("unit", "")).strip().lower()
        factor = table.get(unit) if unit else 1.0
        if factor is None:
            raise NormalizationError(f"Unknown {kind} unit: {raw.get('unit')!r}")
        try:
            return float(value) * factor
        except (TypeError, ValueError) as e:
            raise NormalizationError(f"Invalid {kind} quantity: {raw!r}") from e
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise NormalizationError(f"Invalid {kind} quantity: {raw!r}") from e


def mass_kg(raw) -> float | None:
    return _convert(raw, MASS_KG, "mass")


def _nutrient_mass(raw, per_kg: float) -> float | None:
    # Unitless nutrient values are already in the nutrient's own unit.
    if isinstance(raw, dict) and not raw.get("unit"):
        return _convert(raw.get("value"), {}, "mass")
    if isinstance(raw, dict):
        kg = mass_kg(raw)
        return kg * per_kg if kg is not None else None
    return _convert(raw, {}, "mass")


def mass_g(raw) -> float | None:
    """Nutrient mass in grams."""
    return _nutrient_mass(raw, 1e3)


def mass_mg(raw) -> float | None:
    """Nutrient mass in milligrams."""
    return _nutrient_mass(raw, 1e6)


def mass_mcg(raw) -> float | None:
    """Nutrient mass in micrograms."""
    return _nutrient_mass(raw, 1e9)


def length_m(raw) -> float | None:
    return _convert(raw, LENGTH_M, "length")


def energy_kcal(raw) -> float | None:
    return _convert(raw, ENERGY_KCAL, "energy")


def pressure_mmhg(raw) -> float | None:
    return _convert(raw, PRESSURE_MMHG, "pressure")


def glucose_mmol_per_l(raw) -> float | None:
    return _convert(raw, GLUCOSE_MMOL_PER_L, "blood glucose")


def power_kcal_per_day(raw) -> float | None:
    return _convert(raw, POWER_KCAL_PER_DAY, "power")


def percentage(raw) -> float | None:
    return _convert(raw, {"%": 1.0, "percent": 1.0}, "percentage")


def count(raw) -> int | None:
    value = _convert(raw, {}, "count")
    return int(value) if value is not None else None


def vo2_max(raw) -> float | None:
    return _convert(raw, {"ml/min/kg": 1.0, "ml/kg/min": 1.0}, "VO2 max")
