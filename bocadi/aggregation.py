"""
Weekly aggregation over week plan entries.

Every function here is a pure function of the entry list. An entry is a
`week_plan_entries` row carrying its dish, the dish's protein type and its
ingredients:

    {"day_of_week": "monday", "dish": {"name": ..., "protein_type": {...},
                                       "ingredients": [{...}, ...]}}

Reference values, semaphore bands and chart limits come from an injected
NutritionReference instead of module globals.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

DAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

DAY_LABELS = {
    'monday': 'Lunes', 'tuesday': 'Martes', 'wednesday': 'Miércoles',
    'thursday': 'Jueves', 'friday': 'Viernes', 'saturday': 'Sábado', 'sunday': 'Domingo',
}

DAY_SHORT_LABELS = {
    'monday': 'Lun', 'tuesday': 'Mar', 'wednesday': 'Mié',
    'thursday': 'Jue', 'friday': 'Vie', 'saturday': 'Sáb', 'sunday': 'Dom',
}

NUTRIENT_KEYS = (
    'kcal', 'protein_g', 'carbs_g', 'fat_g',
    'fiber_g', 'sodium_mg', 'vitamin_c_mg', 'vitamin_d_ui', 'calcium_mg', 'iron_mg', 'potassium_mg',
)
MACRO_KEYS = ('kcal', 'protein_g', 'carbs_g', 'fat_g')
MICRO_KEYS = ('fiber_g', 'sodium_mg', 'vitamin_c_mg', 'vitamin_d_ui', 'calcium_mg', 'iron_mg', 'potassium_mg')

# Ingredient column holding each nutrient
INGREDIENT_FIELDS = {key: key for key in NUTRIENT_KEYS}
INGREDIENT_FIELDS['kcal'] = 'estimated_kcal'

# (label, unit) per nutrient, as printed in the report
NUTRIENT_INFO = {
    'kcal': ('Calorías', 'kcal'),
    'protein_g': ('Proteínas', 'g'),
    'carbs_g': ('Carbohidratos', 'g'),
    'fat_g': ('Grasas', 'g'),
    'fiber_g': ('Fibra', 'g'),
    'sodium_mg': ('Sodio', 'mg'),
    'vitamin_c_mg': ('Vitamina C', 'mg'),
    'vitamin_d_ui': ('Vitamina D', 'UI'),
    'calcium_mg': ('Calcio', 'mg'),
    'iron_mg': ('Hierro', 'mg'),
    'potassium_mg': ('Potasio', 'mg'),
}

# kcal per gram for the energy distribution
ENERGY_PER_GRAM = {'protein_g': 4, 'carbs_g': 4, 'fat_g': 9}

UNCATEGORIZED_ID = '__none__'
UNCATEGORIZED_NAME = 'Sin categoría'
UNCATEGORIZED_COLOR = '#9CA3AF'

EXCESS_KEY = '__excess__'
TOTAL_KEY = '__total__'
EMPTY_KEY = '__empty__'


def _weekly(daily: float) -> float:
    return daily * 7


# Daily recommended values x 7
DEFAULT_WEEKLY_VALUES = {
    'kcal': _weekly(2000),
    'protein_g': _weekly(50),
    'carbs_g': _weekly(275),
    'fat_g': _weekly(78),
    'fiber_g': _weekly(28),
    'sodium_mg': _weekly(2300),
    'vitamin_c_mg': _weekly(80),
    'vitamin_d_ui': _weekly(600),
    'calcium_mg': _weekly(1000),
    'iron_mg': _weekly(18),
    'potassium_mg': _weekly(3500),
}


@dataclass(frozen=True)
class NutritionReference:
    """Immutable reference tables and thresholds for one aggregation run."""
    weekly: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_WEEKLY_VALUES))
    )
    optimal_band: Tuple[float, float] = (80, 120)
    review_band: Tuple[float, float] = (50, 150)
    daily_limit: float = 2000
    empty_day_marker: float = 80

    def __post_init__(self):
        if not isinstance(self.weekly, MappingProxyType):
            object.__setattr__(self, 'weekly', MappingProxyType(dict(self.weekly)))

    def reference_for(self, key: str) -> float:
        return self.weekly.get(key, 0)


DEFAULT_REFERENCE = NutritionReference()


class Semaphore(Enum):
    OPTIMAL = ('Óptimo', (34, 197, 94))
    REVIEW = ('Revisar', (234, 179, 8))
    CRITICAL = ('Crítico', (239, 68, 68))

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return self.value[1]

    @property
    def hex(self) -> str:
        return '#%02X%02X%02X' % self.rgb


def coverage(actual: float, reference: float) -> float:
    """Percentage of `reference` covered by `actual` (0 when there is no reference)."""
    if not reference or reference <= 0:
        return 0.0
    return actual / reference * 100


def semaphore(pct: float, reference: NutritionReference = DEFAULT_REFERENCE) -> Semaphore:
    """
    Classify a coverage percentage.

    80-120% optimal, 50-79% or 121-150% review, anything else critical.
    """
    low, high = reference.optimal_band
    if low <= pct <= high:
        return Semaphore.OPTIMAL
    review_low, review_high = reference.review_band
    if review_low <= pct < low or high < pct <= review_high:
        return Semaphore.REVIEW
    return Semaphore.CRITICAL


def _number(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _dish(entry) -> dict:
    return entry.get('dish') or {}


def sum_ingredients(ingredients, column: str) -> float:
    return sum(_number(ingredient.get(column)) for ingredient in ingredients or [])


def dish_total(dish: dict, key: str) -> float:
    """Total of nutrient `key` (or 'cost') over the dish's ingredients."""
    column = 'estimated_cost' if key == 'cost' else INGREDIENT_FIELDS[key]
    return sum_ingredients((dish or {}).get('ingredients'), column)


def total_macro(entries, key: str) -> float:
    if key not in INGREDIENT_FIELDS:
        raise KeyError(f"Unknown nutrient: {key}")
    return sum(dish_total(_dish(entry), key) for entry in entries)


def total_cost(entries) -> float:
    return sum(dish_total(_dish(entry), 'cost') for entry in entries)


def totals(entries) -> Dict[str, float]:
    """All nutrient totals plus `cost` for a set of entries."""
    result = {key: total_macro(entries, key) for key in NUTRIENT_KEYS}
    result['cost'] = total_cost(entries)
    return result


def weekly_totals(entries) -> Dict[str, float]:
    return totals(entries)


def entries_for_day(entries, day: str) -> list:
    return [entry for entry in entries if entry.get('day_of_week') == day]


def per_day(entries, day: str) -> Dict[str, float]:
    return totals(entries_for_day(entries, day))


@dataclass
class ProteinBucket:
    id: str
    name: str
    color: str
    grams: float = 0.0
    count: int = 0
    percentage: float = 0.0

    def to_dict(self) -> dict:
        return {
            'id': self.id, 'name': self.name, 'color': self.color,
            'grams': self.grams, 'count': self.count, 'percentage': self.percentage,
        }


def per_protein_type(entries) -> List[ProteinBucket]:
    """
    Protein grams and dish count per protein type, largest first.

    Dishes without a protein type share the uncategorized bucket. The
    percentage is each bucket's share of all protein grams, or 0 when
    there is no protein at all.
    """
    buckets: Dict[str, ProteinBucket] = {}
    for entry in entries:
        dish = _dish(entry)
        protein_type = dish.get('protein_type')
        if protein_type and protein_type.get('id'):
            bucket_id = protein_type['id']
            name, color = protein_type.get('name') or '', protein_type.get('color') or UNCATEGORIZED_COLOR
        else:
            bucket_id, name, color = UNCATEGORIZED_ID, UNCATEGORIZED_NAME, UNCATEGORIZED_COLOR
        bucket = buckets.setdefault(bucket_id, ProteinBucket(id=bucket_id, name=name, color=color))
        bucket.grams += dish_total(dish, 'protein_g')
        bucket.count += 1

    total_grams = sum(bucket.grams for bucket in buckets.values())
    for bucket in buckets.values():
        bucket.percentage = bucket.grams / total_grams * 100 if total_grams > 0 else 0.0
    return sorted(buckets.values(), key=lambda b: b.grams, reverse=True)


def daily_chart_series(entries, metric: str = 'kcal', daily_limit: Optional[float] = None,
                       reference: NutritionReference = DEFAULT_REFERENCE) -> List[dict]:
    """
    Stacked-bar series for the seven days.

    Per-protein-type values are scaled so the stack never exceeds
    `daily_limit`; the remainder is reported under __excess__. Days with a
    total of exactly 0 get the reference's empty-day marker under __empty__.
    """
    if daily_limit is None:
        daily_limit = reference.daily_limit

    series = []
    for day in DAYS:
        raw_by_type: Dict[str, float] = {}
        total = 0.0
        for entry in entries_for_day(entries, day):
            dish = _dish(entry)
            protein_type = dish.get('protein_type') or {}
            type_id = protein_type.get('id') or UNCATEGORIZED_ID
            value = dish_total(dish, metric)
            raw_by_type[type_id] = raw_by_type.get(type_id, 0.0) + value
            total += value

        capped = min(total, daily_limit)
        scale = capped / total if total > 0 else 1
        point = {'day': day, 'label': DAY_SHORT_LABELS[day]}
        for type_id, value in raw_by_type.items():
            point[type_id] = round(value * scale)
        point[EXCESS_KEY] = max(0.0, total - daily_limit)
        point[TOTAL_KEY] = total
        point[EMPTY_KEY] = reference.empty_day_marker if total == 0 else 0
        series.append(point)
    return series


def macro_energy_distribution(week_totals: Mapping[str, float]) -> List[dict]:
    """Protein/carbs/fat share of energy (4/4/9 kcal per gram), not of grams."""
    energy = {key: _number(week_totals.get(key)) * factor for key, factor in ENERGY_PER_GRAM.items()}
    total_energy = sum(energy.values())
    return [
        {
            'key': key,
            'label': NUTRIENT_INFO[key][0],
            'kcal': value,
            'percentage': value / total_energy * 100 if total_energy > 0 else 0.0,
        }
        for key, value in energy.items()
    ]


def nutrient_status(week_totals: Mapping[str, float], keys=NUTRIENT_KEYS,
                    reference: NutritionReference = DEFAULT_REFERENCE) -> List[dict]:
    """Actual vs weekly reference, with coverage and semaphore, for each key."""
    rows = []
    for key in keys:
        label, unit = NUTRIENT_INFO[key]
        actual = _number(week_totals.get(key))
        ref = reference.reference_for(key)
        pct = coverage(actual, ref)
        rows.append({
            'key': key,
            'label': label,
            'unit': unit,
            'actual': actual,
            'reference': ref,
            'percentage': pct,
            'semaphore': semaphore(pct, reference),
        })
    return rows


def week_summary(entries, reference: NutritionReference = DEFAULT_REFERENCE) -> dict:
    """JSON-ready rollup used by the planner view."""
    week_totals = weekly_totals(entries)
    status = nutrient_status(week_totals, reference=reference)
    return {
        'totals': week_totals,
        'status': [
            {**row, 'semaphore': row['semaphore'].label, 'color': row['semaphore'].hex}
            for row in status
        ],
        'days': {day: per_day(entries, day) for day in DAYS},
        'protein_types': [bucket.to_dict() for bucket in per_protein_type(entries)],
        'energy_distribution': macro_energy_distribution(week_totals),
        'chart': daily_chart_series(entries, reference=reference),
        'entry_count': len(entries),
    }
