"""
Nutrition estimation with a persistent cache.

Ingredients are fingerprinted by (normalized name, quantity, normalized
unit). Cache hits are served from the `nutrition_cache` table; everything
else is sent to the language model in ONE batched prompt. When the call or
the parse fails, every ingredient of that batch gets an all-zero record.
Resolved values are written back to the cache and to each ingredient row.

Quantities are never scaled between units: "200 g" and "100 g" of the
same ingredient are separate cache entries.
"""

import json
import logging
import math
import re
import traceback
from typing import List, Optional, Union

from pydantic import BaseModel, field_validator

from .llm import get_estimator

logger = logging.getLogger(__name__)

CACHE_TABLE = "nutrition_cache"
INGREDIENTS_TABLE = "ingredients"

# max_tokens granted per ingredient in a batched prompt
TOKENS_PER_INGREDIENT = 80

NUTRIENT_FIELDS = (
    "kcal",
    "protein_g",
    "carbs_g",
    "fat_g",
    "fiber_g",
    "sodium_mg",
    "vitamin_c_mg",
    "vitamin_d_ui",
    "calcium_mg",
    "iron_mg",
    "potassium_mg",
)

# Unit synonyms (lowercase input -> canonical abbreviation)
UNIT_MAP = {
    'gramo': 'g', 'gramos': 'g', 'gr': 'g', 'grs': 'g',
    'kilogramo': 'kg', 'kilogramos': 'kg', 'kilo': 'kg', 'kilos': 'kg',
    'mililitro': 'ml', 'mililitros': 'ml', 'mililiter': 'ml',
    'litro': 'l', 'litros': 'l',
    'cucharada': 'cda', 'cucharadas': 'cda', 'tbsp': 'cda',
    'cucharadita': 'cdta', 'cucharaditas': 'cdta', 'tsp': 'cdta',
    'taza': 'taza', 'tazas': 'taza', 'cup': 'taza',
    'unidad': 'u', 'unidades': 'u', 'pieza': 'u', 'piezas': 'u',
}

DEFAULT_UNIT = 'u'


def safe_number(value) -> float:
    """Parse `value` as a number; non-finite, negative or unparseable -> 0."""
    if isinstance(value, bool):
        value = int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", "_", name.lower().strip())


def normalize_unit(unit: Optional[str]) -> str:
    if not unit:
        return DEFAULT_UNIT
    lower = unit.lower().strip()
    if not lower:
        return DEFAULT_UNIT
    return UNIT_MAP.get(lower, lower)


def format_quantity(quantity) -> str:
    """Render a quantity the way it appears in keys and prompts (200, not 200.0)."""
    if quantity is None:
        return ""
    number = float(quantity)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def cache_key(name: str, quantity=None, unit: Optional[str] = None) -> str:
    return f"{normalize_name(name)}_{format_quantity(quantity) or '0'}_{normalize_unit(unit)}"


class NutritionValues(BaseModel):
    """Per-ingredient nutrition estimate; every field defaults to 0."""
    kcal: float = 0
    protein_g: float = 0
    carbs_g: float = 0
    fat_g: float = 0
    fiber_g: float = 0
    sodium_mg: float = 0
    vitamin_c_mg: float = 0
    vitamin_d_ui: float = 0
    calcium_mg: float = 0
    iron_mg: float = 0
    potassium_mg: float = 0

    @field_validator(*NUTRIENT_FIELDS, mode="before")
    @classmethod
    def _coerce(cls, value):
        return safe_number(value)

    @classmethod
    def zero(cls):
        return cls()

    @classmethod
    def from_mapping(cls, data):
        """Build from any mapping (LLM object, cache row); non-mappings give zeros."""
        if not isinstance(data, dict):
            return cls.zero()
        return cls.model_validate({field: data.get(field) for field in NUTRIENT_FIELDS})

    def as_cache_row(self, key: str) -> dict:
        return {"cache_key": key, **self.model_dump()}

    def as_ingredient_patch(self) -> dict:
        patch = self.model_dump()
        patch["estimated_kcal"] = patch.pop("kcal")
        return patch


class EstimationRequest(BaseModel):
    """One ingredient to resolve; served from the cache when possible."""
    id: Union[int, str]
    name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    bypass_cache: bool = False

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value):
        if value is None or value == "":
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if math.isfinite(number) else None

    @property
    def cache_key(self) -> str:
        return cache_key(self.name, self.quantity, self.unit)

    def prompt_line(self) -> str:
        return f"{format_quantity(self.quantity)}{self.unit or ''} {self.name}"


class RecalculationRequest(EstimationRequest):
    """Forced re-estimation: skips the cache lookup and overwrites the entry."""
    bypass_cache: bool = True


def parse_requests(payload) -> List[EstimationRequest]:
    """
    Turn a request body into estimation requests.

    Accepts a list of {id, name, quantity, unit, forceRecalc?} objects or a
    single {ingredientId, name, quantity, unit, forceRecalc?} object.
    Entries without an id or with a blank name are dropped.
    """
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = [{
            "id": payload.get("ingredientId", payload.get("id")),
            "name": payload.get("name"),
            "quantity": payload.get("quantity"),
            "unit": payload.get("unit"),
            "forceRecalc": payload.get("forceRecalc"),
        }]

    requests = []
    for item in payload:
        if isinstance(item, EstimationRequest):
            if item.id and item.name.strip():
                requests.append(item)
            continue
        if not isinstance(item, dict):
            continue
        ingredient_id = item.get("id")
        name = item.get("name")
        if not ingredient_id or not isinstance(name, str) or not name.strip():
            continue
        request_cls = RecalculationRequest if item.get("forceRecalc") else EstimationRequest
        requests.append(request_cls(
            id=ingredient_id,
            name=name,
            quantity=item.get("quantity"),
            unit=item.get("unit"),
        ))
    return requests


def requests_for_ingredients(ingredients, force=False) -> List[EstimationRequest]:
    """Estimation requests for ingredient rows; only unestimated ones unless forced."""
    request_cls = RecalculationRequest if force else EstimationRequest
    return [
        request_cls(id=row["id"], name=row["name"], quantity=row.get("quantity"), unit=row.get("unit"))
        for row in ingredients
        if row.get("id") and (row.get("name") or "").strip() and (force or needs_estimation(row))
    ]


def needs_estimation(ingredient: dict) -> bool:
    """An ingredient whose estimated_kcal is 0 or missing has not been estimated."""
    return not safe_number(ingredient.get("estimated_kcal"))


def build_prompt(requests: List[EstimationRequest]) -> str:
    lines = "\n".join(f"{idx + 1}. {req.prompt_line()}" for idx, req in enumerate(requests))
    template = json.dumps({field: 0 for field in NUTRIENT_FIELDS}, separators=(",", ":"))
    return (
        f"Nutrition data for {len(requests)} ingredient(s). "
        "Respond ONLY with a JSON array, no text, no markdown.\n"
        "Return exactly one object per ingredient, in the same order as listed.\n"
        "Each object must have exactly these keys (numbers only, 0 if unknown):\n"
        f"{template}\n"
        "Ingredients:\n"
        f"{lines}"
    )


def _strip_code_fences(text: str) -> str:
    text = text.strip()
    text = re.sub(r"^```[a-zA-Z]*\n?", "", text)
    text = re.sub(r"\n?```$", "", text)
    return text.strip()


def parse_response(text: str, expected: int) -> List[NutritionValues]:
    """
    Parse the model's JSON array positionally against the request order.

    Always returns exactly `expected` records: missing positions and
    non-object elements become zeros, extra elements are ignored.
    Raises ValueError when the text is not a JSON array.
    """
    payload = json.loads(_strip_code_fences(text or "[]"))
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array, got {type(payload).__name__}")
    if len(payload) != expected:
        logger.warning(f"⚠️ Estimator returned {len(payload)} item(s) for {expected} ingredient(s)")
    return [
        NutritionValues.from_mapping(payload[idx] if idx < len(payload) else None)
        for idx in range(expected)
    ]


def _estimate_pending(pending, estimator):
    try:
        if estimator is None:
            estimator = get_estimator()
        text = estimator.complete(
            build_prompt(pending),
            max_tokens=len(pending) * TOKENS_PER_INGREDIENT,
            temperature=0,
        )
        logger.info(f"🤖 Raw estimator response: {text}")
        return parse_response(text, len(pending))
    except Exception as e:
        logger.error(f"❌ Nutrition estimation failed for {len(pending)} ingredient(s): {e}")
        logger.error(traceback.format_exc())
        return [NutritionValues.zero() for _ in pending]


def estimate(store, batch, estimator=None, force_recalc=False) -> List[dict]:
    """
    Resolve nutrition for a batch of ingredients.

    `batch` is a request body (see parse_requests) or a list of
    EstimationRequest. With `force_recalc` every request skips the cache
    lookup, as if each had been sent with forceRecalc.

    Returns [{"id", **nutrition}] in request order, after updating every
    ingredient row.
    """
    requests = parse_requests(batch)
    if not requests:
        return []
    if force_recalc:
        requests = [RecalculationRequest(**req.model_dump(exclude={"bypass_cache"})) for req in requests]

    keys = [req.cache_key for req in requests]
    nutrition_map = {}

    lookup_keys = sorted({key for req, key in zip(requests, keys) if not req.bypass_cache})
    if lookup_keys:
        for row in store.select(CACHE_TABLE, {"cache_key": lookup_keys}):
            values = NutritionValues.from_mapping(row)
            # Zero-kcal entries are treated as never estimated
            if values.kcal > 0:
                nutrition_map[row["cache_key"]] = values
        logger.info(f"✅ Nutrition cache: {len(nutrition_map)} hit(s) for {len(lookup_keys)} key(s)")

    pending = [
        req for req, key in zip(requests, keys)
        if req.bypass_cache or key not in nutrition_map
    ]
    if pending:
        logger.info(f"🔄 Estimating {len(pending)} ingredient(s) with the language model")
        resolved = _estimate_pending(pending, estimator)
        cache_rows = {}
        for req, values in zip(pending, resolved):
            nutrition_map[req.cache_key] = values
            cache_rows[req.cache_key] = values.as_cache_row(req.cache_key)
        try:
            store.upsert(CACHE_TABLE, list(cache_rows.values()), on_conflict="cache_key")
        except Exception as e:
            logger.error(f"❌ Failed to write nutrition cache: {e}")

    results = []
    for req, key in zip(requests, keys):
        values = nutrition_map.get(key) or NutritionValues.zero()
        store.update(INGREDIENTS_TABLE, values.as_ingredient_patch(), {"id": req.id})
        results.append({"id": req.id, **values.model_dump()})
    return results
