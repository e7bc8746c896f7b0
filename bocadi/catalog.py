"""
Dish catalog, protein types and the nutritionist profile.

Dishes own their ingredients: every edit deletes all ingredient rows and
inserts the new list, so nutrition estimates are redone for the new rows.
"""

import datetime
import logging

from .errors import NotFound, ProteinTypeInUse, ValidationError
from .store import DISH_WITH_RELATIONS

logger = logging.getLogger(__name__)

DISHES_TABLE = "dishes"
INGREDIENTS_TABLE = "ingredients"
PROTEIN_TYPES_TABLE = "protein_types"
ENTRIES_TABLE = "week_plan_entries"
PROFILE_TABLE = "nutritionist_profile"

DEFAULT_PROTEIN_COLOR = "#6366f1"


def _blank_to_none(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _ingredient_rows(dish_id, ingredients):
    rows = []
    for ingredient in ingredients or []:
        name = (ingredient.get("name") or "").strip()
        if not name:
            continue
        rows.append({
            "dish_id": dish_id,
            "name": name,
            "quantity": ingredient.get("quantity"),
            "unit": _blank_to_none(ingredient.get("unit")),
            "estimated_cost": ingredient.get("estimated_cost") or 0,
        })
    return rows


def list_dishes(store, workspace_id):
    return store.select(
        DISHES_TABLE, {"workspace_id": workspace_id}, order="name", columns=DISH_WITH_RELATIONS
    )


def save_dish(store, workspace_id, data, dish_id=None):
    """
    Create or edit a dish and replace its ingredients.

    Returns (dish, ingredients) where `ingredients` are the freshly
    inserted rows, all awaiting nutrition estimation.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Dish name is required")
    fields = {
        "name": name,
        "description": _blank_to_none(data.get("description")),
        "protein_type_id": _blank_to_none(data.get("protein_type_id")),
    }

    if dish_id:
        updated = store.update(DISHES_TABLE, fields, {"id": dish_id})
        if not updated:
            raise NotFound(f"Dish not found: {dish_id}")
        dish = updated[0]
        store.delete(INGREDIENTS_TABLE, {"dish_id": dish_id})
    else:
        created = store.insert(DISHES_TABLE, {**fields, "workspace_id": workspace_id})
        if not created:
            raise ValidationError("Dish could not be created")
        dish = created[0]

    rows = _ingredient_rows(dish["id"], data.get("ingredients"))
    ingredients = store.insert(INGREDIENTS_TABLE, rows) if rows else []
    logger.info(f"✅ Saved dish {dish['id']} with {len(ingredients)} ingredient(s)")
    return dish, ingredients


def delete_dish(store, dish_id):
    """Delete a dish, its ingredients and every week plan entry using it."""
    store.delete(ENTRIES_TABLE, {"dish_id": dish_id})
    store.delete(INGREDIENTS_TABLE, {"dish_id": dish_id})
    store.delete(DISHES_TABLE, {"id": dish_id})


def list_protein_types(store, workspace_id):
    return store.select(PROTEIN_TYPES_TABLE, {"workspace_id": workspace_id}, order="name")


def create_protein_type(store, workspace_id, name, color=None):
    name = (name or "").strip()
    if not name:
        raise ValidationError("Protein type name is required")
    rows = store.insert(PROTEIN_TYPES_TABLE, {
        "workspace_id": workspace_id,
        "name": name,
        "color": color or DEFAULT_PROTEIN_COLOR,
    })
    return rows[0] if rows else None


def delete_protein_type(store, protein_type_id):
    protein_type = store.select_one(PROTEIN_TYPES_TABLE, {"id": protein_type_id})
    if not protein_type:
        raise NotFound(f"Protein type not found: {protein_type_id}")
    count = store.count(DISHES_TABLE, {"protein_type_id": protein_type_id})
    if count > 0:
        raise ProteinTypeInUse(protein_type["name"], count)
    store.delete(PROTEIN_TYPES_TABLE, {"id": protein_type_id})


def get_nutritionist_profile(store, workspace_id):
    return store.select_one(PROFILE_TABLE, {"workspace_id": workspace_id})


def save_nutritionist_profile(store, workspace_id, data):
    row = {
        "workspace_id": workspace_id,
        "name": _blank_to_none(data.get("name")),
        "license_number": _blank_to_none(data.get("license_number")),
        "logo_url": _blank_to_none(data.get("logo_url")),
        "updated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    }
    rows = store.upsert(PROFILE_TABLE, [row], on_conflict="workspace_id")
    return rows[0] if rows else row
