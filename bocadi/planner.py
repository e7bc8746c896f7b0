"""
Week planner persistence: meal slots and week plan entries.

A week is identified by its Monday (`week_start`, ISO date). Entries are
never updated in place; moving a dish deletes the entry and inserts a new one.
"""

import datetime
import logging

from .aggregation import DAYS
from .errors import NotFound, ValidationError
from .store import ENTRY_WITH_DISH

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "week_plan_entries"
SLOTS_TABLE = "meal_slots"
HIDDEN_SLOTS_TABLE = "meal_slot_hidden_weeks"

# Used while a workspace has no custom meal slots
FALLBACK_SLOTS = [
    {"id": "breakfast", "workspace_id": "", "name": "Desayuno", "sort_order": 1, "is_default": True, "created_at": ""},
    {"id": "lunch", "workspace_id": "", "name": "Almuerzo", "sort_order": 2, "is_default": True, "created_at": ""},
    {"id": "dinner", "workspace_id": "", "name": "Cena", "sort_order": 3, "is_default": True, "created_at": ""},
]
LEGACY_SLOT_IDS = {slot["id"] for slot in FALLBACK_SLOTS}

NEW_SLOT_SORT_ORDER = 99


def get_monday(day: datetime.date) -> datetime.date:
    if isinstance(day, datetime.datetime):
        day = day.date()
    return day - datetime.timedelta(days=day.weekday())


def parse_week_start(value) -> datetime.date:
    """Parse an ISO date (or date) and snap it to its Monday."""
    if isinstance(value, datetime.date):
        return get_monday(value)
    try:
        return get_monday(datetime.date.fromisoformat(str(value).strip()[:10]))
    except ValueError as e:
        raise ValidationError(f"Invalid week_start: {value!r}") from e


def week_bounds(week_start) -> tuple:
    monday = parse_week_start(week_start)
    return monday, monday + datetime.timedelta(days=6)


def list_meal_slots(store, workspace_id, week_start):
    """
    Meal slots visible in a week.

    Returns (slots, using_fallback). Without custom slots (or when the
    table is unavailable) the legacy breakfast/lunch/dinner trio is used.
    """
    try:
        slots = store.select(SLOTS_TABLE, {"workspace_id": workspace_id}, order="sort_order")
    except Exception as e:
        logger.warning(f"⚠️ Could not read meal slots, using fallback slots: {e}")
        slots = []
    if not slots:
        return [dict(slot) for slot in FALLBACK_SLOTS], True

    hidden = store.select(HIDDEN_SLOTS_TABLE, {
        "workspace_id": workspace_id,
        "week_start": parse_week_start(week_start).isoformat(),
    })
    hidden_ids = {row["meal_slot_id"] for row in hidden}
    return [slot for slot in slots if slot["id"] not in hidden_ids], False


def add_meal_slot(store, workspace_id, name):
    name = (name or "").strip()
    if not name:
        raise ValidationError("Slot name is required")
    rows = store.insert(SLOTS_TABLE, {
        "workspace_id": workspace_id,
        "name": name,
        "sort_order": NEW_SLOT_SORT_ORDER,
        "is_default": False,
    })
    return rows[0] if rows else None


def hide_meal_slot(store, workspace_id, slot_id, week_start):
    """Hide a slot for one week only."""
    rows = store.insert(HIDDEN_SLOTS_TABLE, {
        "meal_slot_id": slot_id,
        "workspace_id": workspace_id,
        "week_start": parse_week_start(week_start).isoformat(),
    })
    return rows[0] if rows else None


def fetch_week_entries(store, workspace_id, week_start):
    """Entries of one week with their dish, protein type and ingredients."""
    entries = store.select(ENTRIES_TABLE, {
        "workspace_id": workspace_id,
        "week_start": parse_week_start(week_start).isoformat(),
    }, columns=ENTRY_WITH_DISH)
    orphaned = [entry for entry in entries if not entry.get("dish")]
    if orphaned:
        logger.warning(f"⚠️ Skipping {len(orphaned)} week plan entr(ies) whose dish no longer exists")
    return [entry for entry in entries if entry.get("dish")]


def _check_cell(day, slot_id, using_fallback):
    """Validate a (day, slot) cell; returns the entry column holding the slot."""
    if day not in DAYS:
        raise ValidationError(f"Invalid day_of_week: {day!r}")
    if not slot_id:
        raise ValidationError("slot_id is required")
    if using_fallback:
        if slot_id not in LEGACY_SLOT_IDS:
            raise ValidationError(f"Invalid meal_slot: {slot_id!r}")
        return "meal_slot"
    return "meal_slot_id"


def place_dish(store, workspace_id, dish_id, week_start, day, slot_id, using_fallback=False):
    """Put a dish in a (day, slot) cell. A cell may hold several dishes."""
    slot_column = _check_cell(day, slot_id, using_fallback)
    if not dish_id:
        raise ValidationError("dish_id is required")

    row = {
        "workspace_id": workspace_id,
        "dish_id": dish_id,
        "week_start": parse_week_start(week_start).isoformat(),
        "day_of_week": day,
        slot_column: slot_id,
    }

    rows = store.insert(ENTRIES_TABLE, row, columns=ENTRY_WITH_DISH)
    return rows[0] if rows else None


def remove_entry(store, entry_id):
    store.delete(ENTRIES_TABLE, {"id": entry_id})


def move_entry(store, entry_id, day, slot_id, using_fallback=False):
    _check_cell(day, slot_id, using_fallback)
    entry = store.select_one(ENTRIES_TABLE, {"id": entry_id})
    if not entry:
        raise NotFound(f"Week plan entry not found: {entry_id}")
    remove_entry(store, entry_id)
    return place_dish(
        store, entry["workspace_id"], entry["dish_id"], entry["week_start"],
        day, slot_id, using_fallback,
    )
