import datetime

import pytest

from bocadi.errors import NotFound, ValidationError
from bocadi.planner import (
    ENTRIES_TABLE,
    FALLBACK_SLOTS,
    HIDDEN_SLOTS_TABLE,
    NEW_SLOT_SORT_ORDER,
    SLOTS_TABLE,
    add_meal_slot,
    fetch_week_entries,
    get_monday,
    hide_meal_slot,
    list_meal_slots,
    move_entry,
    parse_week_start,
    place_dish,
    remove_entry,
    week_bounds,
)
from conftest import WEEK_START, WORKSPACE_ID


class TestWeeks:
    def test_get_monday(self):
        assert get_monday(datetime.date(2024, 3, 7)) == WEEK_START
        assert get_monday(datetime.date(2024, 3, 10)) == WEEK_START
        assert get_monday(WEEK_START) == WEEK_START
        assert get_monday(datetime.datetime(2024, 3, 9, 22, 15)) == WEEK_START

    def test_parse_week_start_snaps_to_monday(self):
        assert parse_week_start("2024-03-08") == WEEK_START
        assert parse_week_start("2024-03-04T00:00:00Z") == WEEK_START

    @pytest.mark.parametrize("value", ["", "not-a-date", "2024-13-01", None])
    def test_invalid_week_start(self, value):
        with pytest.raises(ValidationError):
            parse_week_start(value)

    def test_week_bounds(self):
        assert week_bounds("2024-03-06") == (WEEK_START, datetime.date(2024, 3, 10))


class TestMealSlots:
    def test_fallback_when_no_custom_slots(self, store):
        slots, using_fallback = list_meal_slots(store, WORKSPACE_ID, WEEK_START)
        assert using_fallback
        assert [slot["id"] for slot in slots] == ["breakfast", "lunch", "dinner"]
        assert [slot["name"] for slot in slots] == ["Desayuno", "Almuerzo", "Cena"]

    def test_fallback_when_slots_table_fails(self, store):
        store.failing.add(("select", SLOTS_TABLE))
        slots, using_fallback = list_meal_slots(store, WORKSPACE_ID, WEEK_START)
        assert using_fallback
        assert len(slots) == 3

    def test_fallback_slots_are_copies(self, store):
        slots, _ = list_meal_slots(store, WORKSPACE_ID, WEEK_START)
        slots[0]["name"] = "Brunch"
        assert FALLBACK_SLOTS[0]["name"] == "Desayuno"

    def test_custom_slots_minus_hidden(self, store):
        store.tables[SLOTS_TABLE] = [
            {"id": "s-cena", "workspace_id": WORKSPACE_ID, "name": "Cena", "sort_order": 3},
            {"id": "s-desayuno", "workspace_id": WORKSPACE_ID, "name": "Desayuno", "sort_order": 1},
            {"id": "s-merienda", "workspace_id": WORKSPACE_ID, "name": "Merienda", "sort_order": 2},
            {"id": "s-otro", "workspace_id": "ws-2", "name": "Otro", "sort_order": 0},
        ]
        hide_meal_slot(store, WORKSPACE_ID, "s-merienda", "2024-03-06")

        slots, using_fallback = list_meal_slots(store, WORKSPACE_ID, WEEK_START)
        assert not using_fallback
        assert [slot["id"] for slot in slots] == ["s-desayuno", "s-cena"]

        next_week, _ = list_meal_slots(store, WORKSPACE_ID, "2024-03-11")
        assert [slot["id"] for slot in next_week] == ["s-desayuno", "s-merienda", "s-cena"]

    def test_hidden_row_uses_monday(self, store):
        hide_meal_slot(store, WORKSPACE_ID, "s-1", "2024-03-09")
        assert store.rows(HIDDEN_SLOTS_TABLE)[0]["week_start"] == "2024-03-04"

    def test_add_meal_slot(self, store):
        slot = add_meal_slot(store, WORKSPACE_ID, "  Merienda ")
        assert slot["name"] == "Merienda"
        assert slot["sort_order"] == NEW_SLOT_SORT_ORDER
        assert slot["is_default"] is False

    def test_add_meal_slot_requires_name(self, store):
        with pytest.raises(ValidationError):
            add_meal_slot(store, WORKSPACE_ID, "   ")


class TestEntries:
    def test_place_dish_in_fallback_mode(self, planner_store):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-1", "2024-03-06", "wednesday", "lunch",
                           using_fallback=True)
        assert entry["meal_slot"] == "lunch"
        assert "meal_slot_id" not in entry
        assert entry["week_start"] == "2024-03-04"
        assert entry["dish"]["name"] == "Pollo al horno"
        assert entry["dish"]["protein_type"]["name"] == "Pollo"

    def test_place_dish_with_custom_slot(self, planner_store):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-2", WEEK_START, "friday", "s-merienda")
        assert entry["meal_slot_id"] == "s-merienda"
        assert "meal_slot" not in entry

    def test_cell_may_hold_several_dishes(self, planner_store):
        place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)
        place_dish(planner_store, WORKSPACE_ID, "dish-2", WEEK_START, "monday", "lunch", True)
        assert len(fetch_week_entries(planner_store, WORKSPACE_ID, WEEK_START)) == 2

    @pytest.mark.parametrize("day,slot", [("funday", "lunch"), ("monday", "brunch")])
    def test_place_dish_rejects_bad_cell(self, planner_store, day, slot):
        with pytest.raises(ValidationError):
            place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, day, slot, using_fallback=True)
        assert planner_store.rows(ENTRIES_TABLE) == []

    def test_fetch_week_entries_only_that_week(self, planner_store):
        place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)
        place_dish(planner_store, WORKSPACE_ID, "dish-2", "2024-03-11", "monday", "lunch", True)
        entries = fetch_week_entries(planner_store, WORKSPACE_ID, "2024-03-07")
        assert [entry["dish_id"] for entry in entries] == ["dish-1"]
        assert entries[0]["dish"]["ingredients"][0]["name"] == "Pechuga de pollo"

    def test_fetch_week_entries_skips_orphans(self, planner_store):
        planner_store.tables[ENTRIES_TABLE] = [
            {"id": "e-1", "workspace_id": WORKSPACE_ID, "week_start": "2024-03-04",
             "day_of_week": "monday", "dish_id": "dish-1"},
            {"id": "e-2", "workspace_id": WORKSPACE_ID, "week_start": "2024-03-04",
             "day_of_week": "monday", "dish_id": "dish-gone"},
        ]
        entries = fetch_week_entries(planner_store, WORKSPACE_ID, WEEK_START)
        assert [entry["id"] for entry in entries] == ["e-1"]

    def test_remove_entry(self, planner_store):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)
        remove_entry(planner_store, entry["id"])
        assert planner_store.rows(ENTRIES_TABLE) == []

    def test_move_entry_deletes_and_inserts(self, planner_store):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)

        moved = move_entry(planner_store, entry["id"], "sunday", "dinner", using_fallback=True)

        assert moved["id"] != entry["id"]
        assert moved["day_of_week"] == "sunday"
        assert moved["meal_slot"] == "dinner"
        assert moved["dish_id"] == "dish-1"
        assert moved["week_start"] == "2024-03-04"
        assert [row["id"] for row in planner_store.rows(ENTRIES_TABLE)] == [moved["id"]]

    def test_move_missing_entry(self, planner_store):
        with pytest.raises(NotFound):
            move_entry(planner_store, "e-missing", "monday", "lunch", True)

    def test_move_to_invalid_day_keeps_entry(self, planner_store):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)
        with pytest.raises(ValidationError):
            move_entry(planner_store, entry["id"], "someday", "lunch", True)
        assert len(planner_store.rows(ENTRIES_TABLE)) == 1

    @pytest.mark.parametrize("slot,using_fallback", [("brunch", True), (None, True), (None, False), ("", False)])
    def test_move_to_invalid_slot_keeps_entry(self, planner_store, slot, using_fallback):
        entry = place_dish(planner_store, WORKSPACE_ID, "dish-1", WEEK_START, "monday", "lunch", True)
        with pytest.raises(ValidationError):
            move_entry(planner_store, entry["id"], "friday", slot, using_fallback)
        assert [e["id"] for e in planner_store.rows(ENTRIES_TABLE)] == [entry["id"]]
        assert planner_store.rows(ENTRIES_TABLE)[0]["day_of_week"] == "monday"
