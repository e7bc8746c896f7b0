import datetime
import json

import pytest

from bocadi.store import DISH_WITH_RELATIONS, ENTRY_WITH_DISH


def _matches(row, filters):
    for key, value in (filters or {}).items():
        if key.endswith('_lt'):
            current = row.get(key[:-3])
            if current is None or not current < value:
                return False
        elif key.endswith('_not_null'):
            if value is True and row.get(key[:-9]) is None:
                return False
        elif key.startswith('not_'):
            if row.get(key[4:]) == value:
                return False
        elif isinstance(value, (list, tuple, set)):
            if row.get(key) not in value:
                return False
        elif value is None:
            if row.get(key) is not None:
                return False
        elif row.get(key) != value:
            return False
    return True


class FakeStore:
    """In-memory stand-in for SupabaseStore, including the nested dish reads."""

    def __init__(self, tables=None):
        self.tables = {name: [dict(row) for row in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        self.failing = set()
        self._next_id = 1

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def _check(self, method, table):
        self.calls.append((method, table))
        if (method, table) in self.failing:
            raise RuntimeError(f"{method} on {table} failed")

    def _new_id(self, table):
        new_id = f"{table}-{self._next_id}"
        self._next_id += 1
        return new_id

    def _dish_with_relations(self, dish):
        dish = dict(dish)
        protein_type = None
        if dish.get('protein_type_id'):
            protein_type = next(
                (dict(pt) for pt in self.rows('protein_types') if pt['id'] == dish['protein_type_id']),
                None,
            )
        dish['protein_type'] = protein_type
        dish['ingredients'] = [dict(i) for i in self.rows('ingredients') if i.get('dish_id') == dish['id']]
        return dish

    def _expand(self, row, columns):
        if columns == DISH_WITH_RELATIONS:
            return self._dish_with_relations(row)
        if columns == ENTRY_WITH_DISH:
            entry = dict(row)
            dish = next((d for d in self.rows('dishes') if d['id'] == row.get('dish_id')), None)
            entry['dish'] = self._dish_with_relations(dish) if dish else None
            return entry
        return dict(row)

    def select(self, table, filters=None, order=None, columns="*"):
        self._check('select', table)
        rows = [row for row in self.rows(table) if _matches(row, filters)]
        if order:
            for column in reversed([order] if isinstance(order, str) else list(order)):
                name = column.lstrip('-')
                rows.sort(key=lambda r: (r.get(name) is None, r.get(name)), reverse=column.startswith('-'))
        return [self._expand(row, columns) for row in rows]

    def select_one(self, table, filters=None, columns="*"):
        rows = self.select(table, filters, columns=columns)
        return rows[0] if rows else None

    def count(self, table, filters=None):
        self._check('count', table)
        return len([row for row in self.rows(table) if _matches(row, filters)])

    def insert(self, table, rows, columns=None):
        self._check('insert', table)
        if isinstance(rows, dict):
            rows = [rows]
        created = []
        for row in rows:
            row = dict(row)
            row.setdefault('id', self._new_id(table))
            self.rows(table).append(row)
            created.append(row)
        return [self._expand(row, columns or "*") for row in created]

    def update(self, table, patch, filters):
        self._check('update', table)
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(patch)
                updated.append(dict(row))
        return updated

    def delete(self, table, filters):
        self._check('delete', table)
        kept, removed = [], []
        for row in self.rows(table):
            (removed if _matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return removed

    def upsert(self, table, rows, on_conflict):
        self._check('upsert', table)
        result = []
        for row in rows:
            existing = next((r for r in self.rows(table) if r.get(on_conflict) == row.get(on_conflict)), None)
            if existing is not None:
                existing.update(row)
                result.append(dict(existing))
            else:
                row = dict(row)
                row.setdefault('id', self._new_id(table))
                self.rows(table).append(row)
                result.append(dict(row))
        return result


class FakeEstimator:
    """Records every completion request and answers with canned text."""

    model = "fake-model"

    def __init__(self, response="[]", error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, prompt, max_tokens, temperature=0):
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.response


def nutrition_json(*records):
    return json.dumps(list(records))


def ingredient(kcal=0, protein_g=0, carbs_g=0, fat_g=0, cost=0, **micros):
    return {
        "estimated_kcal": kcal,
        "protein_g": protein_g,
        "carbs_g": carbs_g,
        "fat_g": fat_g,
        "estimated_cost": cost,
        **micros,
    }


def make_entry(day, dish_name, ingredients, protein_type=None):
    return {
        "day_of_week": day,
        "dish": {
            "name": dish_name,
            "protein_type": protein_type,
            "ingredients": list(ingredients),
        },
    }


POLLO = {"id": "pt-pollo", "name": "Pollo", "color": "#F97316"}
PESCADO = {"id": "pt-pescado", "name": "Pescado", "color": "#0EA5E9"}

WORKSPACE_ID = "ws-1"
WEEK_START = datetime.date(2024, 3, 4)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def estimator():
    return FakeEstimator()


@pytest.fixture
def sample_entries():
    return [
        make_entry("monday", "Pollo al horno", [
            ingredient(kcal=400, protein_g=40, carbs_g=0, fat_g=12, cost=4.0),
            ingredient(kcal=150, protein_g=3, carbs_g=33, fat_g=0.5, cost=0.5),
        ], protein_type=POLLO),
        make_entry("monday", "Ensalada", [
            ingredient(kcal=50, protein_g=2, carbs_g=8, fat_g=1, cost=1.2),
        ]),
        make_entry("thursday", "Salmón a la plancha", [
            ingredient(kcal=600, protein_g=45, carbs_g=2, fat_g=40, cost=9.0),
        ], protein_type=PESCADO),
    ]


@pytest.fixture
def planner_store():
    """A workspace with two protein types, two dishes and no custom slots."""
    return FakeStore({
        "workspaces": [{"id": WORKSPACE_ID, "name": "Clínica Sur #2"}],
        "protein_types": [dict(POLLO, workspace_id=WORKSPACE_ID), dict(PESCADO, workspace_id=WORKSPACE_ID)],
        "dishes": [
            {"id": "dish-1", "workspace_id": WORKSPACE_ID, "name": "Pollo al horno", "protein_type_id": "pt-pollo"},
            {"id": "dish-2", "workspace_id": WORKSPACE_ID, "name": "Arroz blanco", "protein_type_id": None},
        ],
        "ingredients": [
            {"id": "ing-1", "dish_id": "dish-1", "name": "Pechuga de pollo", "quantity": 200, "unit": "g",
             "estimated_kcal": 330, "protein_g": 62, "carbs_g": 0, "fat_g": 7, "estimated_cost": 4.0},
            {"id": "ing-2", "dish_id": "dish-2", "name": "Arroz", "quantity": 100, "unit": "g",
             "estimated_kcal": 130, "protein_g": 2.7, "carbs_g": 28, "fat_g": 0.3, "estimated_cost": 0.4},
        ],
    })


@pytest.fixture
def client(planner_store, estimator, monkeypatch):
    monkeypatch.delenv("BOCADI_BRAND", raising=False)
    from bocadi.app import create_app

    app = create_app(store=planner_store, estimator=estimator)
    app.config['TESTING'] = True
    return app.test_client()
