"""
Database API Blueprint for the Bocadi planner
All Supabase CRUD used by the planner UI, mounted under /api/db

CORS is handled by the main Flask app in bocadi.app (all /api/* routes).
Every route takes the workspace explicitly (`workspace_id` query argument
or JSON field).
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from . import catalog, planner
from .errors import NotFound, ProteinTypeInUse, ValidationError
from .nutrition_cache import estimate, requests_for_ingredients
from .store import create_store

# Initialize logging
logger = logging.getLogger(__name__)

# Create Flask Blueprint
supabase_bp = Blueprint('supabase_api', __name__, url_prefix='/api/db')


def get_store():
    """The app's store, created from the environment on first use."""
    store = current_app.extensions.get('bocadi_store')
    if store is None:
        store = create_store()
        current_app.extensions['bocadi_store'] = store
    return store


def get_estimator():
    # None lets nutrition_cache build the configured provider lazily
    return current_app.extensions.get('bocadi_estimator')


# Helper function to handle Supabase errors
def handle_supabase_error(error, operation):
    if isinstance(error, ValidationError):
        logger.warning(f"⚠️ Invalid request in {operation}: {error}")
        return jsonify({"error": str(error)}), 400
    if isinstance(error, NotFound):
        return jsonify({"error": str(error)}), 404
    if isinstance(error, ProteinTypeInUse):
        return jsonify({"error": str(error), "count": error.count}), 409
    logger.error(f"❌ Error in {operation}: {error}")
    return jsonify({"error": str(error)}), 500


def _payload():
    return request.get_json(silent=True) or {}


def _workspace_id(payload=None):
    workspace_id = (payload or {}).get('workspace_id') or request.args.get('workspace_id')
    if not workspace_id:
        raise ValidationError("workspace_id is required")
    return workspace_id


def _week_start(payload=None):
    value = (payload or {}).get('week_start') or request.args.get('week_start')
    if not value:
        raise ValidationError("week_start is required")
    return planner.parse_week_start(value)


# ==================== PROTEIN TYPES ENDPOINTS ====================

@supabase_bp.route("/protein-types", methods=["GET"])
def list_protein_types():
    try:
        return jsonify(catalog.list_protein_types(get_store(), _workspace_id())), 200
    except Exception as e:
        return handle_supabase_error(e, 'list_protein_types')


@supabase_bp.route("/protein-types", methods=["POST"])
def create_protein_type():
    try:
        payload = _payload()
        protein_type = catalog.create_protein_type(
            get_store(), _workspace_id(payload), payload.get('name'), payload.get('color')
        )
        return jsonify(protein_type), 201
    except Exception as e:
        return handle_supabase_error(e, 'create_protein_type')


@supabase_bp.route("/protein-types/<protein_type_id>", methods=["DELETE"])
def delete_protein_type(protein_type_id):
    try:
        catalog.delete_protein_type(get_store(), protein_type_id)
        return jsonify({"message": "Protein type deleted"}), 200
    except Exception as e:
        return handle_supabase_error(e, 'delete_protein_type')


# ==================== DISHES ENDPOINTS ====================

@supabase_bp.route("/dishes", methods=["GET"])
def list_dishes():
    try:
        return jsonify(catalog.list_dishes(get_store(), _workspace_id())), 200
    except Exception as e:
        return handle_supabase_error(e, 'list_dishes')


def _save_dish(payload, dish_id=None):
    store = get_store()
    dish, ingredients = catalog.save_dish(store, _workspace_id(payload), payload, dish_id)
    # New ingredient rows start unestimated
    nutrition = estimate(store, requests_for_ingredients(ingredients), get_estimator())
    return {**dish, "ingredients": ingredients, "nutrition": nutrition}


@supabase_bp.route("/dishes", methods=["POST"])
def create_dish():
    try:
        return jsonify(_save_dish(_payload())), 201
    except Exception as e:
        return handle_supabase_error(e, 'create_dish')


@supabase_bp.route("/dishes/<dish_id>", methods=["PUT"])
def update_dish(dish_id):
    try:
        return jsonify(_save_dish(_payload(), dish_id)), 200
    except Exception as e:
        return handle_supabase_error(e, 'update_dish')


@supabase_bp.route("/dishes/<dish_id>", methods=["DELETE"])
def delete_dish(dish_id):
    try:
        catalog.delete_dish(get_store(), dish_id)
        return jsonify({"message": "Dish deleted"}), 200
    except Exception as e:
        return handle_supabase_error(e, 'delete_dish')


# ==================== MEAL SLOTS ENDPOINTS ====================

@supabase_bp.route("/meal-slots", methods=["GET"])
def list_meal_slots():
    try:
        slots, using_fallback = planner.list_meal_slots(get_store(), _workspace_id(), _week_start())
        return jsonify({"slots": slots, "using_fallback": using_fallback}), 200
    except Exception as e:
        return handle_supabase_error(e, 'list_meal_slots')


@supabase_bp.route("/meal-slots", methods=["POST"])
def create_meal_slot():
    try:
        payload = _payload()
        slot = planner.add_meal_slot(get_store(), _workspace_id(payload), payload.get('name'))
        return jsonify(slot), 201
    except Exception as e:
        return handle_supabase_error(e, 'create_meal_slot')


@supabase_bp.route("/meal-slots/<slot_id>/hide", methods=["POST"])
def hide_meal_slot(slot_id):
    """Hide a slot for a single week"""
    try:
        payload = _payload()
        hidden = planner.hide_meal_slot(
            get_store(), _workspace_id(payload), slot_id, _week_start(payload)
        )
        return jsonify(hidden), 201
    except Exception as e:
        return handle_supabase_error(e, 'hide_meal_slot')


# ==================== WEEK PLAN ENDPOINTS ====================

@supabase_bp.route("/week-plan", methods=["GET"])
def list_week_plan():
    try:
        entries = planner.fetch_week_entries(get_store(), _workspace_id(), _week_start())
        return jsonify(entries), 200
    except Exception as e:
        return handle_supabase_error(e, 'list_week_plan')


@supabase_bp.route("/week-plan", methods=["POST"])
def place_dish():
    try:
        payload = _payload()
        entry = planner.place_dish(
            get_store(),
            _workspace_id(payload),
            payload.get('dish_id'),
            _week_start(payload),
            payload.get('day_of_week'),
            payload.get('slot_id'),
            bool(payload.get('using_fallback')),
        )
        return jsonify(entry), 201
    except Exception as e:
        return handle_supabase_error(e, 'place_dish')


@supabase_bp.route("/week-plan/<entry_id>", methods=["DELETE"])
def remove_entry(entry_id):
    try:
        planner.remove_entry(get_store(), entry_id)
        return jsonify({"message": "Entry removed"}), 200
    except Exception as e:
        return handle_supabase_error(e, 'remove_entry')


@supabase_bp.route("/week-plan/<entry_id>/move", methods=["POST"])
def move_entry(entry_id):
    try:
        payload = _payload()
        entry = planner.move_entry(
            get_store(),
            entry_id,
            payload.get('day_of_week'),
            payload.get('slot_id'),
            bool(payload.get('using_fallback')),
        )
        return jsonify(entry), 200
    except Exception as e:
        return handle_supabase_error(e, 'move_entry')


# ==================== NUTRITIONIST PROFILE ENDPOINTS ====================

@supabase_bp.route("/nutritionist-profile", methods=["GET"])
def get_nutritionist_profile():
    try:
        profile = catalog.get_nutritionist_profile(get_store(), _workspace_id())
        return jsonify(profile), 200
    except Exception as e:
        return handle_supabase_error(e, 'get_nutritionist_profile')


@supabase_bp.route("/nutritionist-profile", methods=["PUT"])
def save_nutritionist_profile():
    try:
        payload = _payload()
        profile = catalog.save_nutritionist_profile(get_store(), _workspace_id(payload), payload)
        return jsonify(profile), 200
    except Exception as e:
        return handle_supabase_error(e, 'save_nutritionist_profile')
