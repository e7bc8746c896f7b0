import datetime
import logging
import traceback

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

from . import config
from .aggregation import week_summary
from .catalog import get_nutritionist_profile
from .errors import ValidationError
from .nutrition_cache import estimate
from .pdf_report import ReportOptions, generate_nutrition_report, report_filename
from .planner import fetch_week_entries, week_bounds
from .supabase_api import get_estimator, get_store, handle_supabase_error, supabase_bp

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

WORKSPACES_TABLE = "workspaces"


def create_app(store=None, estimator=None):
    """
    Build the Flask app.

    `store` and `estimator` are resolved from the environment on first use
    when not given.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    if store is not None:
        app.extensions['bocadi_store'] = store
    if estimator is not None:
        app.extensions['bocadi_estimator'] = estimator

    app.register_blueprint(supabase_bp)
    logger.info("✅ Supabase API blueprint registered")

    @app.route("/api/estimate-kcal", methods=["POST"])
    def estimate_kcal():
        try:
            payload = request.get_json(silent=True)
            if payload is None:
                raise ValidationError("JSON body is required")
            force_recalc = request.args.get("forceRecalc", "").lower() in ("1", "true")
            results = estimate(get_store(), payload, get_estimator(), force_recalc=force_recalc)
            return jsonify({"results": results})
        except Exception as e:
            return handle_supabase_error(e, 'estimate_kcal')

    @app.route("/api/summary", methods=["GET"])
    def summary():
        try:
            workspace_id = request.args.get('workspace_id')
            week_start = request.args.get('week_start')
            if not workspace_id or not week_start:
                raise ValidationError("workspace_id and week_start are required")
            entries = fetch_week_entries(get_store(), workspace_id, week_start)
            monday, sunday = week_bounds(week_start)
            return jsonify({
                "week_start": monday.isoformat(),
                "week_end": sunday.isoformat(),
                **week_summary(entries),
            })
        except Exception as e:
            return handle_supabase_error(e, 'summary')

    @app.route("/api/report", methods=["POST"])
    def report():
        payload = request.get_json(silent=True) or {}
        workspace_id = payload.get('workspace_id')
        if not workspace_id or not payload.get('week_start'):
            return jsonify({"error": "workspace_id and week_start are required"}), 400
        try:
            store = get_store()
            monday, sunday = week_bounds(payload['week_start'])
            entries = fetch_week_entries(store, workspace_id, monday)
            workspace = store.select_one(WORKSPACES_TABLE, {"id": workspace_id}) or {}
            workspace_name = workspace.get('name') or 'workspace'

            options = ReportOptions(
                entries=entries,
                week_start=monday,
                week_end=sunday,
                workspace_name=workspace_name,
                user_email=payload.get('user_email') or '',
                nutritionist=get_nutritionist_profile(store, workspace_id),
                brand=config.brand(),
                generated_at=datetime.datetime.now(),
            )
            pdf_buffer = generate_nutrition_report(options)
            return send_file(
                pdf_buffer,
                mimetype="application/pdf",
                as_attachment=True,
                download_name=report_filename(workspace_name, monday, sunday, config.brand()),
            )
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.error(f"❌ Report generation failed: {e}")
            logger.error(traceback.format_exc())
            return jsonify({"error": f"Report generation failed: {str(e)}"}), 500

    return app


app = create_app()


def main():
    app.run(host="0.0.0.0", port=config.port())


if __name__ == "__main__":
    main()
