"""
SmartImport Web Application Factory

Flask app that registers module blueprints.
Mirrors how cli/main.py assembles module CLIs.
"""

from flask import Flask, jsonify


def create_app() -> Flask:
    """Create and configure the SmartImport Flask application."""
    app = Flask(__name__)

    from smartimport.core.config import get_config_value

    # Largest accepted upload; schedule exports are a few MB at most
    app.config["MAX_CONTENT_LENGTH"] = int(
        get_config_value("api", "max_upload_mb", default=16)
    ) * 1024 * 1024

    # ── Security headers ─────────────────────────────────────────────────
    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    # ── Register blueprints ──────────────────────────────────────────────
    from smartimport.api.imports import bp as imports_bp
    app.register_blueprint(imports_bp)

    @app.route("/health")
    def health():
        import smartimport

        return jsonify({"status": "ok", "version": smartimport.__version__})

    return app
