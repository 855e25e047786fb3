"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import hmac
from flask import Flask, request, jsonify


def create_app():
    """Create and configure the Flask application."""
    from leadsync.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # ── Bearer token auth ───────────────────────────────────────────────
    from leadsync.config import API_TOKEN

    OPEN_PATHS = {'/health', '/api/trello/webhook'}

    @app.before_request
    def require_token():
        if not API_TOKEN:
            return  # No token set: open access (local dev)
        if request.path in OPEN_PATHS or not request.path.startswith('/api/'):
            return
        header = request.headers.get('Authorization', '')
        supplied = header[7:] if header.startswith('Bearer ') else ''
        if supplied and hmac.compare_digest(supplied, API_TOKEN):
            return
        return jsonify({'error': 'Unauthorized'}), 401

    # Register blueprints
    from leadsync.routes.health import bp as health_bp
    from leadsync.routes.trello import bp as trello_bp
    from leadsync.routes.webhook import bp as webhook_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(trello_bp)
    app.register_blueprint(webhook_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic, no init_db() call.
    import importlib
    importlib.import_module('leadsync.models.user')
    importlib.import_module('leadsync.models.trello_settings')
    importlib.import_module('leadsync.models.lead')
    importlib.import_module('leadsync.models.sync_run')

    return app
