"""
Barbershop Reminders - Flask Application
Main application entry point
"""
import sys
import os
import json
import time
from pathlib import Path
from dotenv import load_dotenv

# Determine project root (2 levels up from this file)
SERVICE_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = SERVICE_DIR.parent.parent.resolve()

# Load environment variables from .env file at project root
env_path = PROJECT_ROOT / '.env'
if env_path.exists():
    load_dotenv(env_path)

# Add project root to path for absolute imports
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter.errors import RateLimitExceeded
from sqlalchemy import text

from apps.reminders.config import Config, get_config
from apps.reminders import db, migrate, limiter, __version__
from apps.reminders.utils import message_log, queue_store
from apps.reminders.utils.whatsapp_gateway import get_provider_status


SERVICE_NAME = 'Barbershop Reminders API'


def create_app(config_class=Config):
    """Application factory pattern"""
    app = Flask(__name__)
    app.config.from_object(config_class)

    db_url = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    if 'postgresql' in db_url:
        app.logger.info("Database: PostgreSQL")
    elif 'sqlite' in db_url:
        app.logger.info("Database: SQLite (local)")

    config_class.init_app(app)

    # Initialize extensions with app
    db.init_app(app)
    migrate.init_app(app, db, directory=str(SERVICE_DIR / 'migrations'))

    # Flask-Limiter reads RATELIMIT_ENABLED itself
    limiter.init_app(app)
    if not app.config.get('RATELIMIT_ENABLED', True):
        app.logger.warning("Rate limiting is DISABLED - not recommended for production")

    # Reminder queue and message log (durable, or memory-only per REMINDER_QUEUE_BACKEND)
    queue_store.init_app(app)
    message_log.init_app(app)
    app.logger.info("Reminder queue backend: %s", app.config['REMINDER_QUEUE_BACKEND'])

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses."""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        if not app.config.get('DEBUG'):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        # Never leak raw exception details in non-debug environments.
        if not app.config.get('DEBUG') and not app.config.get('TESTING') \
                and response.status_code >= 400 and response.is_json:
            payload = response.get_json(silent=True)
            if isinstance(payload, dict) and 'details' in payload:
                payload.pop('details', None)
                response.set_data(json.dumps(payload))
                response.headers['Content-Type'] = 'application/json'

        return response

    # CORS configuration
    # NOTE: Cannot use wildcard ("*") with supports_credentials=True
    cors_origins = []
    is_production = (app.config.get('FLASK_ENV') == 'production') and not app.config.get('DEBUG')

    for key in ('WEB_URL', 'ADMIN_URL'):
        value = (app.config.get(key) or '').strip()
        if value:
            cors_origins.append(value)

    # Optional explicit allowlist: comma-separated origins.
    extra_origins = (os.getenv('CORS_ALLOWED_ORIGINS') or '').split(',')
    cors_origins.extend([o.strip() for o in extra_origins if o.strip()])

    if not is_production:
        cors_origins.extend([
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ])

    cors_origins = list(dict.fromkeys(o for o in cors_origins if o))

    if is_production and not cors_origins:
        raise RuntimeError(
            "CORS configuration error: set WEB_URL/ADMIN_URL or CORS_ALLOWED_ORIGINS in production."
        )

    CORS(app,
         origins=cors_origins,
         methods=["GET", "POST", "DELETE", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
         supports_credentials=True,
         expose_headers=["Content-Type"])

    # Register blueprints
    from apps.reminders.routes import reminders_bp

    app.register_blueprint(reminders_bp)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint for monitoring"""
        return jsonify({
            'status': 'ok',
            'service': SERVICE_NAME,
            'version': __version__,
            'queue_backend': app.config['REMINDER_QUEUE_BACKEND'],
            'whatsapp': get_provider_status(),
        }), 200

    @app.route('/health/db', methods=['GET'])
    def db_health_check():
        """Health check endpoint that tests database connectivity"""
        start = time.time()
        try:
            db.session.execute(text('SELECT 1')).fetchone()
            db.session.rollback()  # Don't leave transaction open
            elapsed = time.time() - start
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'latency_ms': round(elapsed * 1000, 2),
                'service': SERVICE_NAME,
            }), 200
        except Exception as e:
            elapsed = time.time() - start
            app.logger.error("Database health check failed: %s", e)
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'latency_ms': round(elapsed * 1000, 2),
                'error': str(e)[:200]
            }), 503

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    # Flask-Limiter rate limit handler (ensure JSON, not HTML)
    @app.errorhandler(RateLimitExceeded)
    def ratelimit_handler(error):
        payload = {'error': 'Rate limit exceeded'}
        desc = getattr(error, 'description', None)
        if desc:
            payload['details'] = str(desc)
        resp = jsonify(payload)
        resp.status_code = 429
        return resp

    return app


if __name__ == '__main__':
    app = create_app(get_config())
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=app.config['DEBUG']
    )
