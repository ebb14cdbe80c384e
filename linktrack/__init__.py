"""
Flask application factory.

Creates and configures the Flask application with the tracking engine,
blueprints and JSON error handlers.
"""
import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from linktrack.config import settings
from linktrack.models import Base
from linktrack.models import base
from linktrack.services.engine import TrackingEngine
from linktrack.services.errors import LedgerWriteError, TrackingError
from linktrack.services.expiration import ExpirationScheduler

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(config_override: dict = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_override: Optional dictionary to override settings. Besides
            Flask keys it understands DATABASE_URL, CREATE_TABLES,
            TRACKING_CLOCK, GEOLOCATION_CLIENT and REVENUE_LEDGER.

    Returns:
        Configured Flask application instance

    Usage:
        app = create_app()
        app.run()
    """
    configure_logging()
    app = Flask(__name__)

    # Configure Flask
    app.config['SECRET_KEY'] = settings.secret_key
    app.config['DEBUG'] = settings.debug
    app.config['ENV'] = settings.flask_env

    # Apply any config overrides (useful for testing)
    if config_override:
        app.config.update(config_override)

    # Initialize database
    try:
        database_url = app.config.get('DATABASE_URL') or settings.get_database_url()
        base.init_db(database_url)
        if app.config.get('CREATE_TABLES'):
            Base.metadata.create_all(bind=base.engine)
        logger.info("[App] Database initialized")
    except Exception as e:
        logger.warning("[App] Could not initialize database: %s", e)
        logger.warning("[App] The application will start but database operations will fail")

    engine_kwargs = {}
    if app.config.get('TRACKING_CLOCK'):
        engine_kwargs['clock'] = app.config['TRACKING_CLOCK']
    if app.config.get('GEOLOCATION_CLIENT') is not None:
        engine_kwargs['geolocation_client'] = app.config['GEOLOCATION_CLIENT']
    if app.config.get('REVENUE_LEDGER') is not None:
        engine_kwargs['ledger'] = app.config['REVENUE_LEDGER']

    tracking_engine = TrackingEngine(**engine_kwargs)
    app.extensions['tracking_engine'] = tracking_engine

    if settings.expiration_sweep_enabled and not app.config.get('TESTING'):
        scheduler = ExpirationScheduler(tracking_engine.expiration, settings.expiration_sweep_interval_seconds)
        scheduler.start()
        app.extensions['expiration_scheduler'] = scheduler

    # Register blueprints
    from linktrack.api import health_bp, links_bp, track_bp
    app.register_blueprint(health_bp)
    app.register_blueprint(links_bp)
    app.register_blueprint(track_bp)

    # Register error handlers
    register_error_handlers(app)

    # Add CORS headers for API responses
    @app.after_request
    def after_request(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type,X-API-Key'
        response.headers['Access-Control-Allow-Methods'] = 'GET,POST,PATCH,OPTIONS'
        return response

    @app.route('/')
    def index():
        """Root endpoint with API information."""
        return jsonify({
            'name': 'linktrack',
            'version': '1.0.0',
            'description': 'Tracking-link attribution and analytics API',
            'endpoints': {
                'health': '/health',
                'ping': '/ping',
                'links': '/api/v1/links',
                'track': '/api/v1/track',
            },
        })

    return app


def register_error_handlers(app: Flask) -> None:
    """
    Register global error handlers.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(TrackingError)
    def handle_tracking_error(e):
        """Map domain errors to their HTTP status."""
        if isinstance(e, LedgerWriteError):
            app.logger.error(f"Ledger write failed: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        """Handle invalid input."""
        return jsonify({
            'error': 'Bad request',
            'message': str(e)
        }), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle HTTP exceptions."""
        return jsonify({
            'error': e.name,
            'message': e.description,
            'status_code': e.code
        }), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions."""
        app.logger.error(f"Unhandled exception: {str(e)}", exc_info=True)

        # Don't reveal internal errors in production
        if settings.is_production:
            return jsonify({
                'error': 'Internal server error',
                'message': 'An unexpected error occurred'
            }), 500
        else:
            return jsonify({
                'error': 'Internal server error',
                'message': str(e),
                'type': type(e).__name__
            }), 500

    @app.errorhandler(404)
    def handle_not_found(e):
        """Handle 404 errors."""
        return jsonify({
            'error': 'Not found',
            'message': 'The requested resource was not found'
        }), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        """Handle 405 errors."""
        return jsonify({
            'error': 'Method not allowed',
            'message': 'The method is not allowed for the requested URL'
        }), 405
