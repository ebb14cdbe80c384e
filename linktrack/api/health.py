"""
Health check endpoint.

Provides basic health status and database connectivity check.
"""
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from linktrack.models import base

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health_check():
    """
    Health check endpoint.

    Returns application status, database connectivity and whether the
    expiration scheduler is running.

    Example:
        GET /health

        Response:
        {
            "status": "healthy",
            "database": "connected",
            "expiration_scheduler": "stopped",
            "version": "1.0.0"
        }
    """
    status = {
        'status': 'healthy',
        'version': '1.0.0'
    }

    if base.SessionLocal is None:
        status['database'] = 'not_initialized'
        status['status'] = 'degraded'
    else:
        db = base.SessionLocal()
        try:
            db.execute(text('SELECT 1'))
            status['database'] = 'connected'
        except SQLAlchemyError as e:
            status['database'] = 'error'
            status['database_error'] = str(e)
            status['status'] = 'unhealthy'
        finally:
            db.close()

    scheduler = current_app.extensions.get('expiration_scheduler')
    status['expiration_scheduler'] = 'running' if scheduler is not None and scheduler.running else 'stopped'

    status_code = 200 if status['status'] == 'healthy' else 503

    return jsonify(status), status_code


@health_bp.route('/ping', methods=['GET'])
def ping():
    """
    Simple ping endpoint.

    Returns:
        JSON response with pong message
    """
    return jsonify({'message': 'pong'}), 200
