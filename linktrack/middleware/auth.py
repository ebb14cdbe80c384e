"""
Authentication middleware.

Provides API key authentication via the X-API-Key header for management and
conversion endpoints. Click endpoints are public.
"""
import hmac
from functools import wraps
from typing import Callable, Optional

from flask import request, jsonify

from linktrack.config import settings
from linktrack.services.authorization import ApiKeyAuthorizer


def require_api_key(f: Callable) -> Callable:
    """
    Decorator to require API key authentication.

    Checks for X-API-Key header and validates against MASTER_API_KEY.

    Usage:
        @links_bp.route('/protected')
        @require_api_key
        def protected_route():
            return {'message': 'success'}

    Raises:
        401: If API key is missing or invalid
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = request.headers.get('X-API-Key')

        if not api_key:
            return jsonify({
                'error': 'Missing API key',
                'message': 'X-API-Key header is required'
            }), 401

        if not hmac.compare_digest(api_key.encode(), settings.master_api_key.encode()):
            return jsonify({
                'error': 'Invalid API key',
                'message': 'The provided API key is invalid'
            }), 401

        return f(*args, **kwargs)

    return decorated_function


def has_valid_api_key() -> bool:
    """Whether the current request carries the master API key."""
    api_key = request.headers.get('X-API-Key')
    if not api_key:
        return False
    return hmac.compare_digest(api_key.encode(), settings.master_api_key.encode())


def request_authorizer() -> ApiKeyAuthorizer:
    """Authorizer for the current request's API key."""
    return ApiKeyAuthorizer(request.headers.get('X-API-Key'))


def get_client_ip() -> Optional[str]:
    """
    Get client IP address from request.

    Handles proxy headers (X-Forwarded-For, X-Real-IP).

    Returns:
        Client IP address as string, or None if unknown
    """
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, the client is the first
        return forwarded.split(',')[0].strip()

    if request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP').strip()

    return request.remote_addr
