"""
Tracking API endpoints.

Click endpoints are public: they are hit by visitors' browsers (redirect)
or by the embedded snippet (beacon). Conversions are reported server side
by the checkout and require the master API key.
"""
from flask import Blueprint, jsonify, redirect, request

from linktrack.api.common import get_engine, json_body
from linktrack.middleware.auth import get_client_ip, has_valid_api_key, require_api_key

track_bp = Blueprint('track', __name__, url_prefix='/api/v1/track')

SESSION_COOKIE = 'lt_session'
SESSION_COOKIE_MAX_AGE = 30 * 60

UTM_FIELDS = ('utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content')


def _click_input(values: dict) -> dict:
    """
    Click payload from request values plus the request's own headers.

    Visitor identity is only taken from callers holding the API key, so an
    anonymous visitor cannot attach a user_id to a session.
    """
    click = {field: values.get(field) for field in UTM_FIELDS}
    click.update({
        'ip': get_client_ip(),
        'user_agent': request.headers.get('User-Agent'),
        'referrer': values.get('referrer') or request.referrer,
        'landing_page': values.get('landing_page'),
        'user_id': values.get('user_id') if has_valid_api_key() else None,
    })
    return click


@track_bp.route('/<tracking_id>', methods=['GET'])
def follow_link(tracking_id: str):
    """
    Record a click and redirect the visitor to the link's target.

    UTM values may be passed as query parameters. The visitor's session id
    is set as a short-lived cookie so checkout can report the conversion.
    """
    result = get_engine().record_click(tracking_id, _click_input(request.args))

    response = redirect(result['redirect_url'], code=302)
    response.set_cookie(SESSION_COOKIE, result['session_id'], max_age=SESSION_COOKIE_MAX_AGE, samesite='Lax')
    return response


@track_bp.route('/<tracking_id>/click', methods=['POST'])
def record_click(tracking_id: str):
    """
    Record a click reported by the embed snippet or a server.

    Request body (all optional):
        {
            "referrer": "https://instagram.com/",
            "landing_page": "/products/shirt",
            "utm_source": "instagram",
            "utm_medium": "social",
            "utm_campaign": "spring",
            "utm_term": "shirt",
            "utm_content": "story",
            "user_id": "customer-42"   // Ignored without X-API-Key
        }

    Returns:
        JSON with redirect_url, session_id, click_id and tracking_id (201)
    """
    values = request.get_json(silent=True, force=True) or {}
    if not isinstance(values, dict):
        raise ValueError("Request body must be a JSON object")
    result = get_engine().record_click(tracking_id, _click_input(values))
    return jsonify(result), 201


@track_bp.route('/<tracking_id>/conversion', methods=['POST'])
@require_api_key
def record_conversion(tracking_id: str):
    """
    Attribute a purchase to a link and session.

    Request body:
        {
            "session_id": "9e107d9d372bb6826bd81d3542a419d6",  // Required
            "amount": 120.0,                                     // Required
            "revenue": 100.0,                                    // Optional (default: amount)
            "order_ref": "ORD-1001",
            "user_id": "customer-42",
            "metadata": {"items": 2},
            "occurred_at": "2026-10-19T10:00:00Z"               // Optional
        }

    Returns:
        JSON with conversion, tracking_link totals and ledger_recorded (201)
    """
    data = json_body()
    result = get_engine().record_conversion(
        tracking_id,
        order_ref=data.get('order_ref'),
        amount=data.get('amount'),
        revenue=data.get('revenue'),
        user_id=data.get('user_id'),
        session_id=data.get('session_id'),
        metadata=data.get('metadata'),
        occurred_at=data.get('occurred_at'),
    )
    return jsonify(result), 201
