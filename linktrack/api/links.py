"""
Link management API endpoints.

Create, list, inspect, update and extend tracking links, and read their
analytics. Every endpoint requires the master API key.
"""
import csv
import io

from flask import Blueprint, Response, jsonify, request

from linktrack.api.common import get_engine, json_body, query_bool, query_number
from linktrack.middleware.auth import request_authorizer, require_api_key

links_bp = Blueprint('links', __name__, url_prefix='/api/v1/links')

PERFORMANCE_CSV_COLUMNS = [
    'tracking_id', 'campaign_name', 'status', 'created_at', 'expires_at',
    'clicks', 'conversions', 'revenue', 'click_through_rate',
    'average_order_value', 'revenue_per_click',
]


@links_bp.route('', methods=['POST'])
@require_api_key
def create_link():
    """
    Generate a tracking link.

    Request body:
        {
            "campaign_name": "Spring Sale",      // Required
            "source": "newsletter",               // Required
            "medium": "email",                    // Required
            "ttl_hours": 24,                      // Optional (default: DEFAULT_LINK_TTL_HOURS)
            "max_clicks": 500,                    // Optional
            "metadata": {"owner": "growth"},      // Optional
            "target_url": "https://shop.example.com/spring"  // Optional
        }

    Returns:
        JSON link summary with tracking_url, short_url and embed_code (201)
    """
    data = json_body()
    link = get_engine().create_link(
        request_authorizer(),
        campaign_name=data.get('campaign_name'),
        source=data.get('source'),
        medium=data.get('medium'),
        ttl_hours=data.get('ttl_hours'),
        max_clicks=data.get('max_clicks'),
        metadata=data.get('metadata'),
        target_url=data.get('target_url'),
    )
    return jsonify(link), 201


@links_bp.route('/bulk', methods=['POST'])
@require_api_key
def create_bulk_links():
    """
    Generate several links from a template.

    Request body:
        {
            "count": 5,
            "template": {"campaign_name": "Influencers", "source": "instagram", "medium": "social"}
        }
    """
    data = json_body()
    result = get_engine().generate_bulk_links(
        request_authorizer(),
        count=data.get('count', 5),
        template=data.get('template'),
    )
    return jsonify(result), 201


@links_bp.route('', methods=['GET'])
@require_api_key
def list_links():
    """
    List tracking links.

    Query parameters:
        status: active | expired | limit_reached
        campaign_name: Case-insensitive substring
        start_date, end_date: ISO 8601 bounds on creation time
        sort_by: created_at | expires_at | total_clicks | total_conversions | total_revenue | campaign_name
        sort_order: asc | desc (default: desc)
        page: Page number (default: 1)
        limit: Page size (default: 20, max: 100)
    """
    criteria = {
        'status': request.args.get('status'),
        'campaign_name': request.args.get('campaign_name'),
        'start_date': request.args.get('start_date'),
        'end_date': request.args.get('end_date'),
        'sort_by': request.args.get('sort_by'),
        'sort_order': request.args.get('sort_order'),
        'page': query_number('page', 1),
        'limit': query_number('limit', 20),
    }
    return jsonify(get_engine().list_links(request_authorizer(), criteria)), 200


@links_bp.route('/performance', methods=['GET'])
@require_api_key
def performance_report():
    """
    Performance report for links created in a period.

    Query parameters:
        start_date, end_date: ISO 8601 (default: last 30 days)
        min_clicks, min_revenue: Lower bounds
        format: json | csv (default: json)
    """
    report = get_engine().performance_report(
        request_authorizer(),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
        min_clicks=query_number('min_clicks', 0),
        min_revenue=query_number('min_revenue', 0, cast=float),
    )

    if request.args.get('format') == 'csv':
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=PERFORMANCE_CSV_COLUMNS, extrasaction='ignore')
        writer.writeheader()
        writer.writerows(report['links'])
        return Response(
            buffer.getvalue(),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=link-performance.csv'},
        )

    return jsonify(report), 200


@links_bp.route('/expire', methods=['POST'])
@require_api_key
def sweep_expired():
    """Run the expiration sweep now."""
    request_authorizer().require_link_admin()
    return jsonify(get_engine().sweep_expired()), 200


@links_bp.route('/<tracking_id>', methods=['GET'])
@require_api_key
def get_link(tracking_id: str):
    return jsonify(get_engine().get_link(request_authorizer(), tracking_id)), 200


@links_bp.route('/<tracking_id>', methods=['PATCH'])
@require_api_key
def update_link(tracking_id: str):
    """
    Update a link's descriptive fields.

    Request body may contain campaign_name, max_clicks, metadata and notes.
    """
    return jsonify(get_engine().update_link(request_authorizer(), tracking_id, json_body())), 200


@links_bp.route('/<tracking_id>/extend', methods=['POST'])
@require_api_key
def extend_link(tracking_id: str):
    """
    Extend a link's expiry and reactivate it.

    Request body:
        {"additional_hours": 12}
    """
    data = json_body()
    result = get_engine().extend_expiry(request_authorizer(), tracking_id, data.get('additional_hours'))
    return jsonify(result), 200


@links_bp.route('/<tracking_id>/analytics', methods=['GET'])
@require_api_key
def link_analytics(tracking_id: str):
    """
    Analytics report for a link.

    Query parameters:
        timeframe: 1h | 6h | 12h | 24h | 7d | 30d (default: 24h)
        detailed: true to include recent events, top sessions and the funnel
    """
    report = get_engine().get_analytics(
        request_authorizer(),
        tracking_id,
        timeframe=request.args.get('timeframe', '24h'),
        detailed=query_bool('detailed'),
    )
    return jsonify(report), 200
