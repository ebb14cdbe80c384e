"""Helpers shared by the API blueprints."""
from flask import current_app, request

from linktrack.services.engine import TrackingEngine


def get_engine() -> TrackingEngine:
    """Tracking engine created by the application factory."""
    return current_app.extensions['tracking_engine']


def json_body() -> dict:
    """
    Parsed JSON request body.

    Raises:
        ValueError: If the body is missing or not a JSON object
    """
    data = request.get_json(silent=True)
    if data is None:
        raise ValueError("Request body is required")
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def query_bool(name: str, default: bool = False) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def query_number(name: str, default=None, cast=int):
    """
    Numeric query parameter.

    Raises:
        ValueError: If the parameter is present but not a number
    """
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"{name} must be a number")
