"""API blueprints package."""
from linktrack.api.health import health_bp
from linktrack.api.links import links_bp
from linktrack.api.track import track_bp

__all__ = [
    "health_bp",
    "links_bp",
    "track_bp",
]
