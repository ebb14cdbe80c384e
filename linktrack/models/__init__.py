"""Database models package."""
from linktrack.models.base import Base
from linktrack.models.ledger import RevenueEntry
from linktrack.models.tracking import Click, Conversion, LinkStatus, TrackingLink, VisitorSession

__all__ = ["Base", "Click", "Conversion", "LinkStatus", "RevenueEntry", "TrackingLink", "VisitorSession"]
