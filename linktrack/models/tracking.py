"""
Database models for tracking links and their event history.

A TrackingLink is the aggregate root; clicks, visitor sessions and
conversions are child rows owned by exactly one link. Raw visitor IPs are
encrypted at rest using Fernet.
"""
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Column, DateTime, Float, ForeignKey, Integer, JSON,
    LargeBinary, String, Text, UniqueConstraint, func
)
from sqlalchemy.orm import relationship

from linktrack.models.base import Base, GUID
from linktrack.services.encryption import encryption_service


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class LinkStatus:
    """Lifecycle states of a tracking link."""

    ACTIVE = 'active'
    EXPIRED = 'expired'
    LIMIT_REACHED = 'limit_reached'

    ALL = (ACTIVE, EXPIRED, LIMIT_REACHED)


class TrackingLink(Base):
    """
    Short-lived marketing link.

    Running totals are derived from the click and conversion rows and are
    rewritten by the link store on every mutation. The version column guards
    concurrent writers with optimistic locking.
    """

    __tablename__ = "tracking_links"

    id = Column(GUID, primary_key=True, default=uuid4)
    tracking_id = Column(String(64), unique=True, nullable=False, index=True)
    token = Column(String(64), unique=True, nullable=False)
    short_code = Column(String(16), unique=True, nullable=False)

    # Campaign
    campaign_name = Column(Text, nullable=False, index=True)
    source = Column(String(100), nullable=False)
    medium = Column(String(100), nullable=False)
    target_url = Column(Text, nullable=False)
    tracking_url = Column(Text, nullable=False)

    # Lifecycle
    status = Column(String(20), nullable=False, default=LinkStatus.ACTIVE, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    max_clicks = Column(Integer, nullable=True)

    # Running totals
    total_clicks = Column(Integer, nullable=False, default=0)
    total_conversions = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Float, nullable=False, default=0.0)
    attributed_revenue = Column(Float, nullable=False, default=0.0)
    conversion_rate = Column(Float, nullable=False, default=0.0)
    average_order_value = Column(Float, nullable=False, default=0.0)

    # Tallies
    geo_stats = Column(JSON, nullable=False, default=lambda: {'countries': {}})
    device_stats = Column(JSON, nullable=False, default=lambda: {'mobile': 0, 'tablet': 0, 'desktop': 0})
    browser_stats = Column(JSON, nullable=False, default=dict)

    link_metadata = Column('metadata', JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=True)

    last_click_at = Column(DateTime, nullable=True)
    last_conversion_at = Column(DateTime, nullable=True)
    last_revenue_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    clicks = relationship(
        "Click",
        back_populates="link",
        cascade="all, delete-orphan",
        order_by=lambda: [Click.occurred_at, Click.recorded_at],
    )
    sessions = relationship(
        "VisitorSession",
        back_populates="link",
        cascade="all, delete-orphan",
        order_by="VisitorSession.started_at",
    )
    conversions = relationship(
        "Conversion",
        back_populates="link",
        cascade="all, delete-orphan",
        order_by=lambda: [Conversion.occurred_at, Conversion.recorded_at],
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TrackingLink {self.tracking_id} ({self.status})>"

    def is_active_at(self, now: datetime) -> bool:
        """A link accepts clicks only while active and not past expiry."""
        return self.status == LinkStatus.ACTIVE and self.expires_at > now

    def seconds_remaining(self, now: datetime) -> int:
        return max(int((self.expires_at - now).total_seconds()), 0)

    def to_dict(self) -> dict:
        """
        Convert link to dictionary.

        Returns:
            Dictionary representation (event history excluded)
        """
        return {
            "id": str(self.id),
            "tracking_id": self.tracking_id,
            "short_code": self.short_code,
            "campaign_name": self.campaign_name,
            "source": self.source,
            "medium": self.medium,
            "target_url": self.target_url,
            "tracking_url": self.tracking_url,
            "status": self.status,
            "expires_at": _iso(self.expires_at),
            "max_clicks": self.max_clicks,
            "total_clicks": self.total_clicks,
            "total_conversions": self.total_conversions,
            "total_revenue": round(self.total_revenue or 0.0, 2),
            "attributed_revenue": round(self.attributed_revenue or 0.0, 2),
            "conversion_rate": round(self.conversion_rate or 0.0, 2),
            "average_order_value": round(self.average_order_value or 0.0, 2),
            "geo_stats": self.geo_stats,
            "device_stats": self.device_stats,
            "browser_stats": self.browser_stats,
            "metadata": self.link_metadata,
            "notes": self.notes,
            "last_click_at": _iso(self.last_click_at),
            "last_conversion_at": _iso(self.last_conversion_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Click(Base):
    """
    One recorded visit through a tracking link.

    Write-once. The raw IP is only available through the decrypting
    ``ip`` property.
    """

    __tablename__ = "link_clicks"

    id = Column(GUID, primary_key=True, default=uuid4)
    link_id = Column(GUID, ForeignKey("tracking_links.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(32), nullable=False, index=True)

    occurred_at = Column(DateTime, nullable=False, index=True)
    recorded_at = Column(DateTime, nullable=False)

    ip_encrypted = Column(LargeBinary, nullable=True)
    ip_hash = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=False, default='direct')
    landing_page = Column(Text, nullable=False, default='/')

    utm_source = Column(Text, nullable=True)
    utm_medium = Column(Text, nullable=True)
    utm_campaign = Column(Text, nullable=True)
    utm_term = Column(Text, nullable=True)
    utm_content = Column(Text, nullable=True)

    user_id = Column(String(255), nullable=True)

    # Derived signals, absent when resolution failed
    location = Column(JSON, nullable=True)
    device = Column(JSON, nullable=True)

    link = relationship("TrackingLink", back_populates="clicks")

    def __repr__(self) -> str:
        return f"<Click {self.session_id} @ {self.occurred_at}>"

    @property
    def ip(self) -> Optional[str]:
        """Decrypt and return the source IP."""
        return encryption_service.decrypt_optional(self.ip_encrypted)

    @ip.setter
    def ip(self, value: Optional[str]) -> None:
        """Encrypt and store the source IP together with its hash."""
        self.ip_encrypted = encryption_service.encrypt_optional(value)
        self.ip_hash = encryption_service.hash_ip(value)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "session_id": self.session_id,
            "occurred_at": _iso(self.occurred_at),
            "ip_hash": self.ip_hash,
            "user_agent": self.user_agent,
            "referrer": self.referrer,
            "landing_page": self.landing_page,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "utm_term": self.utm_term,
            "utm_content": self.utm_content,
            "user_id": self.user_id,
            "location": self.location,
            "device": self.device,
        }


class VisitorSession(Base):
    """
    Time-bounded grouping of clicks from one inferred visitor.

    Identified by the session fingerprint, unique within its link.
    """

    __tablename__ = "link_sessions"
    __table_args__ = (
        UniqueConstraint("link_id", "session_id", name="uq_link_session"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    link_id = Column(GUID, ForeignKey("tracking_links.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(32), nullable=False, index=True)

    user_id = Column(String(255), nullable=True)
    click_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=False)
    last_activity_at = Column(DateTime, nullable=False)

    link = relationship("TrackingLink", back_populates="sessions")
    conversions = relationship(
        "Conversion",
        back_populates="session",
        order_by="Conversion.occurred_at",
    )

    def __repr__(self) -> str:
        return f"<VisitorSession {self.session_id} clicks={self.click_count}>"

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "click_count": self.click_count,
            "conversion_count": len(self.conversions),
            "started_at": _iso(self.started_at),
            "last_activity_at": _iso(self.last_activity_at),
        }


class Conversion(Base):
    """
    Purchase attributed to a link and the session that produced it.

    Write-once apart from the ledger acknowledgement timestamp.
    """

    __tablename__ = "link_conversions"

    id = Column(GUID, primary_key=True, default=uuid4)
    link_id = Column(GUID, ForeignKey("tracking_links.id", ondelete="CASCADE"), nullable=False, index=True)
    session_pk = Column(GUID, ForeignKey("link_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(32), nullable=False)

    order_ref = Column(String(255), nullable=True, index=True)
    amount = Column(Float, nullable=False, default=0.0)
    revenue = Column(Float, nullable=False, default=0.0)
    user_id = Column(String(255), nullable=True)
    conversion_metadata = Column('metadata', JSON, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default='completed')
    attribution_model = Column(String(20), nullable=False, default='last_click')

    occurred_at = Column(DateTime, nullable=False, index=True)
    recorded_at = Column(DateTime, nullable=False)
    ledger_recorded_at = Column(DateTime, nullable=True)

    link = relationship("TrackingLink", back_populates="conversions")
    session = relationship("VisitorSession", back_populates="conversions")

    def __repr__(self) -> str:
        return f"<Conversion {self.order_ref} revenue={self.revenue}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "order_ref": self.order_ref,
            "amount": round(self.amount or 0.0, 2),
            "revenue": round(self.revenue or 0.0, 2),
            "user_id": self.user_id,
            "session_id": self.session_id,
            "metadata": self.conversion_metadata,
            "status": self.status,
            "attribution_model": self.attribution_model,
            "occurred_at": _iso(self.occurred_at),
            "ledger_recorded": self.ledger_recorded_at is not None,
        }
