"""
Conversion attribution.

Purchases are attributed last-click: to the tracking link and the visitor
session the buyer arrived through. The conversion is committed on the link
first; the revenue ledger write follows and is acknowledged on the
conversion once it succeeds.
"""
import logging
import math
from datetime import datetime
from typing import Callable, Dict, Optional

from linktrack.models.tracking import Conversion, TrackingLink
from linktrack.services.clock import parse_timestamp, utcnow
from linktrack.services.errors import LedgerWriteError, SessionNotFound
from linktrack.services.ledger import LINK_TRACKING_SOURCE, DatabaseRevenueLedger
from linktrack.services.link_store import TrackingLinkStore
from linktrack.services.sessions import SessionCorrelator

logger = logging.getLogger(__name__)

ATTRIBUTION_MODEL = 'last_click'


def _money(name: str, value, required: bool) -> Optional[float]:
    if value is None:
        if required:
            raise ValueError(f"{name} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"{name} must be a number")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return float(value)


def _link_summary(link: TrackingLink) -> Dict:
    return {
        'tracking_id': link.tracking_id,
        'total_conversions': link.total_conversions,
        'total_revenue': round(link.total_revenue, 2),
        'attributed_revenue': round(link.attributed_revenue, 2),
        'conversion_rate': round(link.conversion_rate, 2),
    }


class ConversionAttributor:
    """Attributes conversions to links and books their revenue."""

    def __init__(
        self,
        store: TrackingLinkStore,
        ledger=None,
        sessions: Optional[SessionCorrelator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ledger = ledger or DatabaseRevenueLedger(clock=clock)
        self.sessions = sessions or SessionCorrelator(clock)
        self.clock = clock

    def attribute(
        self,
        tracking_id: str,
        order_ref: Optional[str],
        amount: float,
        revenue: Optional[float],
        user_id: Optional[str],
        session_id: str,
        metadata: Optional[Dict] = None,
        occurred_at=None,
    ) -> Dict:
        """
        Attribute a conversion to a link and session.

        Expired and limit-reached links still accept conversions for
        sessions that started while they were live.

        Args:
            tracking_id: Link the buyer arrived through
            order_ref: External order reference
            amount: Order amount
            revenue: Revenue to attribute; falls back to amount when None
            user_id: Buyer reference
            session_id: Session returned when the click was recorded
            metadata: Free-form metadata
            occurred_at: Optional event time for replayed conversions

        Returns:
            Dictionary containing:
                - conversion: The stored conversion
                - tracking_link: Updated link totals
                - ledger_recorded: Whether the revenue ledger accepted it

        Raises:
            ValueError: If arguments are invalid
            LinkNotFound: If the link does not exist
            SessionNotFound: If the session never clicked this link
            LedgerWriteError: If the ledger write failed (conversion is kept)
        """
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError("session_id is required")
        session_id = session_id.strip()
        amount = _money('amount', amount, required=True)
        revenue = _money('revenue', revenue, required=False)
        if metadata is not None and not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
        attributed = revenue if revenue is not None else amount
        at = parse_timestamp(occurred_at) if occurred_at else None

        def apply(db, link: TrackingLink):
            now = self.clock()
            event_time = at or now

            session = self.sessions.find(db, link, session_id)
            if session is None:
                raise SessionNotFound(tracking_id, session_id)

            conversion = Conversion(
                link_id=link.id,
                session_pk=session.id,
                session_id=session_id,
                order_ref=order_ref,
                amount=amount,
                revenue=attributed,
                user_id=user_id,
                conversion_metadata=dict(metadata or {}),
                status='completed',
                attribution_model=ATTRIBUTION_MODEL,
                occurred_at=event_time,
                recorded_at=now,
            )
            db.add(conversion)

            if event_time > session.last_activity_at:
                session.last_activity_at = event_time

            self.store.recompute_totals(db, link)
            if link.last_conversion_at is None or event_time > link.last_conversion_at:
                link.last_conversion_at = event_time
            return conversion, link

        conversion, link = self.store.unit_of_work(tracking_id, apply)
        logger.info(
            "[ConversionAttributor] Conversion %s on %s (session %s, revenue %.2f)",
            order_ref, tracking_id, session_id, attributed
        )

        summary = {
            'conversion': conversion.to_dict(),
            'tracking_link': _link_summary(link),
            'ledger_recorded': False,
        }
        if attributed <= 0:
            return summary

        try:
            self.ledger.record(
                amount=attributed,
                source=LINK_TRACKING_SOURCE,
                order_ref=order_ref,
                user_ref=user_id,
                attribution_metadata={
                    'tracking_id': tracking_id,
                    'attribution_model': ATTRIBUTION_MODEL,
                    'attributed_at': self.clock().isoformat(),
                },
            )
        except Exception as e:
            logger.error(
                "[ConversionAttributor] Ledger write failed for %s on %s: %s",
                order_ref, tracking_id, e, exc_info=True
            )
            raise LedgerWriteError(tracking_id, summary, e) from e

        return self._acknowledge(tracking_id, conversion.id)

    def _acknowledge(self, tracking_id: str, conversion_id) -> Dict:
        """Stamp the conversion as booked and refresh attributed revenue."""

        def apply(db, link: TrackingLink):
            now = self.clock()
            conversion = db.get(Conversion, conversion_id)
            conversion.ledger_recorded_at = now
            self.store.recompute_totals(db, link)
            link.last_revenue_at = now
            return conversion, link

        conversion, link = self.store.unit_of_work(tracking_id, apply)
        return {
            'conversion': conversion.to_dict(),
            'tracking_link': _link_summary(link),
            'ledger_recorded': True,
        }
