"""
Revenue ledger collaborators.

Attributed conversion revenue is booked in an external ledger. The default
implementation writes ``RevenueEntry`` rows to the tracking database; any
object with a compatible ``record`` method can take its place.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from linktrack.models.base import get_session_factory
from linktrack.models.ledger import RevenueEntry
from linktrack.services.clock import utcnow

logger = logging.getLogger(__name__)

LINK_TRACKING_SOURCE = 'link_tracking'


class DatabaseRevenueLedger:
    """Revenue ledger backed by the ``revenue_entries`` table."""

    def __init__(self, session_factory=None, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self.clock = clock

    def record(
        self,
        amount: float,
        source: str,
        order_ref: Optional[str],
        user_ref: Optional[str],
        attribution_metadata: Dict,
    ) -> Dict:
        """
        Book a revenue entry.

        Args:
            amount: Revenue amount (positive)
            source: Origin of the revenue, e.g. ``link_tracking``
            order_ref: External order reference
            user_ref: External user reference
            attribution_metadata: tracking_id, attribution_model, attributed_at

        Returns:
            The stored entry as a dictionary
        """
        if amount is None or amount <= 0:
            raise ValueError("amount must be positive")

        factory = self._session_factory or get_session_factory()
        db = factory()
        try:
            entry = RevenueEntry(
                amount=amount,
                source=source,
                payment_method='attributed',
                order_ref=order_ref,
                user_ref=user_ref,
                description=f"Revenue attributed to tracking link: {attribution_metadata.get('tracking_id')}",
                attribution_metadata=attribution_metadata,
                recorded_at=self.clock(),
            )
            db.add(entry)
            db.commit()
            logger.debug("[RevenueLedger] Recorded %.2f from %s", amount, source)
            return entry.to_dict()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
