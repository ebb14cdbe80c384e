"""
Visitor session correlation.

A session is identified by hashing the visitor's IP and user agent together
with the 30-minute bucket the event falls into. Two clicks from the same
browser inside one bucket share a session; the next bucket starts a new one.
"""
import hashlib
import logging
from datetime import datetime
from typing import Callable, Optional

from linktrack.models.tracking import TrackingLink, VisitorSession
from linktrack.services.clock import as_naive_utc, epoch_ms, utcnow

logger = logging.getLogger(__name__)

SESSION_BUCKET_MS = 30 * 60 * 1000


def session_bucket(timestamp: datetime) -> int:
    return epoch_ms(timestamp) // SESSION_BUCKET_MS


def session_fingerprint(ip: Optional[str], user_agent: Optional[str], timestamp: datetime) -> str:
    """
    Deterministic session id for a visitor at a point in time.

    Args:
        ip: Source IP (missing values hash as an empty string)
        user_agent: Raw user agent
        timestamp: Event time

    Returns:
        32 character MD5 hex digest
    """
    data = f"{ip or ''}-{user_agent or ''}-{session_bucket(timestamp)}"
    return hashlib.md5(data.encode('utf-8')).hexdigest()


class SessionCorrelator:
    """Assigns clicks to visitor sessions and maintains session rows."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def correlate(
        self,
        ip: Optional[str],
        user_agent: Optional[str],
        timestamp: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> str:
        # user_id is attached to the session row, it never changes identity
        return session_fingerprint(ip, user_agent, timestamp or self.clock())

    def find(self, db, link: TrackingLink, session_id: str) -> Optional[VisitorSession]:
        return (
            db.query(VisitorSession)
            .filter(VisitorSession.link_id == link.id, VisitorSession.session_id == session_id)
            .one_or_none()
        )

    def touch(
        self,
        db,
        link: TrackingLink,
        session_id: str,
        user_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> VisitorSession:
        """
        Create or update the session a click belongs to.

        Increments the click count and widens the activity window to include
        ``occurred_at``. A known user id is never overwritten.

        Args:
            db: Open SQLAlchemy session (caller commits)
            link: Owning tracking link
            session_id: Fingerprint computed for the click
            user_id: Optional authenticated user
            occurred_at: Event time, defaults to now

        Returns:
            The VisitorSession row
        """
        at = as_naive_utc(occurred_at) if occurred_at else self.clock()

        session = self.find(db, link, session_id)
        if session is None:
            session = VisitorSession(
                link_id=link.id,
                session_id=session_id,
                user_id=user_id,
                click_count=0,
                started_at=at,
                last_activity_at=at,
            )
            db.add(session)
            logger.debug("[SessionCorrelator] New session %s on %s", session_id, link.tracking_id)

        session.click_count = (session.click_count or 0) + 1
        if at > session.last_activity_at:
            session.last_activity_at = at
        if at < session.started_at:
            session.started_at = at
        if user_id and not session.user_id:
            session.user_id = user_id

        return session
