"""
Click recording.

A click is validated against the link's lifecycle, enriched with location
and device signals, assigned to a visitor session and appended to the link
in one unit of work together with the recomputed totals and tallies.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from linktrack.models.tracking import Click, LinkStatus, TrackingLink
from linktrack.services.clock import parse_timestamp, utcnow
from linktrack.services.errors import LimitReached, LinkExpired, LinkNotFound
from linktrack.services.geo_device import GeoDeviceResolver
from linktrack.services.link_store import TrackingLinkStore
from linktrack.services.sessions import SessionCorrelator

logger = logging.getLogger(__name__)

CLICK_FIELDS = (
    'ip', 'user_agent', 'referrer', 'landing_page',
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'user_id', 'occurred_at',
)

_QUOTA_EXHAUSTED = object()


def _optional_text(click_input: Dict, key: str) -> Optional[str]:
    value = click_input.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    value = value.strip()
    return value or None


def normalize_click_input(click_input: Optional[Dict]) -> Dict:
    """
    Validate a raw click payload and apply defaults.

    Raises:
        ValueError: If the payload is not a mapping or a field has the wrong type
    """
    if click_input is None:
        click_input = {}
    if not isinstance(click_input, dict):
        raise ValueError("click input must be an object")

    data = {key: _optional_text(click_input, key) for key in CLICK_FIELDS if key != 'occurred_at'}
    data['referrer'] = data['referrer'] or 'direct'
    data['landing_page'] = data['landing_page'] or '/'

    occurred_at = click_input.get('occurred_at')
    data['occurred_at'] = parse_timestamp(occurred_at) if occurred_at else None
    return data


def _ensure_clickable(link: TrackingLink, now: datetime) -> None:
    if link.status == LinkStatus.EXPIRED or link.expires_at <= now:
        raise LinkExpired(link.tracking_id)
    if link.status == LinkStatus.LIMIT_REACHED:
        raise LimitReached(link.tracking_id, link.max_clicks)
    if link.status != LinkStatus.ACTIVE:
        raise LinkExpired(link.tracking_id)


class ClickRecorder:
    """Records clicks on tracking links."""

    def __init__(
        self,
        store: TrackingLinkStore,
        resolver: Optional[GeoDeviceResolver] = None,
        sessions: Optional[SessionCorrelator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.resolver = resolver or GeoDeviceResolver()
        self.sessions = sessions or SessionCorrelator(clock)
        self.clock = clock

    def record(self, tracking_id: str, click_input: Optional[Dict] = None) -> Dict:
        """
        Record a click on a tracking link.

        Args:
            tracking_id: Link that was clicked
            click_input: Dict with ip, user_agent, referrer, landing_page,
                utm_source, utm_medium, utm_campaign, utm_term, utm_content,
                user_id and an optional occurred_at for replayed events

        Returns:
            Dictionary containing:
                - redirect_url: Where to send the visitor
                - session_id: Visitor session fingerprint
                - click_id: Id of the stored click
                - tracking_id: The link's tracking id

        Raises:
            ValueError: If the click input is malformed
            LinkNotFound: If the link does not exist
            LinkExpired: If the link is past its expiry or swept
            LimitReached: If the click quota is exhausted
        """
        data = normalize_click_input(click_input)

        # Cheap rejection before any network lookup
        if self.store.find_active(tracking_id) is None:
            link = self.store.find(tracking_id)
            if link is None:
                raise LinkNotFound(tracking_id)
            _ensure_clickable(link, self.clock())

        occurred_at = data['occurred_at'] or self.clock()
        signals = self.resolver.resolve(data['ip'], data['user_agent'])
        session_id = self.sessions.correlate(data['ip'], data['user_agent'], occurred_at, data['user_id'])

        def apply(db, link: TrackingLink):
            now = self.clock()
            _ensure_clickable(link, now)

            if link.max_clicks is not None and link.total_clicks >= link.max_clicks:
                link.status = LinkStatus.LIMIT_REACHED
                return _QUOTA_EXHAUSTED

            click = Click(
                link_id=link.id,
                session_id=session_id,
                occurred_at=occurred_at,
                recorded_at=now,
                user_agent=data['user_agent'],
                referrer=data['referrer'],
                landing_page=data['landing_page'],
                utm_source=data['utm_source'] or link.source,
                utm_medium=data['utm_medium'] or link.medium,
                utm_campaign=data['utm_campaign'] or link.campaign_name,
                utm_term=data['utm_term'],
                utm_content=data['utm_content'],
                user_id=data['user_id'],
                location=signals['location'],
                device=signals['device'],
            )
            click.ip = data['ip']
            db.add(click)

            self.store.recompute_totals(db, link)
            if link.last_click_at is None or occurred_at > link.last_click_at:
                link.last_click_at = occurred_at
            self.sessions.touch(db, link, session_id, data['user_id'], occurred_at)

            return {
                'redirect_url': link.target_url,
                'session_id': session_id,
                'click_id': str(click.id),
                'tracking_id': link.tracking_id,
            }

        result = self.store.unit_of_work(tracking_id, apply)
        if result is _QUOTA_EXHAUSTED:
            logger.info("[ClickRecorder] Click limit reached on %s", tracking_id)
            raise LimitReached(tracking_id, link.max_clicks)

        logger.info("[ClickRecorder] Click on %s (session %s)", tracking_id, session_id)
        return result
