"""
Tracking link store.

Owns the TrackingLink aggregate: creation, lookup, listing and every
read-modify-write against a single link. Mutations run through
``unit_of_work`` which serialises writers per link in-process and retries
when the optimistic version check detects a concurrent writer.
"""
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from linktrack.config import settings
from linktrack.models.base import get_session_factory
from linktrack.models.tracking import Click, Conversion, LinkStatus, TrackingLink
from linktrack.services.clock import parse_timestamp, utcnow
from linktrack.services.embed import build_tracking_url
from linktrack.services.errors import ConcurrentUpdateError, LinkNotFound
from linktrack.services.locks import KeyedLockRegistry
from linktrack.services.tokens import generate_identity

logger = logging.getLogger(__name__)

T = TypeVar('T')

MAX_IDENTITY_ATTEMPTS = 5
MAX_PAGE_SIZE = 100

SORTABLE_FIELDS = {
    'created_at': TrackingLink.created_at,
    'expires_at': TrackingLink.expires_at,
    'total_clicks': TrackingLink.total_clicks,
    'total_conversions': TrackingLink.total_conversions,
    'total_revenue': TrackingLink.total_revenue,
    'campaign_name': TrackingLink.campaign_name,
}

UPDATABLE_FIELDS = ('campaign_name', 'max_clicks', 'metadata', 'notes')


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required")
    return value.strip()


def _validate_max_clicks(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError("max_clicks must be a positive integer")
    return value


def _validate_metadata(value: Any) -> Dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("metadata must be an object")
    return dict(value)


def _validate_hours(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be a positive number of hours")
    return value


class TrackingLinkStore:
    """Persistence and unit-of-work boundary for tracking links."""

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLockRegistry] = None,
        retry_attempts: Optional[int] = None,
        id_prefix: Optional[str] = None,
        default_target_url: Optional[str] = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy sessionmaker; defaults to the app-wide factory
            clock: Callable returning the current naive UTC time
            locks: Lock registry shared by every writer in this process
            retry_attempts: Optimistic retries per unit of work
            id_prefix: Tracking id prefix
            default_target_url: Redirect target when a link has none
        """
        self._session_factory = session_factory
        self.clock = clock
        self.locks = locks or KeyedLockRegistry()
        self.retry_attempts = max(retry_attempts or settings.lock_retry_attempts, 1)
        self.id_prefix = id_prefix or settings.link_id_prefix
        self.default_target_url = default_target_url or settings.frontend_url

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Open a database session that is always closed afterwards."""
        factory = self._session_factory or get_session_factory()
        db = factory()
        try:
            yield db
        finally:
            db.close()

    # ==================== CREATION ====================

    def create(
        self,
        campaign_name: str,
        source: str,
        medium: str,
        ttl: timedelta,
        max_clicks: Optional[int] = None,
        metadata: Optional[Dict] = None,
        target_url: Optional[str] = None,
    ) -> TrackingLink:
        """
        Create and persist a new active tracking link.

        Args:
            campaign_name: Campaign the link belongs to
            source: Marketing source (e.g. ``newsletter``)
            medium: Marketing medium (e.g. ``email``)
            ttl: Lifetime of the link
            max_clicks: Optional click quota
            metadata: Free-form metadata
            target_url: Redirect target, defaults to the configured frontend

        Returns:
            The persisted TrackingLink

        Raises:
            ValueError: If any argument is invalid
        """
        campaign_name = _require_text('campaign_name', campaign_name)
        source = _require_text('source', source)
        medium = _require_text('medium', medium)
        if not isinstance(ttl, timedelta) or ttl <= timedelta(0):
            raise ValueError("ttl must be a positive duration")
        max_clicks = _validate_max_clicks(max_clicks)
        metadata = _validate_metadata(metadata)
        target_url = target_url or self.default_target_url
        # Fails fast on relative targets
        build_tracking_url(target_url, 'probe')

        for attempt in range(1, MAX_IDENTITY_ATTEMPTS + 1):
            now = self.clock()
            identity = generate_identity(self.id_prefix, now)
            link = TrackingLink(
                tracking_id=identity.tracking_id,
                token=identity.token,
                short_code=identity.short_code,
                campaign_name=campaign_name,
                source=source,
                medium=medium,
                target_url=target_url,
                tracking_url=build_tracking_url(target_url, identity.tracking_id),
                status=LinkStatus.ACTIVE,
                expires_at=now + ttl,
                max_clicks=max_clicks,
                total_clicks=0,
                total_conversions=0,
                total_revenue=0.0,
                attributed_revenue=0.0,
                conversion_rate=0.0,
                average_order_value=0.0,
                geo_stats={'countries': {}},
                device_stats={'mobile': 0, 'tablet': 0, 'desktop': 0},
                browser_stats={},
                link_metadata=metadata,
                created_at=now,
                updated_at=now,
            )

            with self.session() as db:
                db.add(link)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.warning("[LinkStore] Identity collision on attempt %d, regenerating", attempt)
                    continue

            logger.info("[LinkStore] Created link %s for campaign '%s'", link.tracking_id, campaign_name)
            return link

        raise RuntimeError(f"Could not allocate a unique tracking id after {MAX_IDENTITY_ATTEMPTS} attempts")

    # ==================== LOOKUP ====================

    def find(self, tracking_id: str) -> Optional[TrackingLink]:
        """Look up a link regardless of status."""
        with self.session() as db:
            return db.query(TrackingLink).filter(TrackingLink.tracking_id == tracking_id).one_or_none()

    def find_active(self, tracking_id: str) -> Optional[TrackingLink]:
        """Look up a link that is active and not yet past its expiry."""
        with self.session() as db:
            return (
                db.query(TrackingLink)
                .filter(
                    TrackingLink.tracking_id == tracking_id,
                    TrackingLink.status == LinkStatus.ACTIVE,
                    TrackingLink.expires_at > self.clock(),
                )
                .one_or_none()
            )

    def get(self, tracking_id: str) -> TrackingLink:
        """
        Look up a link regardless of status.

        Raises:
            LinkNotFound: If no such link exists
        """
        link = self.find(tracking_id)
        if link is None:
            raise LinkNotFound(tracking_id)
        return link

    def expired_active_ids(self, now: datetime) -> List[str]:
        """Tracking ids still marked active although their expiry has passed."""
        with self.session() as db:
            rows = (
                db.query(TrackingLink.tracking_id)
                .filter(TrackingLink.status == LinkStatus.ACTIVE, TrackingLink.expires_at < now)
                .order_by(TrackingLink.expires_at)
                .all()
            )
            return [row.tracking_id for row in rows]

    # ==================== UNIT OF WORK ====================

    def unit_of_work(self, tracking_id: str, operation: Callable[[Any, TrackingLink], T]) -> T:
        """
        Run a read-modify-write against one link.

        ``operation(db, link)`` receives a fresh session and the loaded link.
        Its changes are committed together; if another writer committed in
        between (version mismatch) the whole operation is re-run on fresh
        state. Any other exception rolls back and propagates.

        Args:
            tracking_id: Link to operate on
            operation: Callable applying the change, its result is returned

        Raises:
            LinkNotFound: If no such link exists
            ConcurrentUpdateError: If every retry hit a version conflict
        """
        with self.locks.hold(tracking_id):
            for attempt in range(1, self.retry_attempts + 1):
                with self.session() as db:
                    link = db.query(TrackingLink).filter(TrackingLink.tracking_id == tracking_id).one_or_none()
                    if link is None:
                        raise LinkNotFound(tracking_id)

                    try:
                        result = operation(db, link)
                        link.updated_at = self.clock()
                        db.commit()
                        return result
                    except StaleDataError:
                        db.rollback()
                        logger.warning(
                            "[LinkStore] Version conflict on %s (attempt %d/%d)",
                            tracking_id, attempt, self.retry_attempts
                        )
                    except Exception:
                        db.rollback()
                        raise

        logger.error("[LinkStore] Giving up on %s after %d attempts", tracking_id, self.retry_attempts)
        raise ConcurrentUpdateError(tracking_id, self.retry_attempts)

    def recompute_totals(self, db, link: TrackingLink) -> TrackingLink:
        """
        Recompute running totals and the geo, device and browser tallies
        from the stored click and conversion rows.

        Pending rows in ``db`` are flushed first so they are counted.
        """
        db.flush()

        link.total_clicks = (
            db.query(func.count(Click.id)).filter(Click.link_id == link.id).scalar() or 0
        )
        conversions, revenue, attributed = (
            db.query(
                func.count(Conversion.id),
                func.coalesce(func.sum(Conversion.revenue), 0.0),
                func.coalesce(
                    func.sum(case((Conversion.ledger_recorded_at.isnot(None), Conversion.revenue), else_=0.0)),
                    0.0,
                ),
            )
            .filter(Conversion.link_id == link.id)
            .one()
        )
        link.total_conversions = conversions or 0
        link.total_revenue = float(revenue or 0.0)
        link.attributed_revenue = float(attributed or 0.0)

        link.conversion_rate = (
            link.total_conversions / link.total_clicks * 100 if link.total_clicks > 0 else 0.0
        )
        link.average_order_value = (
            link.total_revenue / link.total_conversions if link.total_conversions > 0 else 0.0
        )
        self._recompute_tallies(db, link)
        return link

    @staticmethod
    def _recompute_tallies(db, link: TrackingLink) -> None:
        countries = {}
        devices = {'mobile': 0, 'tablet': 0, 'desktop': 0}
        browsers = {}

        rows = db.query(Click.location, Click.device).filter(Click.link_id == link.id)
        for location, device in rows:
            if location:
                country = location.get('country_code') or 'Unknown'
                countries[country] = countries.get(country, 0) + 1
            if device:
                devices[device['type']] = devices.get(device['type'], 0) + 1
                if device.get('browser'):
                    browsers[device['browser']] = browsers.get(device['browser'], 0) + 1

        # JSON columns only persist on reassignment
        link.geo_stats = {'countries': countries}
        link.device_stats = devices
        link.browser_stats = browsers

    # ==================== ADMINISTRATION ====================

    def extend(self, tracking_id: str, additional_hours: float) -> Dict:
        """
        Push a link's expiry back and reactivate it.

        Returns:
            Dictionary with the old and new expiry
        """
        additional_hours = _validate_hours('additional_hours', additional_hours)

        def apply(db, link: TrackingLink) -> Dict:
            old_expiry = link.expires_at
            link.expires_at = old_expiry + timedelta(hours=additional_hours)
            link.status = LinkStatus.ACTIVE
            return {'old_expires_at': old_expiry, 'new_expires_at': link.expires_at, 'link': link}

        result = self.unit_of_work(tracking_id, apply)
        logger.info(
            "[LinkStore] Extended %s by %sh to %s",
            tracking_id, additional_hours, result['new_expires_at'].isoformat()
        )
        return result

    def update(self, tracking_id: str, changes: Dict) -> TrackingLink:
        """
        Edit descriptive fields of a link.

        Only campaign_name, max_clicks, metadata and notes may change; status
        and counters are owned by the tracking flow.

        Raises:
            ValueError: If changes is empty or names other fields
        """
        if not isinstance(changes, dict) or not changes:
            raise ValueError("No changes provided")
        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(unknown)}")

        validated = {}
        if 'campaign_name' in changes:
            validated['campaign_name'] = _require_text('campaign_name', changes['campaign_name'])
        if 'max_clicks' in changes:
            validated['max_clicks'] = _validate_max_clicks(changes['max_clicks'])
        if 'metadata' in changes:
            validated['link_metadata'] = _validate_metadata(changes['metadata'])
        if 'notes' in changes:
            notes = changes['notes']
            if notes is not None and not isinstance(notes, str):
                raise ValueError("notes must be a string")
            validated['notes'] = notes

        def apply(db, link: TrackingLink) -> TrackingLink:
            for field, value in validated.items():
                setattr(link, field, value)
            return link

        link = self.unit_of_work(tracking_id, apply)
        logger.info("[LinkStore] Updated %s: %s", tracking_id, ', '.join(sorted(changes)))
        return link

    # ==================== LISTING ====================

    def list_links(self, criteria: Optional[Dict] = None) -> Dict:
        """
        List links with filters, sorting and pagination.

        Args:
            criteria: Optional dict with status, campaign_name, start_date,
                end_date, sort_by, sort_order, page and limit

        Returns:
            Dictionary containing:
                - links: TrackingLink rows for the requested page
                - summary: totals over every matching link
                - pagination: page, limit, total, pages
        """
        criteria = criteria or {}

        status = criteria.get('status')
        if status and status not in LinkStatus.ALL:
            raise ValueError(f"Invalid status: {status}")

        sort_by = criteria.get('sort_by') or 'created_at'
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Invalid sort_by: {sort_by}")
        sort_order = (criteria.get('sort_order') or 'desc').lower()
        if sort_order not in ('asc', 'desc'):
            raise ValueError("sort_order must be asc or desc")

        try:
            page = criteria.get('page')
            page = 1 if page is None else int(page)
            limit = criteria.get('limit')
            limit = 20 if limit is None else int(limit)
        except (TypeError, ValueError):
            raise ValueError("page and limit must be integers")
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        limit = min(limit, MAX_PAGE_SIZE)

        filters = []
        if status:
            filters.append(TrackingLink.status == status)
        if criteria.get('campaign_name'):
            filters.append(TrackingLink.campaign_name.icontains(criteria['campaign_name'], autoescape=True))
        if criteria.get('start_date'):
            filters.append(TrackingLink.created_at >= parse_timestamp(criteria['start_date']))
        if criteria.get('end_date'):
            filters.append(TrackingLink.created_at <= parse_timestamp(criteria['end_date']))

        now = self.clock()
        with self.session() as db:
            column = SORTABLE_FIELDS[sort_by]
            ordering = column.desc() if sort_order == 'desc' else column.asc()
            links = (
                db.query(TrackingLink)
                .filter(*filters)
                .order_by(ordering, TrackingLink.tracking_id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

            total, clicks, conversions, revenue, active = (
                db.query(
                    func.count(TrackingLink.id),
                    func.coalesce(func.sum(TrackingLink.total_clicks), 0),
                    func.coalesce(func.sum(TrackingLink.total_conversions), 0),
                    func.coalesce(func.sum(TrackingLink.total_revenue), 0.0),
                    func.coalesce(
                        func.sum(
                            case(
                                (
                                    (TrackingLink.status == LinkStatus.ACTIVE) & (TrackingLink.expires_at > now),
                                    1,
                                ),
                                else_=0,
                            )
                        ),
                        0,
                    ),
                )
                .filter(*filters)
                .one()
            )

        return {
            'links': links,
            'summary': {
                'total_links': total or 0,
                'total_clicks': int(clicks or 0),
                'total_conversions': int(conversions or 0),
                'total_revenue': round(float(revenue or 0.0), 2),
                'active_links': int(active or 0),
            },
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total or 0,
                'pages': math.ceil((total or 0) / limit),
            },
        }

    def links_created_between(self, start: datetime, end: datetime) -> List[TrackingLink]:
        with self.session() as db:
            return (
                db.query(TrackingLink)
                .filter(TrackingLink.created_at >= start, TrackingLink.created_at <= end)
                .order_by(TrackingLink.created_at)
                .all()
            )
