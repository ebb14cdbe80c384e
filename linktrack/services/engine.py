"""
Tracking engine facade.

Wires the link store, click recorder, conversion attributor, analytics and
expiration services together and is the single entry point used by the HTTP
layer. Administrative operations require an authorizer.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from linktrack.config import settings
from linktrack.models.tracking import TrackingLink
from linktrack.services.analytics import AnalyticsAggregator, DEFAULT_TIMEFRAME
from linktrack.services.clicks import ClickRecorder
from linktrack.services.clock import parse_timestamp, utcnow
from linktrack.services.conversions import ConversionAttributor
from linktrack.services.embed import link_urls
from linktrack.services.expiration import ExpirationManager
from linktrack.services.geo_device import GeoDeviceResolver, build_geolocation_client
from linktrack.services.ledger import DatabaseRevenueLedger
from linktrack.services.link_store import TrackingLinkStore
from linktrack.services.locks import KeyedLockRegistry
from linktrack.services.sessions import SessionCorrelator
from linktrack.services.tokens import generate_batch_id

logger = logging.getLogger(__name__)

DEFAULT_REPORT_DAYS = 30


def _hours(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be a positive number of hours")
    return value


def _non_negative(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{name} must be a non-negative number")
    return value


class TrackingEngine:
    """Entry point for every tracking-link operation."""

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
        geolocation_client=None,
        ledger=None,
        locks: Optional[KeyedLockRegistry] = None,
    ):
        """
        Initialize the engine and its services.

        Args:
            session_factory: SQLAlchemy sessionmaker; defaults to the app-wide factory
            clock: Callable returning the current naive UTC time
            geolocation_client: Object with ``lookup(ip)``; built from settings if None
            ledger: Revenue ledger with ``record(...)``; database-backed if None
            locks: Per-link lock registry
        """
        self.clock = clock
        self.store = TrackingLinkStore(session_factory, clock=clock, locks=locks)
        self.sessions = SessionCorrelator(clock)
        self.resolver = GeoDeviceResolver(
            geolocation_client if geolocation_client is not None else build_geolocation_client()
        )
        self.clicks = ClickRecorder(self.store, self.resolver, self.sessions, clock)
        self.conversions = ConversionAttributor(
            self.store,
            ledger if ledger is not None else DatabaseRevenueLedger(session_factory, clock),
            self.sessions,
            clock,
        )
        self.analytics = AnalyticsAggregator(self.store, clock)
        self.expiration = ExpirationManager(self.store, clock)

    def _describe(self, link: TrackingLink) -> Dict:
        data = link.to_dict()
        data.update(link_urls(link))
        data['is_active'] = link.is_active_at(self.clock())
        return data

    # ==================== LINK ADMINISTRATION ====================

    def create_link(
        self,
        authorizer,
        campaign_name: str,
        source: str,
        medium: str,
        ttl_hours: Optional[float] = None,
        max_clicks: Optional[int] = None,
        metadata: Optional[Dict] = None,
        target_url: Optional[str] = None,
    ) -> Dict:
        """
        Generate a new tracking link.

        Returns:
            Link summary including tracking URL, short URL and embed snippet

        Raises:
            Unauthorized: If the authorizer refuses
            ValueError: If arguments are invalid
        """
        authorizer.require_link_admin()
        hours = _hours('ttl_hours', settings.default_link_ttl_hours if ttl_hours is None else ttl_hours)

        link = self.store.create(
            campaign_name=campaign_name,
            source=source,
            medium=medium,
            ttl=timedelta(hours=hours),
            max_clicks=max_clicks,
            metadata=metadata,
            target_url=target_url,
        )
        return self._describe(link)

    def get_link(self, authorizer, tracking_id: str) -> Dict:
        authorizer.require_link_admin()
        return self._describe(self.store.get(tracking_id))

    def list_links(self, authorizer, criteria: Optional[Dict] = None) -> Dict:
        """
        List links with filters, sorting and pagination.

        Returns:
            Dictionary with links, summary, pagination and generated_at
        """
        authorizer.require_link_admin()
        result = self.store.list_links(criteria)
        return {
            'links': [self._describe(link) for link in result['links']],
            'summary': result['summary'],
            'pagination': result['pagination'],
            'generated_at': self.clock().isoformat(),
        }

    def extend_expiry(self, authorizer, tracking_id: str, additional_hours: float) -> Dict:
        authorizer.require_link_admin()
        result = self.store.extend(tracking_id, additional_hours)
        summary = self._describe(result['link'])
        summary['old_expires_at'] = result['old_expires_at'].isoformat()
        summary['additional_hours'] = additional_hours
        return summary

    def update_link(self, authorizer, tracking_id: str, changes: Dict) -> Dict:
        authorizer.require_link_admin()
        return self._describe(self.store.update(tracking_id, changes))

    def generate_bulk_links(self, authorizer, count: int = 5, template: Optional[Dict] = None) -> Dict:
        """
        Generate several links from one template.

        Links are named ``"<campaign> <n>"`` and share a batch id in their
        metadata. A failing item is recorded and the rest still get created.

        Args:
            authorizer: Authorizer for link administration
            count: Number of links (1 to MAX_BULK_LINKS)
            template: Optional campaign_name, source, medium, ttl_hours,
                max_clicks, metadata and target_url

        Returns:
            Dictionary with generated, failed, links, errors and batch_id
        """
        authorizer.require_link_admin()
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValueError("count must be a positive integer")
        if count > settings.max_bulk_links:
            raise ValueError(f"count must not exceed {settings.max_bulk_links}")
        template = template or {}
        if not isinstance(template, dict):
            raise ValueError("template must be an object")
        base_metadata = template.get('metadata') or {}
        if not isinstance(base_metadata, dict):
            raise ValueError("template metadata must be an object")

        batch_id = generate_batch_id(self.clock())
        campaign = template.get('campaign_name') or 'Bulk Campaign'
        links: List[Dict] = []
        errors: List[Dict] = []

        for index in range(count):
            sequence = index + 1
            try:
                links.append(self.create_link(
                    authorizer,
                    campaign_name=f"{campaign} {sequence}",
                    source=template.get('source') or 'bulk',
                    medium=template.get('medium') or 'referral',
                    ttl_hours=template.get('ttl_hours'),
                    max_clicks=template.get('max_clicks'),
                    metadata=dict(base_metadata, batch_id=batch_id, sequence=sequence),
                    target_url=template.get('target_url'),
                ))
            except (ValueError, RuntimeError, SQLAlchemyError) as e:
                logger.warning("[Engine] Bulk item %d of %s failed: %s", sequence, batch_id, e)
                errors.append({'index': index, 'error': str(e)})

        logger.info("[Engine] Batch %s: %d generated, %d failed", batch_id, len(links), len(errors))
        return {
            'generated': len(links),
            'failed': len(errors),
            'links': links,
            'errors': errors,
            'batch_id': batch_id,
            'generated_at': self.clock().isoformat(),
        }

    # ==================== TRACKING ====================

    def record_click(self, tracking_id: str, click_input: Optional[Dict] = None) -> Dict:
        return self.clicks.record(tracking_id, click_input)

    def record_conversion(
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
        return self.conversions.attribute(
            tracking_id, order_ref, amount, revenue, user_id, session_id,
            metadata=metadata, occurred_at=occurred_at,
        )

    # ==================== REPORTING ====================

    def get_analytics(self, authorizer, tracking_id: str, timeframe: str = DEFAULT_TIMEFRAME, detailed: bool = False) -> Dict:
        authorizer.require_link_admin()
        return self.analytics.analyze(tracking_id, timeframe, detailed)

    def performance_report(
        self,
        authorizer,
        start_date=None,
        end_date=None,
        min_clicks: int = 0,
        min_revenue: float = 0,
    ) -> Dict:
        """
        Per-link performance for links created in a period.

        Args:
            authorizer: Authorizer for link administration
            start_date: Period start (defaults to 30 days ago)
            end_date: Period end (defaults to now)
            min_clicks: Skip links with fewer clicks
            min_revenue: Skip links with less revenue

        Returns:
            Dictionary with period, links (sorted by revenue), campaigns and summary
        """
        authorizer.require_link_admin()
        now = self.clock()
        end = parse_timestamp(end_date) if end_date else now
        start = parse_timestamp(start_date) if start_date else end - timedelta(days=DEFAULT_REPORT_DAYS)
        if start > end:
            raise ValueError("start_date must not be after end_date")
        min_clicks = _non_negative('min_clicks', min_clicks)
        min_revenue = _non_negative('min_revenue', min_revenue)

        rows = []
        for link in self.store.links_created_between(start, end):
            if link.total_clicks < min_clicks or link.total_revenue < min_revenue:
                continue
            clicks, conversions, revenue = link.total_clicks, link.total_conversions, link.total_revenue
            rows.append({
                'tracking_id': link.tracking_id,
                'campaign_name': link.campaign_name,
                'status': link.status,
                'is_active': link.is_active_at(now),
                'created_at': link.created_at.isoformat(),
                'expires_at': link.expires_at.isoformat(),
                'clicks': clicks,
                'conversions': conversions,
                'revenue': round(revenue, 2),
                'click_through_rate': round(conversions / clicks * 100, 2) if clicks else 0.0,
                'average_order_value': round(revenue / conversions, 2) if conversions else 0.0,
                'revenue_per_click': round(revenue / clicks, 2) if clicks else 0.0,
            })
        rows.sort(key=lambda row: -row['revenue'])

        campaigns: Dict[str, Dict] = {}
        for row in rows:
            campaign = campaigns.setdefault(
                row['campaign_name'],
                {'campaign_name': row['campaign_name'], 'links': 0, 'clicks': 0, 'conversions': 0, 'revenue': 0.0},
            )
            campaign['links'] += 1
            campaign['clicks'] += row['clicks']
            campaign['conversions'] += row['conversions']
            campaign['revenue'] += row['revenue']
        campaign_rows = []
        for campaign in campaigns.values():
            campaign['revenue'] = round(campaign['revenue'], 2)
            campaign['conversion_rate'] = (
                round(campaign['conversions'] / campaign['clicks'] * 100, 2) if campaign['clicks'] else 0.0
            )
            campaign_rows.append(campaign)
        campaign_rows.sort(key=lambda row: -row['revenue'])

        total_links = len(rows)
        total_clicks = sum(row['clicks'] for row in rows)
        total_conversions = sum(row['conversions'] for row in rows)
        total_revenue = sum(row['revenue'] for row in rows)

        return {
            'period': {'start': start.isoformat(), 'end': end.isoformat()},
            'links': rows,
            'campaigns': campaign_rows,
            'summary': {
                'total_links': total_links,
                'active_links': sum(1 for row in rows if row['is_active']),
                'total_clicks': total_clicks,
                'total_conversions': total_conversions,
                'total_revenue': round(total_revenue, 2),
                'click_through_rate': round(total_conversions / total_clicks * 100, 2) if total_clicks else 0.0,
                'average_order_value': round(total_revenue / total_conversions, 2) if total_conversions else 0.0,
                'revenue_per_click': round(total_revenue / total_clicks, 2) if total_clicks else 0.0,
                'average_clicks_per_link': round(total_clicks / total_links, 2) if total_links else 0.0,
                'average_revenue_per_link': round(total_revenue / total_links, 2) if total_links else 0.0,
            },
            'generated_at': now.isoformat(),
        }

    # ==================== MAINTENANCE ====================

    def sweep_expired(self) -> Dict:
        return self.expiration.sweep()
