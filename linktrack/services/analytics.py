"""
Link analytics.

Read-only statistics over a link's click, session and conversion history.
Windowed sections only consider events whose ``occurred_at`` falls inside
the requested timeframe; performance ratios and the funnel always cover the
link's entire history.
"""
import logging
from collections import Counter, OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import selectinload

from linktrack.models.tracking import Click, Conversion, TrackingLink, VisitorSession
from linktrack.services.clock import utcnow
from linktrack.services.errors import LinkNotFound
from linktrack.services.link_store import TrackingLinkStore

logger = logging.getLogger(__name__)

TIMEFRAMES = OrderedDict([
    ('1h', timedelta(hours=1)),
    ('6h', timedelta(hours=6)),
    ('12h', timedelta(hours=12)),
    ('24h', timedelta(hours=24)),
    ('7d', timedelta(days=7)),
    ('30d', timedelta(days=30)),
])
DEFAULT_TIMEFRAME = '24h'

TOP_CITIES = 10
TOP_REFERRERS = 10
TOP_SESSIONS = 10
RECENT_CLICKS = 50
RECENT_CONVERSIONS = 20


def _rate(numerator: float, denominator: float) -> float:
    """Percentage rounded to 2 decimals, 0 for an empty denominator."""
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def _ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator, 2)


def _ranked(counter: Counter, label: str, limit: Optional[int] = None) -> List[Dict]:
    # Ties keep first-seen order
    items = sorted(counter.items(), key=lambda item: -item[1])
    if limit is not None:
        items = items[:limit]
    return [{label: key, 'count': count} for key, count in items]


def resolve_timeframe(timeframe: Optional[str]) -> str:
    return timeframe if timeframe in TIMEFRAMES else DEFAULT_TIMEFRAME


def _revenue_of(conversion: Conversion) -> float:
    return conversion.revenue if conversion.revenue is not None else (conversion.amount or 0.0)


def _utm_key(click: Click):
    return (click.utm_source or 'none', click.utm_medium or 'none', click.utm_campaign or 'none')


# ==================== SECTION BUILDERS ====================

def geographic_distribution(clicks: List[Click]) -> Dict:
    countries, cities = Counter(), Counter()
    for click in clicks:
        if click.location:
            countries[click.location.get('country_code') or 'Unknown'] += 1
            cities[click.location.get('city') or 'Unknown'] += 1

    return {
        'countries': _ranked(countries, 'code'),
        'cities': _ranked(cities, 'city', TOP_CITIES),
    }


def device_distribution(clicks: List[Click]) -> Dict:
    devices = {'mobile': 0, 'tablet': 0, 'desktop': 0}
    browsers, systems = Counter(), Counter()
    for click in clicks:
        if not click.device:
            continue
        device_type = click.device.get('type')
        devices[device_type if device_type in devices else 'desktop'] += 1
        if click.device.get('browser'):
            browsers[click.device['browser']] += 1
        if click.device.get('os'):
            systems[click.device['os']] += 1

    return {
        'devices': devices,
        'browsers': _ranked(browsers, 'browser'),
        'operating_systems': _ranked(systems, 'os'),
    }


def hourly_activity(clicks: List[Click]) -> List[Dict]:
    """Click counts per UTC hour of day."""
    hourly = [0] * 24
    for click in clicks:
        hourly[click.occurred_at.hour] += 1

    total = len(clicks)
    return [
        {'hour': hour, 'count': count, 'percentage': _rate(count, total)}
        for hour, count in enumerate(hourly)
    ]


def daily_activity(clicks: List[Click], conversions: List[Conversion]) -> List[Dict]:
    days: Dict[str, Dict] = {}

    def bucket(day: str) -> Dict:
        if day not in days:
            days[day] = {'date': day, 'clicks': 0, 'conversions': 0, 'revenue': 0.0}
        return days[day]

    for click in clicks:
        bucket(click.occurred_at.date().isoformat())['clicks'] += 1
    for conversion in conversions:
        entry = bucket(conversion.occurred_at.date().isoformat())
        entry['conversions'] += 1
        entry['revenue'] += _revenue_of(conversion)

    series = [days[day] for day in sorted(days)]
    for entry in series:
        entry['revenue'] = round(entry['revenue'], 2)
    return series


def referrer_analysis(clicks: List[Click]) -> List[Dict]:
    referrers = Counter(click.referrer or 'direct' for click in clicks)
    total = len(clicks)
    return [
        {
            'referrer': 'Direct Traffic' if item['referrer'] == 'direct' else item['referrer'],
            'count': item['count'],
            'percentage': _rate(item['count'], total),
        }
        for item in _ranked(referrers, 'referrer', TOP_REFERRERS)
    ]


def utm_analysis(clicks: List[Click], conversions: List[Conversion]) -> List[Dict]:
    """
    Clicks and conversions per (source, medium, campaign).

    A conversion counts towards the UTM combination of the first click of
    its session inside the window; conversions without one are ignored.
    """
    groups: Dict = OrderedDict()
    first_click_by_session: Dict[str, Click] = {}

    for click in clicks:
        key = _utm_key(click)
        if key not in groups:
            groups[key] = {'source': key[0], 'medium': key[1], 'campaign': key[2], 'clicks': 0, 'conversions': 0}
        groups[key]['clicks'] += 1
        first_click_by_session.setdefault(click.session_id, click)

    for conversion in conversions:
        click = first_click_by_session.get(conversion.session_id)
        if click is not None:
            groups[_utm_key(click)]['conversions'] += 1

    rows = [dict(group, conversion_rate=_rate(group['conversions'], group['clicks'])) for group in groups.values()]
    return sorted(rows, key=lambda row: -row['conversion_rate'])


def performance_metrics(link: TrackingLink, sessions: List[VisitorSession]) -> Dict:
    """
    Ratios over the link's entire history.

    - click_through_rate: conversions per click
    - engagement_rate: share of sessions with more than one click
    - bounce_rate: share of single-click sessions without a conversion
    - return_visitor_rate: (sessions - distinct users) / distinct users
    """
    total_sessions = len(sessions)
    engaged = sum(1 for s in sessions if s.click_count > 1)
    bounced = sum(1 for s in sessions if s.click_count == 1 and not s.conversions)
    known_users = {s.user_id for s in sessions if s.user_id}

    return {
        'click_through_rate': _rate(link.total_conversions, link.total_clicks),
        'engagement_rate': _rate(engaged, total_sessions),
        'bounce_rate': _rate(bounced, total_sessions),
        'return_visitor_rate': _rate(total_sessions - len(known_users), len(known_users)),
    }


def conversion_funnel(link: TrackingLink, sessions: List[VisitorSession]) -> Dict:
    clicks = link.total_clicks
    session_count = len(sessions)
    engaged = sum(1 for s in sessions if s.click_count > 1)
    converting = sum(1 for s in sessions if s.conversions)
    conversions = link.total_conversions

    stages = [
        ('clicks', clicks),
        ('sessions', session_count),
        ('engaged_sessions', engaged),
        ('conversion_sessions', converting),
        ('conversions', conversions),
    ]

    return {
        'clicks': clicks,
        'sessions': session_count,
        'engaged_sessions': engaged,
        'conversion_sessions': converting,
        'conversions': conversions,
        'click_to_session_rate': _rate(session_count, clicks),
        'session_to_engaged_rate': _rate(engaged, session_count),
        'engaged_to_conversion_rate': _rate(converting, engaged),
        'overall_conversion_rate': _rate(conversions, clicks),
        'stages': [
            {
                'stage': name,
                'count': count,
                'rate_from_previous': None if index == 0 else _rate(count, stages[index - 1][1]),
            }
            for index, (name, count) in enumerate(stages)
        ],
    }


def top_sessions(sessions: List[VisitorSession]) -> List[Dict]:
    ranked = sorted(sessions, key=lambda s: (-s.click_count, s.started_at))
    return [session.to_dict() for session in ranked[:TOP_SESSIONS]]


class AnalyticsAggregator:
    """Computes link reports. Never writes."""

    def __init__(self, store: TrackingLinkStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def _load(self, db, tracking_id: str) -> TrackingLink:
        link = (
            db.query(TrackingLink)
            .options(
                selectinload(TrackingLink.clicks),
                selectinload(TrackingLink.conversions),
                selectinload(TrackingLink.sessions).selectinload(VisitorSession.conversions),
            )
            .filter(TrackingLink.tracking_id == tracking_id)
            .one_or_none()
        )
        if link is None:
            raise LinkNotFound(tracking_id)
        return link

    def analyze(self, tracking_id: str, timeframe: str = DEFAULT_TIMEFRAME, detailed: bool = False) -> Dict:
        """
        Build the analytics report for a link.

        Args:
            tracking_id: Link to report on
            timeframe: One of 1h, 6h, 12h, 24h, 7d, 30d (unknown values use 24h)
            detailed: Include recent events, top sessions and the funnel

        Returns:
            Report dictionary; percentages and money rounded to 2 decimals

        Raises:
            LinkNotFound: If the link does not exist
        """
        timeframe = resolve_timeframe(timeframe)
        now = self.clock()
        start_time = now - TIMEFRAMES[timeframe]

        with self.store.session() as db:
            link = self._load(db, tracking_id)
            sessions = list(link.sessions)
            clicks = [c for c in link.clicks if c.occurred_at >= start_time]
            conversions = [c for c in link.conversions if c.occurred_at >= start_time]

            window_clicks = len(clicks)
            window_conversions = len(conversions)
            window_revenue = sum(_revenue_of(c) for c in conversions)

            report = {
                'summary': {
                    'tracking_id': link.tracking_id,
                    'campaign_name': link.campaign_name,
                    'total_clicks': link.total_clicks,
                    'total_conversions': link.total_conversions,
                    'total_revenue': round(link.total_revenue, 2),
                    'attributed_revenue': round(link.attributed_revenue, 2),
                    'overall_conversion_rate': _rate(link.total_conversions, link.total_clicks),
                    'average_order_value': _ratio(link.total_revenue, link.total_conversions),
                    'status': link.status,
                    'is_active': link.is_active_at(now),
                    'expires_at': link.expires_at.isoformat(),
                    'time_remaining_seconds': link.seconds_remaining(now),
                },
                'timeframe_analysis': {
                    'timeframe': timeframe,
                    'start_time': start_time.isoformat(),
                    'end_time': now.isoformat(),
                    'clicks': window_clicks,
                    'unique_sessions': len({c.session_id for c in clicks}),
                    'conversions': window_conversions,
                    'revenue': round(window_revenue, 2),
                    'conversion_rate': _rate(window_conversions, window_clicks),
                    'average_order_value': _ratio(window_revenue, window_conversions),
                    'revenue_per_click': _ratio(window_revenue, window_clicks),
                },
                'performance_metrics': performance_metrics(link, sessions),
                'geographic_distribution': geographic_distribution(clicks),
                'device_distribution': device_distribution(clicks),
                'hourly_activity': hourly_activity(clicks),
                'daily_activity': daily_activity(clicks, conversions),
                'referrer_analysis': referrer_analysis(clicks),
                'utm_analysis': utm_analysis(clicks, conversions),
                'generated_at': now.isoformat(),
            }

            if detailed:
                report['detailed_data'] = {
                    'recent_clicks': [c.to_dict() for c in clicks[-RECENT_CLICKS:]],
                    'recent_conversions': [c.to_dict() for c in conversions[-RECENT_CONVERSIONS:]],
                    'top_sessions': top_sessions(sessions),
                    'conversion_funnel': conversion_funnel(link, sessions),
                }

        logger.debug("[Analytics] Report for %s over %s", tracking_id, timeframe)
        return report
