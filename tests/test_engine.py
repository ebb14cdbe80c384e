"""
Tests for the TrackingEngine facade: link administration and reports.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from linktrack.models.tracking import LinkStatus
from linktrack.services.authorization import ApiKeyAuthorizer, StaticAuthorizer
from linktrack.services.errors import LimitReached, LinkNotFound, Unauthorized
from tests.fixtures.test_data import CLICK_DIRECT_DESKTOP, CLICK_FROM_INSTAGRAM

DENIED = StaticAuthorizer(False)


class TestAuthorization:
    """Test administrative operations refuse unauthorized callers."""

    @pytest.mark.parametrize('call', [
        lambda engine, tid: engine.create_link(DENIED, 'Spring', 'newsletter', 'email'),
        lambda engine, tid: engine.get_link(DENIED, tid),
        lambda engine, tid: engine.list_links(DENIED),
        lambda engine, tid: engine.extend_expiry(DENIED, tid, 1),
        lambda engine, tid: engine.update_link(DENIED, tid, {'notes': 'x'}),
        lambda engine, tid: engine.generate_bulk_links(DENIED, 2),
        lambda engine, tid: engine.get_analytics(DENIED, tid),
        lambda engine, tid: engine.performance_report(DENIED),
    ])
    def test_denied(self, tracking_engine, link, call):
        """Test every administrative operation raises Unauthorized."""
        with pytest.raises(Unauthorized) as exc:
            call(tracking_engine, link['tracking_id'])

        assert exc.value.status_code == 403

    def test_denied_create_stores_nothing(self, tracking_engine, admin):
        with pytest.raises(Unauthorized):
            tracking_engine.create_link(DENIED, 'Spring', 'newsletter', 'email')

        assert tracking_engine.list_links(admin)['pagination']['total'] == 0

    def test_api_key_authorizer(self):
        """Test the API key authorizer compares against the expected key."""
        ApiKeyAuthorizer('secret', expected_key='secret').require_link_admin()

        with pytest.raises(Unauthorized, match='Invalid'):
            ApiKeyAuthorizer('wrong', expected_key='secret').require_link_admin()
        with pytest.raises(Unauthorized, match='required'):
            ApiKeyAuthorizer(None, expected_key='secret').require_link_admin()

    def test_tracking_needs_no_authorizer(self, tracking_engine, link):
        """Test clicks are public."""
        assert tracking_engine.record_click(link['tracking_id'], CLICK_DIRECT_DESKTOP)['session_id']


class TestCreateLink:
    """Test link creation through the engine."""

    def test_summary_fields(self, tracking_engine, link, clock):
        """Test the summary carries URLs, snippet and lifecycle."""
        assert link['campaign_name'] == 'Spring Sale'
        assert link['status'] == LinkStatus.ACTIVE
        assert link['is_active'] is True
        assert link['expires_at'] == (clock() + timedelta(hours=24)).isoformat()
        assert link['tracking_url'].endswith(f"ref={link['tracking_id']}")
        assert link['short_url'].endswith('/' + link['short_code'].lower())
        assert link['analytics_url'].endswith(f"/admin/links/{link['tracking_id']}")
        assert f"/api/v1/track/{link['tracking_id']}/click" in link['embed_code']
        assert 'token' not in link

    def test_default_ttl(self, tracking_engine, admin, clock):
        """Test links without a TTL use the configured default."""
        with patch('linktrack.services.engine.settings') as mock_settings:
            mock_settings.default_link_ttl_hours = 6
            created = tracking_engine.create_link(admin, 'Spring', 'newsletter', 'email')

        assert created['expires_at'] == (clock() + timedelta(hours=6)).isoformat()

    @pytest.mark.parametrize('ttl_hours', [0, -2, 'a day', float('nan')])
    def test_invalid_ttl(self, tracking_engine, admin, ttl_hours):
        with pytest.raises(ValueError, match='ttl_hours'):
            tracking_engine.create_link(admin, 'Spring', 'newsletter', 'email', ttl_hours=ttl_hours)

    def test_get_link(self, tracking_engine, admin, link):
        assert tracking_engine.get_link(admin, link['tracking_id'])['tracking_id'] == link['tracking_id']

        with pytest.raises(LinkNotFound):
            tracking_engine.get_link(admin, 'LINK-NOPE-0')


class TestAdministration:
    """Test extend, update and listing through the engine."""

    def test_extend_expiry(self, tracking_engine, admin, link, clock):
        """Test the response reports the old expiry and the extension."""
        result = tracking_engine.extend_expiry(admin, link['tracking_id'], 12)

        assert result['old_expires_at'] == link['expires_at']
        assert result['expires_at'] == (clock() + timedelta(hours=36)).isoformat()
        assert result['additional_hours'] == 12
        assert result['is_active'] is True

    def test_update_link(self, tracking_engine, admin, link):
        result = tracking_engine.update_link(admin, link['tracking_id'], {'notes': 'paused by growth team'})

        assert result['notes'] == 'paused by growth team'

    def test_raising_quota_does_not_reactivate(self, tracking_engine, admin):
        """Test a limit_reached link stays flagged after max_clicks is raised."""
        limited = tracking_engine.create_link(admin, 'Limited', 'ads', 'cpc', max_clicks=1)
        tracking_engine.record_click(limited['tracking_id'], CLICK_DIRECT_DESKTOP)
        with pytest.raises(LimitReached):
            tracking_engine.record_click(limited['tracking_id'], CLICK_DIRECT_DESKTOP)

        result = tracking_engine.update_link(admin, limited['tracking_id'], {'max_clicks': 10})

        assert result['max_clicks'] == 10
        assert result['status'] == LinkStatus.LIMIT_REACHED

    def test_list_links(self, tracking_engine, admin, link):
        """Test listed links carry URLs and the summary counts traffic."""
        tracking_engine.record_click(link['tracking_id'], CLICK_DIRECT_DESKTOP)

        result = tracking_engine.list_links(admin, {'status': 'active'})

        assert [item['tracking_id'] for item in result['links']] == [link['tracking_id']]
        assert 'short_url' in result['links'][0]
        assert result['summary']['total_clicks'] == 1
        assert result['summary']['active_links'] == 1
        assert 'generated_at' in result


class TestBulkLinks:
    """Test bulk link generation."""

    def test_generate_bulk(self, tracking_engine, admin):
        """Test links are numbered and share a batch id."""
        result = tracking_engine.generate_bulk_links(admin, 3, {
            'campaign_name': 'Influencers',
            'source': 'instagram',
            'medium': 'social',
            'metadata': {'owner': 'brand'},
        })

        assert result['generated'] == 3
        assert result['failed'] == 0
        assert result['batch_id'].startswith('BATCH-')
        assert [link['campaign_name'] for link in result['links']] == ['Influencers 1', 'Influencers 2', 'Influencers 3']
        assert {link['metadata']['batch_id'] for link in result['links']} == {result['batch_id']}
        assert [link['metadata']['sequence'] for link in result['links']] == [1, 2, 3]
        assert all(link['metadata']['owner'] == 'brand' for link in result['links'])
        assert len({link['tracking_id'] for link in result['links']}) == 3

    def test_defaults(self, tracking_engine, admin):
        result = tracking_engine.generate_bulk_links(admin)

        assert result['generated'] == 5
        assert result['links'][0]['campaign_name'] == 'Bulk Campaign 1'
        assert result['links'][0]['source'] == 'bulk'
        assert result['links'][0]['medium'] == 'referral'

    def test_failed_items_are_reported(self, tracking_engine, admin):
        """Test one failing item does not stop the batch."""
        original = tracking_engine.store.create
        calls = []

        def flaky_create(**kwargs):
            calls.append(kwargs['campaign_name'])
            if len(calls) == 2:
                raise RuntimeError('identity space exhausted')
            return original(**kwargs)

        with patch.object(tracking_engine.store, 'create', side_effect=flaky_create):
            result = tracking_engine.generate_bulk_links(admin, 3, {'campaign_name': 'Batch'})

        assert result['generated'] == 2
        assert result['failed'] == 1
        assert result['errors'] == [{'index': 1, 'error': 'identity space exhausted'}]

    def test_invalid_template_values_fail_per_item(self, tracking_engine, admin):
        result = tracking_engine.generate_bulk_links(admin, 2, {'max_clicks': -1})

        assert result['generated'] == 0
        assert result['failed'] == 2

    @pytest.mark.parametrize('count', [0, -1, 'five', True, 101])
    def test_invalid_count(self, tracking_engine, admin, count):
        with pytest.raises(ValueError, match='count'):
            tracking_engine.generate_bulk_links(admin, count)


class TestPerformanceReport:
    """Test the per-link performance report."""

    @pytest.fixture
    def traffic(self, tracking_engine, admin, clock):
        strong = tracking_engine.create_link(admin, 'Spring Sale', 'newsletter', 'email')
        weak = tracking_engine.create_link(admin, 'Spring Sale', 'ads', 'cpc')
        idle = tracking_engine.create_link(admin, 'Autumn Promo', 'ads', 'cpc')

        session_id = tracking_engine.record_click(strong['tracking_id'], CLICK_FROM_INSTAGRAM)['session_id']
        tracking_engine.record_click(strong['tracking_id'], CLICK_DIRECT_DESKTOP)
        tracking_engine.record_conversion(
            strong['tracking_id'], order_ref='ORD-1', amount=90.0, revenue=90.0,
            user_id=None, session_id=session_id,
        )
        tracking_engine.record_click(weak['tracking_id'], CLICK_DIRECT_DESKTOP)
        return strong, weak, idle

    def test_links_sorted_by_revenue(self, tracking_engine, admin, traffic):
        strong, weak, idle = traffic

        report = tracking_engine.performance_report(admin)

        rows = report['links']
        assert rows[0]['tracking_id'] == strong['tracking_id']
        assert rows[0]['clicks'] == 2
        assert rows[0]['conversions'] == 1
        assert rows[0]['revenue'] == 90.0
        assert rows[0]['click_through_rate'] == 50.0
        assert rows[0]['average_order_value'] == 90.0
        assert rows[0]['revenue_per_click'] == 45.0
        assert {row['tracking_id'] for row in rows[1:]} == {weak['tracking_id'], idle['tracking_id']}

    def test_summary_and_campaigns(self, tracking_engine, admin, traffic):
        report = tracking_engine.performance_report(admin)

        assert report['summary']['total_links'] == 3
        assert report['summary']['active_links'] == 3
        assert report['summary']['total_clicks'] == 3
        assert report['summary']['total_revenue'] == 90.0
        assert report['summary']['average_clicks_per_link'] == 1.0
        assert report['campaigns'][0] == {
            'campaign_name': 'Spring Sale',
            'links': 2,
            'clicks': 3,
            'conversions': 1,
            'revenue': 90.0,
            'conversion_rate': 33.33,
        }

    def test_thresholds(self, tracking_engine, admin, traffic):
        strong, weak, idle = traffic

        assert [row['tracking_id'] for row in tracking_engine.performance_report(admin, min_clicks=1)['links']] == [
            strong['tracking_id'], weak['tracking_id'],
        ]
        assert [row['tracking_id'] for row in tracking_engine.performance_report(admin, min_revenue=50)['links']] == [
            strong['tracking_id'],
        ]

    def test_period_filter(self, tracking_engine, admin, traffic, clock):
        """Test links created outside the period are excluded."""
        later = clock() + timedelta(days=1)

        report = tracking_engine.performance_report(
            admin, start_date=later.isoformat(), end_date=(later + timedelta(days=1)).isoformat()
        )

        assert report['links'] == []
        assert report['summary']['click_through_rate'] == 0.0

    def test_inverted_period(self, tracking_engine, admin, clock):
        with pytest.raises(ValueError):
            tracking_engine.performance_report(
                admin, start_date=clock().isoformat(), end_date=(clock() - timedelta(days=1)).isoformat()
            )
