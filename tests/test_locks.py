"""
Tests for per-link locking and concurrent writers.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from linktrack.services.engine import TrackingEngine
from linktrack.services.geo_device import NullGeolocationClient
from linktrack.services.locks import KeyedLockRegistry
from tests.fixtures.test_data import CLICK_DIRECT_DESKTOP, CLICK_FROM_INSTAGRAM


class TestKeyedLockRegistry:
    """Test KeyedLockRegistry."""

    def test_entries_are_released(self):
        """Test keys disappear once nobody holds them."""
        registry = KeyedLockRegistry()

        with registry.hold('LINK-A'):
            assert registry.active_keys() == ['LINK-A']

        assert registry.active_keys() == []

    def test_released_on_error(self):
        registry = KeyedLockRegistry()

        try:
            with registry.hold('LINK-A'):
                raise RuntimeError('boom')
        except RuntimeError:
            pass

        with registry.hold('LINK-A'):
            pass
        assert registry.active_keys() == []

    def test_same_key_is_exclusive(self):
        """Test two holders of one key never overlap."""
        registry = KeyedLockRegistry()
        inside = []
        overlaps = []

        def worker():
            with registry.hold('LINK-A'):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert registry.active_keys() == []

    def test_different_keys_do_not_block(self):
        """Test holding one key leaves other keys available."""
        registry = KeyedLockRegistry()
        acquired = threading.Event()

        def other():
            with registry.hold('LINK-B'):
                acquired.set()

        with registry.hold('LINK-A'):
            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(timeout=5)
            thread.join()


class TestConcurrentTracking:
    """Test concurrent clicks and conversions on one link."""

    def _engine(self, file_session_factory, clock, ledger):
        return TrackingEngine(
            file_session_factory,
            clock=clock,
            geolocation_client=NullGeolocationClient(),
            ledger=ledger,
        )

    def test_concurrent_clicks_are_all_counted(self, file_session_factory, clock, ledger, admin):
        """Test N concurrent clicks give a total of exactly N."""
        engine = self._engine(file_session_factory, clock, ledger)
        link = engine.create_link(admin, 'Flash Sale', 'sms', 'text')
        payloads = [dict(CLICK_DIRECT_DESKTOP, ip=f'198.51.100.{index}') for index in range(20)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda payload: engine.record_click(link['tracking_id'], payload), payloads))

        stored = engine.store.get(link['tracking_id'])
        assert stored.total_clicks == 20
        assert stored.device_stats['desktop'] == 20
        assert len({result['click_id'] for result in results}) == 20
        assert engine.store.locks.active_keys() == []

    def test_concurrent_clicks_respect_quota(self, file_session_factory, clock, ledger, admin):
        """Test a quota of k admits exactly k of many concurrent clicks."""
        engine = self._engine(file_session_factory, clock, ledger)
        link = engine.create_link(admin, 'Limited', 'sms', 'text', max_clicks=5)
        outcomes = []

        def click(index):
            try:
                engine.record_click(link['tracking_id'], dict(CLICK_DIRECT_DESKTOP, ip=f'198.51.100.{index}'))
                outcomes.append('ok')
            except Exception as e:
                outcomes.append(type(e).__name__)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(click, range(15)))

        assert outcomes.count('ok') == 5
        assert outcomes.count('LimitReached') == 10
        assert engine.store.get(link['tracking_id']).total_clicks == 5

    def test_concurrent_conversions_sum_exactly(self, file_session_factory, clock, ledger, admin):
        """Test concurrent conversions add up to the exact revenue."""
        engine = self._engine(file_session_factory, clock, ledger)
        link = engine.create_link(admin, 'Flash Sale', 'sms', 'text')
        session_id = engine.record_click(link['tracking_id'], CLICK_FROM_INSTAGRAM)['session_id']

        def convert(index):
            return engine.record_conversion(
                link['tracking_id'], order_ref=f'ORD-{index}', amount=25.0, revenue=25.0,
                user_id=None, session_id=session_id,
            )

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(convert, range(12)))

        stored = engine.store.get(link['tracking_id'])
        assert stored.total_conversions == 12
        assert stored.total_revenue == 300.0
        assert stored.attributed_revenue == 300.0
        assert len(ledger.entries) == 12
