"""
Link expiration.

Clicks already check ``expires_at`` themselves; the sweep moves the stored
status of overdue links to ``expired`` so listings and reports agree.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional

from linktrack.models.tracking import LinkStatus, TrackingLink
from linktrack.services.clock import utcnow
from linktrack.services.link_store import TrackingLinkStore

logger = logging.getLogger(__name__)


class ExpirationManager:
    """Transitions overdue active links to expired."""

    def __init__(self, store: TrackingLinkStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def sweep(self) -> Dict:
        """
        Expire every active link whose expiry has passed.

        Each link is updated in its own transaction under its own lock, so a
        failure on one link is recorded and the sweep moves on.

        Returns:
            Dictionary containing:
                - expired_count: Links transitioned by this run
                - failed: List of {tracking_id, error}
                - swept_at: Time the sweep started
        """
        now = self.clock()
        expired_count = 0
        failed = []

        def expire(db, link: TrackingLink) -> bool:
            # Re-check: an extend may have landed since the candidate query
            if link.status != LinkStatus.ACTIVE or link.expires_at >= now:
                return False
            link.status = LinkStatus.EXPIRED
            return True

        for tracking_id in self.store.expired_active_ids(now):
            try:
                if self.store.unit_of_work(tracking_id, expire):
                    expired_count += 1
            except Exception as e:
                logger.error("[Expiration] Failed to expire %s: %s", tracking_id, e, exc_info=True)
                failed.append({'tracking_id': tracking_id, 'error': str(e)})

        if expired_count or failed:
            logger.info("[Expiration] Expired %d links, %d failures", expired_count, len(failed))

        return {
            'expired_count': expired_count,
            'failed': failed,
            'swept_at': now.isoformat(),
        }


class ExpirationScheduler:
    """Runs ``ExpirationManager.sweep`` on a fixed interval in a daemon thread."""

    def __init__(self, manager: ExpirationManager, interval_seconds: float = 300):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[Dict] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[Dict]:
        """Run one sweep; errors are logged so the loop keeps going."""
        try:
            self.last_result = self.manager.sweep()
        except Exception as e:
            logger.error("[Expiration] Sweep failed: %s", e, exc_info=True)
            return None
        return self.last_result

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="linktrack-expiration", daemon=True)
        self._thread.start()
        logger.info("[Expiration] Scheduler started (every %ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[Expiration] Scheduler stopped")
