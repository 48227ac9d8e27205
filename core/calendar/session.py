"""
Calendar Session

Thin stateful layer around the pure CalendarEngine. It owns the current
view and navigation state and coordinates the background concerns:

- Request tokens: every build gets a new token; a result whose token is no
  longer the latest is discarded instead of overwriting a newer view
- Navigation guard: while a navigation-triggered build runs, auto refresh
  skips its tick
- Rate-limited reconciliation: the sync collaborator runs at most once per
  minimum interval
- AutoRefresher: cancellable periodic refresh on a background thread
"""

import logging
import threading
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from .engine import CalendarEngine
from .errors import CalendarFetchError
from .filters import CalendarFilter
from .views import CalendarView
from .windows import GRANULARITIES, get_timezone, shift_reference

logger = logging.getLogger(__name__)

DEFAULT_SYNC_MIN_INTERVAL_SECONDS = 30
DEFAULT_REFRESH_INTERVAL_SECONDS = 60


class CalendarSession:
    """
    Current calendar view plus navigation and refresh state.

    Args:
        engine: CalendarEngine used for every build
        granularity: Initial view granularity
        reference_date: Initial reference date (defaults to today)
        calendar_filter: Initial filter
        sync_callback: Optional reconciliation call, e.g. sync_scheduled_operations
        sync_min_interval_seconds: Minimum seconds between two sync calls
        clock: Monotonic clock used for rate limiting
        today: Callable returning the plant-local current date
    """

    def __init__(
        self,
        engine: CalendarEngine,
        granularity: str = 'week',
        reference_date: Optional[date] = None,
        calendar_filter: Optional[CalendarFilter] = None,
        sync_callback: Optional[Callable[[], Dict[str, Any]]] = None,
        sync_min_interval_seconds: float = DEFAULT_SYNC_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        today: Optional[Callable[[], date]] = None
    ):
        if granularity not in GRANULARITIES:
            raise ValueError(
                f"Invalid granularity: '{granularity}'. Must be one of: {GRANULARITIES}"
            )

        self.engine = engine
        self.sync_callback = sync_callback
        self.sync_min_interval_seconds = sync_min_interval_seconds
        self._clock = clock
        self._today = today or (lambda: datetime.now(get_timezone(engine.timezone)).date())

        self.granularity = granularity
        self.reference_date = reference_date or self._today()
        self.calendar_filter = calendar_filter

        self.current_view: Optional[CalendarView] = None
        self.last_error: Optional[CalendarFetchError] = None
        self.last_sync_result: Optional[Dict[str, Any]] = None
        self.last_sync_error: Optional[Exception] = None

        self._lock = threading.Lock()
        self._request_token = 0
        self._navigations = 0
        self._last_sync_at: Optional[float] = None

    @property
    def navigating(self) -> bool:
        return self._navigations > 0

    @property
    def request_token(self) -> int:
        return self._request_token

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def refresh(self, sync: bool = False) -> Optional[CalendarView]:
        """
        Rebuild the current view.

        Args:
            sync: Run the (rate-limited) reconciliation call first

        Returns:
            The newly applied view, or the previous view if the build failed
            or was superseded by a newer request
        """
        if sync:
            self.maybe_sync()
        return self._build()

    def navigate(self, direction: str) -> Optional[CalendarView]:
        """Move one day, week or month back ('prev') or forward ('next')."""
        with self._lock:
            self.reference_date = shift_reference(self.granularity, self.reference_date, direction)
        return self._navigation_build()

    def go_to_today(self) -> Optional[CalendarView]:
        return self.go_to_date(self._today())

    def go_to_date(self, day: date) -> Optional[CalendarView]:
        with self._lock:
            self.reference_date = day
        return self._navigation_build()

    def set_granularity(self, granularity: str) -> Optional[CalendarView]:
        if granularity not in GRANULARITIES:
            raise ValueError(
                f"Invalid granularity: '{granularity}'. Must be one of: {GRANULARITIES}"
            )
        with self._lock:
            self.granularity = granularity
        return self._navigation_build()

    def set_filter(self, calendar_filter: Optional[CalendarFilter]) -> Optional[CalendarView]:
        with self._lock:
            self.calendar_filter = calendar_filter
        return self._build()

    def _navigation_build(self) -> Optional[CalendarView]:
        with self._lock:
            self._navigations += 1
        try:
            return self._build()
        finally:
            with self._lock:
                self._navigations -= 1

    def _build(self) -> Optional[CalendarView]:
        with self._lock:
            self._request_token += 1
            token = self._request_token
            granularity = self.granularity
            reference_date = self.reference_date
            calendar_filter = self.calendar_filter

        try:
            view = self.engine.build_view(granularity, reference_date, calendar_filter)
        except CalendarFetchError as e:
            with self._lock:
                if token == self._request_token:
                    self.last_error = e
            logger.warning(
                f"Calendar build #{token} failed ({'retryable' if e.retryable else 'permanent'}): {e}"
            )
            return self.current_view

        with self._lock:
            if token != self._request_token:
                logger.info(
                    f"Discarding stale calendar build #{token} (latest is #{self._request_token})"
                )
                return self.current_view
            self.current_view = view
            self.last_error = None

        return view

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def maybe_sync(self) -> Optional[Dict[str, Any]]:
        """
        Run the sync collaborator unless it ran within the minimum interval.

        Returns:
            The collaborator's result, or None when skipped or failed
        """
        if self.sync_callback is None:
            return None

        now = self._clock()
        with self._lock:
            if (self._last_sync_at is not None
                    and now - self._last_sync_at < self.sync_min_interval_seconds):
                logger.debug(
                    f"Skipping sync, last run {now - self._last_sync_at:.1f}s ago"
                )
                return None
            self._last_sync_at = now

        return self._run_sync()

    def sync_now(
        self,
        sync_callback: Optional[Callable[[], Dict[str, Any]]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Run a sync immediately, ignoring the rate limit.

        Args:
            sync_callback: Callable to run instead of the session's own
        """
        callback = sync_callback or self.sync_callback
        if callback is None:
            return None
        with self._lock:
            self._last_sync_at = self._clock()
        return self._run_sync(callback)

    def _run_sync(self, callback: Optional[Callable[[], Dict[str, Any]]] = None) -> Optional[Dict[str, Any]]:
        try:
            result = (callback or self.sync_callback)()
        except Exception as e:
            # The existing view stays valid; the failure is reported, not raised
            logger.error(f"Schedule sync failed: {e}", exc_info=True)
            self.last_sync_error = e
            return None

        self.last_sync_result = result
        self.last_sync_error = None
        logger.info(f"Schedule sync completed: {result}")
        return result


class AutoRefresher:
    """
    Periodic, cancellable refresh of a CalendarSession.

    Runs session.refresh(sync=False) every interval on a daemon thread and
    skips ticks while a navigation build is in flight.

    Example:
        >>> refresher = AutoRefresher(session, interval_seconds=60)
        >>> refresher.start()
        >>> ...
        >>> refresher.stop()
    """

    def __init__(self, session: CalendarSession, interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.session = session
        self.interval_seconds = interval_seconds
        self.tick_count = 0
        self.skipped_ticks = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="calendar-auto-refresh", daemon=True
        )
        self._thread.start()
        logger.info(f"Auto refresh started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Auto refresh stopped")

    def tick(self) -> bool:
        """
        Run one refresh unless a navigation build is in flight.

        Returns:
            True if a refresh ran
        """
        if self.session.navigating:
            self.skipped_ticks += 1
            logger.debug("Auto refresh tick skipped: navigation in progress")
            return False

        try:
            self.session.refresh(sync=False)
        except Exception as e:
            logger.error(f"Auto refresh failed: {e}", exc_info=True)
            return False

        self.tick_count += 1
        return True

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()
