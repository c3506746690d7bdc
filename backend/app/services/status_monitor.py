"""
Case status monitor.

Subscribes to the case store's change feed and turns row modifications into
status-change notifications.

Per change:
  - only "modified" changes are considered
  - at most one pipeline runs per case at a time; a change that arrives
    while its case is in flight is dropped
  - a case with 5 validated transitions in the trailing 60 seconds has
    further changes dropped until the window clears
  - the change must carry a recognised status that differs from the
    previous one and a valid email; anything else is logged and dropped
  - an audit-log entry is written, then the notifier runs
  - notifier failures become admin alerts and never reach the feed

Feed errors tear the subscription down and resubscribe after a fixed delay.
The restart loop has no ceiling and no backoff growth, so a persistently
failing feed restarts every ``restart_delay`` seconds indefinitely.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, List, Optional

from app.models.case import Case, VALID_STATUSES, utc_now
from app.models.notifications import AuditLogEntry, ChangeType, DocumentChange
from app.services.case_normalizer import normalize_case
from app.services.case_store import AUDIT_LOGS
from app.services.guards import InFlightTracker, SlidingWindowRateLimiter
from app.services.notifier import NotificationValidationError
from app.services.sanitize import is_valid_email, mask_email

logger = logging.getLogger(__name__)

RATE_LIMIT_MAX_CHANGES = 5
RATE_LIMIT_WINDOW_SECONDS = 60.0
RATE_LIMIT_RETENTION_SECONDS = 60 * 60.0
CLEANUP_INTERVAL_SECONDS = 60 * 60.0
RESTART_DELAY_SECONDS = 5.0
MAX_CONCURRENT_PIPELINES = 32


class StatusChangeMonitor:
    """Watches case rows and dispatches notifications for status changes."""

    def __init__(
        self,
        store,
        notifier,
        alerts,
        rate_limit: int = RATE_LIMIT_MAX_CHANGES,
        rate_window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        restart_delay: float = RESTART_DELAY_SECONDS,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
        max_concurrency: int = MAX_CONCURRENT_PIPELINES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.notifier = notifier
        self.alerts = alerts
        self.restart_delay = restart_delay
        self.cleanup_interval = cleanup_interval
        self.rate_limiter = SlidingWindowRateLimiter(rate_limit, rate_window_seconds, clock=clock)
        self.in_flight = InFlightTracker()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._unsubscribe = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self.is_active = False
        self.restart_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.is_active:
            logger.warning("Status listener already active")
            return

        self._unsubscribe = await self.store.subscribe(self.handle_batch, self.handle_listener_error)
        self.is_active = True
        logger.info("Status listener started")

        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def _unsubscribe_feed(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        self.is_active = False
        if unsubscribe is not None:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning("Error while unsubscribing from case feed: %s", e)

    async def stop(self) -> None:
        """Unsubscribe, stop housekeeping and wait for in-flight pipelines."""
        await self._unsubscribe_feed()
        for task in (self._cleanup_task, self._restart_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
        self._cleanup_task = None
        self._restart_task = None
        await self.in_flight.drain()
        logger.info("Status listener stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup_rate_limits()

    def cleanup_rate_limits(self) -> int:
        removed = self.rate_limiter.cleanup(RATE_LIMIT_RETENTION_SECONDS)
        if removed:
            logger.info("Rate-limit cleanup removed %d idle cases", removed)
        return removed

    # ------------------------------------------------------------------
    # Feed callbacks
    # ------------------------------------------------------------------

    def handle_batch(self, changes: Iterable[DocumentChange]) -> List[asyncio.Task]:
        """Dispatch every modified change without waiting for it to finish."""
        tasks = []
        for change in changes:
            if change.type != ChangeType.MODIFIED:
                continue
            task = self.dispatch(change)
            if task is not None:
                tasks.append(task)
        return tasks

    def dispatch(self, change: DocumentChange) -> Optional[asyncio.Task]:
        case_id = change.case_id

        if case_id in self.in_flight:
            logger.warning("Already processing case %s, skipping", case_id)
            return None

        if self.rate_limiter.is_limited(case_id):
            logger.warning("Rate limited for case %s", case_id)
            return None

        return self.in_flight.start(case_id, self.process_change(change))

    def handle_listener_error(self, error: Exception) -> None:
        logger.error("Case feed listener error: %s", error)
        if self._restart_task is not None and not self._restart_task.done():
            return
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_after_delay())

    async def _restart_after_delay(self) -> None:
        await asyncio.sleep(self.restart_delay)
        self.restart_count += 1
        logger.info("Restarting status listener (restart #%d)", self.restart_count)
        await self._unsubscribe_feed()
        try:
            await self.start()
        except Exception as e:
            logger.error("Failed to restart status listener: %s", e)
            self._restart_task = None
            self.handle_listener_error(e)

    # ------------------------------------------------------------------
    # Per-case pipeline
    # ------------------------------------------------------------------

    def is_valid_status_change(self, old_status: Optional[str], case: Case) -> bool:
        new_status = case.case_status
        if not new_status:
            logger.info("Case %s change has no status; not a status transition", case.case_id)
            return False
        if new_status not in VALID_STATUSES:
            logger.warning("Invalid status %r for case %s", new_status, case.case_id)
            return False
        if not old_status:
            # Default replica identity sends only the primary key in old_record
            logger.debug("Case %s change has no previous status; not a status transition", case.case_id)
            return False
        if old_status == new_status:
            logger.debug("Case %s status unchanged (%s)", case.case_id, new_status)
            return False
        if not is_valid_email(case.email):
            logger.warning("Missing or invalid email for case %s", case.case_id)
            return False
        return True

    async def process_change(self, change: DocumentChange) -> None:
        """Validate one change and run its notification; never raises."""
        case_id = change.case_id
        case: Optional[Case] = None
        try:
            async with self._semaphore:
                case = normalize_case(case_id, change.data)
                old_status = normalize_case(case_id, change.previous).case_status if change.previous else None

                if not self.is_valid_status_change(old_status, case):
                    return

                self.rate_limiter.record(case_id)
                await self._log_status_change(case_id, old_status, case.case_status)
                logger.info(
                    "Status: %s - %s -> %s (%s)",
                    case_id, old_status, case.case_status, mask_email(case.email),
                )

                await self.notifier.notify(case.case_status, case, case_id)
        except NotificationValidationError as e:
            logger.warning("Notification for %s rejected: %s", case_id, e)
        except Exception as e:
            logger.error("Failed to send notifications for %s: %s", case_id, e)
            await self.alerts.create_notification_failure_alert(
                case_id, getattr(e, "last_error", None) or e, case=case,
                retry_count=getattr(e, "attempts", 0),
            )

    async def _log_status_change(self, case_id: str, old_status: Optional[str], new_status: Optional[str]) -> None:
        entry = AuditLogEntry(
            case_id=case_id,
            old_status=old_status,
            new_status=new_status,
            timestamp=utc_now(),
        )
        try:
            await self.store.add_record(AUDIT_LOGS, entry.model_dump())
        except Exception as e:
            logger.warning("Failed to log status change for %s: %s", case_id, e)
