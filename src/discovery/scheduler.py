"""Discovery scheduler: turns a cron expression into timer-driven scans.

Jenkins cron syntax is accepted, including the ``H`` hash token, which
croniter resolves deterministically from :data:`HASH_ID`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from croniter import croniter

from src.discovery.models import ScheduleSpec
from src.shared.constants import (
    DAILY_INTERVAL_S,
    DEFAULT_CRON,
    DISABLED_INTERVAL_S,
    FALLBACK_INTERVAL_S,
    MIN_INTERVAL_S,
)
from src.shared.errors import SchedulingError

logger = logging.getLogger(__name__)

HASH_ID = "armorcode-job-discovery"

_EVERY_N_MINUTES_RE = re.compile(r"^\*/(\d+) \* \* \* \*$")


def _next_fire(expression: str, start: datetime) -> datetime:
    return croniter(expression, start, hash_id=HASH_ID).get_next(datetime)


def next_interval(spec: ScheduleSpec, now: datetime | None = None) -> timedelta:
    """Delay until the next discovery scan.

    Never raises: an expression croniter cannot parse falls back to one
    hour with a warning.
    """
    if not spec.monitoring_enabled:
        return timedelta(seconds=DISABLED_INTERVAL_S)

    expression = (spec.cron_expression or "").strip()
    if not expression or expression == DEFAULT_CRON:
        return timedelta(seconds=DAILY_INTERVAL_S)

    match = _EVERY_N_MINUTES_RE.match(expression)
    if match and int(match.group(1)) > 0:
        return timedelta(minutes=int(match.group(1)))

    now = now or datetime.now()
    try:
        delay = _next_fire(expression, now) - now
    except (ValueError, KeyError) as exc:
        logger.warning(
            "Cannot parse cron expression %r (%s); using hourly fallback",
            expression,
            exc,
        )
        return timedelta(seconds=FALLBACK_INTERVAL_S)
    return max(delay, timedelta(seconds=MIN_INTERVAL_S))


def validate_cron_expression(expression: str) -> list[str]:
    """Validate *expression* for use as a discovery schedule.

    Returns:
        Warnings (empty when the expression is fine).

    Raises:
        SchedulingError: If the expression is empty or unparsable.
    """
    expression = (expression or "").strip()
    if not expression:
        raise SchedulingError("Cron expression cannot be empty")
    try:
        start = datetime(2000, 1, 1)
        first = _next_fire(expression, start)
        second = _next_fire(expression, first)
    except (ValueError, KeyError) as exc:
        raise SchedulingError(f"Invalid cron expression {expression!r}: {exc}") from exc

    if second - first < timedelta(hours=1):
        return [
            "This schedule runs more often than once an hour; "
            "frequent scans may affect controller performance"
        ]
    return []


ScanCallable = Callable[[], Awaitable[Any]]


class DiscoveryScheduler:
    """Runs *scan* on a daemon timer derived from the current schedule.

    At most one timer is pending at any time.  :meth:`reschedule` replaces
    it atomically; a timer that fires after being superseded does nothing.
    A fire that finds a scan still running is skipped.  After each scan the
    scheduler re-arms itself from *spec_provider* (or the last spec).
    """

    def __init__(
        self,
        scan: ScanCallable,
        spec_provider: Callable[[], ScheduleSpec] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._scan = scan
        self._spec_provider = spec_provider
        self._clock = clock
        self._lock = threading.Lock()
        self._scan_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._spec = ScheduleSpec()
        self._stopped = False

    @property
    def pending(self) -> bool:
        """True while a timer is armed."""
        with self._lock:
            return self._timer is not None

    def next_interval(self, spec: ScheduleSpec | None = None) -> timedelta:
        return next_interval(spec or self._spec, self._clock())

    def reschedule(self, spec: ScheduleSpec) -> timedelta:
        """Cancel the pending timer and arm a new one for *spec*."""
        delay = self.next_interval(spec)
        with self._lock:
            if self._stopped:
                return delay
            if self._timer is not None:
                self._timer.cancel()
            self._spec = spec
            self._generation += 1
            timer = threading.Timer(
                delay.total_seconds(), self._fire, args=(self._generation,)
            )
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.info(
            "Next discovery scan in %s (cron=%r, monitoring=%s)",
            delay,
            spec.cron_expression,
            spec.monitoring_enabled,
        )
        return delay

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._stopped:
                return
            self._timer = None

        if not self._scan_lock.acquire(blocking=False):
            logger.info("Previous discovery scan still running; skipping this run")
        else:
            try:
                asyncio.run(self._scan())
            except Exception:
                logger.exception("Discovery scan failed")
            finally:
                self._scan_lock.release()

        spec = self._spec_provider() if self._spec_provider else self._spec
        self.reschedule(spec)

    def shutdown(self) -> None:
        """Cancel the pending timer; no further scans are armed."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        logger.info("Discovery scheduler stopped")
