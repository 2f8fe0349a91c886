"""
Cron engine - fires callbacks on 5-field cron schedules.

The engine only knows about timing. It keeps a table of registered entries
(cron expression + timezone + callback), sleeps until the earliest one is due
and hands each firing to its own thread, so a long-running job never delays
another job's trigger.

Schedules are evaluated with croniter against timezone-aware datetimes, so
"0 9 * * 1-5" in America/New_York means 09:00 New York time on weekdays, DST
included.
"""

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

logger = logging.getLogger(__name__)

CRON_FIELDS = 5


class CronSpecError(ValueError):
    """The cron expression is not a valid 5-field schedule."""


# =============================================================================
# Schedule parsing
# =============================================================================

def parse_cron(spec: str) -> str:
    """
    Validate a 5-field cron expression (minute hour day-of-month month day-of-week).

    Returns the normalised expression (single spaces).
    """
    fields = (spec or "").split()
    if len(fields) != CRON_FIELDS:
        raise CronSpecError(
            f"Invalid cron expression '{spec}': expected {CRON_FIELDS} fields, got {len(fields)}"
        )
    expr = " ".join(fields)
    try:
        croniter(expr)
    except Exception as e:
        raise CronSpecError(f"Invalid cron expression '{spec}': {e}") from e
    return expr


def local_timezone() -> tzinfo:
    """The host's timezone, as a DST-aware ZoneInfo when it can be determined."""
    tz_env = os.getenv("TZ", "").lstrip(":")
    if tz_env:
        try:
            return ZoneInfo(tz_env)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    try:
        target = str(Path("/etc/localtime").resolve())
        if "zoneinfo/" in target:
            return ZoneInfo(target.split("zoneinfo/", 1)[1])
    except (OSError, ZoneInfoNotFoundError, ValueError):
        pass
    return datetime.now().astimezone().tzinfo


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """
    Map a job's timezone setting to a tzinfo.

    "" and "local" mean the host timezone, "utc" means UTC, anything else is an
    IANA name. Unknown names fall back to the host timezone.
    """
    key = (name or "").strip()
    if key.lower() in ("", "local"):
        return local_timezone()
    if key.lower() == "utc":
        return timezone.utc
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError):
        return local_timezone()


def next_fire_time(spec: str, tz: tzinfo, after: datetime) -> datetime:
    """First fire time strictly after ``after``, in ``tz``."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    return croniter(spec, after.astimezone(tz)).get_next(datetime)


def upcoming_fire_times(spec: str, tz: tzinfo, after: datetime, count: int) -> List[datetime]:
    """The next ``count`` fire times after ``after``."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    it = croniter(parse_cron(spec), after.astimezone(tz))
    return [it.get_next(datetime) for _ in range(count)]


# =============================================================================
# Engine
# =============================================================================

@dataclass
class CronEntry:
    handle: str
    spec: str
    tz: tzinfo
    callback: Callable[[], None]
    name: str
    next_run: datetime


class CronEngine:
    """
    In-process cron scheduler.

    ``register()`` returns an opaque handle that ``unregister()`` accepts.
    Entries can be added and removed while the engine thread is running.
    """

    def __init__(
        self,
        dispatch: Optional[Callable[[CronEntry], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_sleep: float = 60.0,
    ):
        self._dispatch = dispatch or self._thread_dispatch
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_sleep = max_sleep
        self._entries: Dict[str, CronEntry] = {}
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []

    def register(
        self,
        spec: str,
        tz: tzinfo,
        callback: Callable[[], None],
        name: Optional[str] = None,
    ) -> str:
        """Add an entry. Raises CronSpecError for an invalid expression."""
        expr = parse_cron(spec)
        handle = uuid.uuid4().hex[:12]
        entry = CronEntry(
            handle=handle,
            spec=expr,
            tz=tz,
            callback=callback,
            name=name or handle,
            next_run=next_fire_time(expr, tz, self._clock()),
        )
        with self._lock:
            self._entries[handle] = entry
        self._wakeup.set()
        logger.debug("Registered cron entry %s (%s) next=%s", entry.name, expr, entry.next_run.isoformat())
        return handle

    def unregister(self, handle: str) -> bool:
        with self._lock:
            entry = self._entries.pop(handle, None)
        if entry is None:
            return False
        self._wakeup.set()
        logger.debug("Unregistered cron entry %s", entry.name)
        return True

    def entries(self) -> List[CronEntry]:
        with self._lock:
            return list(self._entries.values())

    def next_fire(self, handle: str) -> Optional[datetime]:
        with self._lock:
            entry = self._entries.get(handle)
            return entry.next_run if entry else None

    def run_pending(self, now: Optional[datetime] = None) -> int:
        """
        Fire every entry that is due at ``now`` and advance it.

        An entry that missed several fire times (e.g. the host was suspended)
        fires once, then resumes from ``now``. Returns the number fired.
        """
        now = now or self._clock()
        due = []
        with self._lock:
            for entry in self._entries.values():
                if entry.next_run <= now:
                    due.append(entry)
                    entry.next_run = next_fire_time(entry.spec, entry.tz, now)
        for entry in due:
            logger.debug("Firing cron entry %s", entry.name)
            try:
                self._dispatch(entry)
            except Exception as e:
                logger.error("Failed to dispatch cron entry %s: %s", entry.name, e)
        return len(due)

    def _seconds_until_next(self) -> float:
        with self._lock:
            if not self._entries:
                return self._max_sleep
            earliest = min(e.next_run for e in self._entries.values())
        delay = (earliest - self._clock()).total_seconds()
        return max(0.0, min(delay, self._max_sleep))

    def _loop(self) -> None:
        logger.info("Cron engine started")
        while not self._stop.is_set():
            self.run_pending()
            self._wakeup.wait(timeout=self._seconds_until_next())
            self._wakeup.clear()
        logger.info("Cron engine stopped")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="cron-engine")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop firing new triggers. Callbacks already dispatched keep running."""
        self._stop.set()
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    # =========================================================================
    # Dispatched callbacks
    # =========================================================================

    def _thread_dispatch(self, entry: CronEntry) -> None:
        worker = threading.Thread(
            target=entry.callback,
            name=f"cron-{entry.name}",
            daemon=True,
        )
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def active_callbacks(self) -> int:
        with self._lock:
            return sum(1 for w in self._workers if w.is_alive())

    def join_running(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for dispatched callbacks to finish.

        Returns False if some were still running when ``timeout`` expired.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(timeout=remaining)
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            return not self._workers

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
