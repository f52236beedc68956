"""
Window Refresher - Periodic recompute of time-critical windows

Responsibilities:
- Recompute windows on a fixed interval (60 seconds) so countdowns stay
  current without new input
- Restart cleanly when the incident time changes
- Cancel its timer on stop (a leaked timer is a defect)

Design principles:
- Input is validated synchronously in start(); nothing is armed for bad input
- One live timer at most, re-armed after each tick
- Each timer carries a generation number; a timer from an earlier
  generation never delivers and never re-arms
- The callback runs on the timer thread without the state lock held, so
  it may stop or restart the refresher; callers that own UI state should
  hand the result over to their own thread
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from caseforms.contracts import IncidentInputs, TimeCriticalWindows
from caseforms.core.window_calculator import compute_windows

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class WindowRefresher:
    """Owns the recompute timer for one open form"""

    REFRESH_INTERVAL_SECONDS = 60

    def __init__(
        self,
        on_update: Callable[[TimeCriticalWindows], None],
        interval_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            on_update: Called with each freshly computed TimeCriticalWindows
            interval_seconds: Recompute interval (default 60)
            clock: Returns 'now' (default: local time, timezone-aware)
        """
        self.on_update = on_update
        self.interval_seconds = interval_seconds if interval_seconds is not None else self.REFRESH_INTERVAL_SECONDS
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {self.interval_seconds}")
        self.clock = clock or _local_now

        self._lock = threading.RLock()
        # Held while on_update runs; never taken by stop()
        self._deliver_lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._inputs: Optional[IncidentInputs] = None
        self.latest: Optional[TimeCriticalWindows] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def inputs(self) -> Optional[IncidentInputs]:
        return self._inputs

    # ========================
    # Lifecycle
    # ========================

    def start(
        self,
        incident_date,
        incident_time: Optional[str] = None,
        pep_administered: bool = False,
        ec_administered: bool = False,
    ) -> TimeCriticalWindows:
        """
        Compute once now, then every interval.

        Any previous timer is cancelled first.

        Returns:
            TimeCriticalWindows: The synchronous first result

        Raises:
            InvalidTimeInput: If the incident input is unparseable
                (no timer is armed and the previous one keeps running)
        """
        inputs = IncidentInputs(
            incident_date=incident_date,
            incident_time=incident_time,
            pep_administered=bool(pep_administered),
            ec_administered=bool(ec_administered),
        )
        windows = self._compute(inputs)

        with self._lock:
            self._cancel_timer()
            self._generation += 1
            self._inputs = inputs
            generation = self._generation
            self._arm(generation)
        self._deliver(generation, windows)

        logger.info(
            f"Window refresher started (generation {generation}, every {self.interval_seconds}s, "
            f"tier {windows.urgency.value})"
        )
        return windows

    def update_incident(self, incident_date, incident_time: Optional[str] = None) -> TimeCriticalWindows:
        """
        Incident date/time changed: cancel the old timer and start a new one.

        Administered flags are kept.
        """
        with self._lock:
            current = self._inputs
        pep = current.pep_administered if current else False
        ec = current.ec_administered if current else False
        return self.start(incident_date, incident_time, pep_administered=pep, ec_administered=ec)

    def set_administered(self, pep: Optional[bool] = None, ec: Optional[bool] = None) -> TimeCriticalWindows:
        """
        Change administered flags and recompute immediately (timer untouched).

        Raises:
            RuntimeError: If the refresher has not been started
        """
        with self._lock:
            if self._inputs is None:
                raise RuntimeError("Window refresher has not been started")
            changes = {}
            if pep is not None:
                changes['pep_administered'] = bool(pep)
            if ec is not None:
                changes['ec_administered'] = bool(ec)
            self._inputs = replace(self._inputs, **changes)
        return self.tick()

    def tick(self) -> Optional[TimeCriticalWindows]:
        """
        Recompute and deliver now (does not re-arm).

        Returns:
            TimeCriticalWindows, or None if not started
        """
        with self._lock:
            if self._inputs is None:
                return None
            windows = self._compute(self._inputs)
            generation = self._generation
        self._deliver(generation, windows)
        return windows

    def stop(self) -> None:
        """Cancel the timer. Safe to call more than once."""
        with self._lock:
            was_running = self._timer is not None
            self._cancel_timer()
            self._generation += 1
            self._inputs = None
        if was_running:
            logger.info("Window refresher stopped")

    def __enter__(self) -> 'WindowRefresher':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ========================
    # Private Helpers
    # ========================

    def _compute(self, inputs: IncidentInputs) -> TimeCriticalWindows:
        return compute_windows(
            inputs.incident_date,
            self.clock(),
            pep_administered=inputs.pep_administered,
            ec_administered=inputs.ec_administered,
            incident_time=inputs.incident_time,
        )

    def _deliver(self, generation: int, windows: TimeCriticalWindows) -> bool:
        """
        Hand windows to on_update unless a newer generation has started.

        Runs outside _lock, so the callback may call stop(),
        update_incident() or set_administered().
        """
        with self._deliver_lock:
            if generation != self._generation:
                logger.debug(f"Dropping result of superseded generation {generation}")
                return False
            self.latest = windows
            self.on_update(windows)
            return True

    def _arm(self, generation: int) -> None:
        # Caller holds the lock
        timer = threading.Timer(self.interval_seconds, self._on_timer, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        # Caller holds the lock
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._inputs is None:
                logger.debug(f"Discarding stale refresh (generation {generation})")
                return
            try:
                windows = self._compute(self._inputs)
            except Exception as e:
                logger.error(f"Window refresh failed: {e}")
                windows = None

        if windows is not None:
            try:
                self._deliver(generation, windows)
            except Exception as e:
                logger.error(f"Window refresh callback failed: {e}")

        with self._lock:
            if generation != self._generation or self._inputs is None:
                logger.debug(f"Refresher stopped or restarted during generation {generation}, not re-arming")
                return
            self._arm(generation)
