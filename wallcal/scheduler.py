"""
Background refresh scheduler.

Runs a sync on a timer in a daemon thread. The scheduler is either IDLE
or RUNNING; the same gate serializes on-demand syncs (extend, manual
sync), so at most one sync executes at a time.
"""

import os
import sys
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .errors import NoSourcesError, NotConnectedError


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] SCHEDULER: {msg}", file=sys.stderr)


DISABLE_ENV_VAR = "WALLCAL_DISABLE_CALENDAR_SYNC"


class SchedulerState(Enum):
    """State of the sync gate."""
    IDLE = "idle"
    RUNNING = "running"


def sync_disabled_by_env() -> bool:
    return os.environ.get(DISABLE_ENV_VAR, "").strip().lower() == "true"


class RefreshScheduler:
    """
    Periodic sync loop with an at-most-one-run gate.

    Args:
        sync_func: Runs one sync; called with no arguments by the loop
        interval_func: Returns the refresh interval in minutes; called
            after every successful run
        disabled: Disable the loop; defaults to the environment switch
    """

    RETRY_DELAY_SECONDS = 60

    def __init__(
        self,
        sync_func: Callable[..., Any],
        interval_func: Callable[[], int],
        disabled: Optional[bool] = None
    ):
        self._sync_func = sync_func
        self._interval_func = interval_func
        self.disabled = sync_disabled_by_env() if disabled is None else disabled

        self._run_lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def is_started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ==================== Gate ====================

    def run_exclusive(self, func: Callable[..., Any], *args, wait: bool = True, **kwargs) -> Any:
        """
        Run func while holding the gate.

        Args:
            wait: Block until a running sync finishes; when False a
                request made while RUNNING is dropped

        Returns:
            func's result, or None if the request was dropped.
        """
        if not self._run_lock.acquire(blocking=wait):
            _debug_print("Sync already running, request dropped")
            return None
        try:
            self._state = SchedulerState.RUNNING
            return func(*args, **kwargs)
        finally:
            self._state = SchedulerState.IDLE
            self._run_lock.release()

    def run_once(self, wait: bool = False, **kwargs) -> Any:
        """Run one sync; by default dropped if one is already in flight."""
        return self.run_exclusive(self._sync_func, wait=wait, **kwargs)

    # ==================== Loop ====================

    def start(self) -> bool:
        """
        Start the background loop.

        Returns:
            False if the loop is disabled or already started.
        """
        if self.disabled:
            _debug_print("Calendar auto-sync disabled")
            return False
        if self.is_started:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="calendar-sync", daemon=True)
        self._thread.start()
        _debug_print("Calendar auto-sync started")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop, interrupting its sleep; an in-flight sync completes first."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called. Returns True if stopped."""
        return self._stop_event.wait(timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                ok = self._run_logged()
                # Read after the run, which reloads configuration
                delay = max(1, int(self._interval_func())) * 60 if ok else self.RETRY_DELAY_SECONDS
            except Exception as e:
                _debug_print(f"Calendar auto-sync loop error: {type(e).__name__}: {e}")
                delay = self.RETRY_DELAY_SECONDS
            self._stop_event.wait(delay)

    def _run_logged(self) -> bool:
        """
        Run one sync from the loop.

        Returns:
            False if the sync failed and should be retried soon.
        """
        try:
            summary = self.run_once()
        except NotConnectedError:
            _debug_print("Calendar auto-sync skipped (not connected)")
            return True
        except NoSourcesError:
            _debug_print("Calendar auto-sync skipped (no sources configured)")
            return True
        except Exception as e:
            _debug_print(f"Calendar auto-sync failed: {type(e).__name__}: {e}")
            return False

        if summary is not None:
            _debug_print(f"Calendar auto-sync complete: {getattr(summary, 'events', 0)} events")
        return True
