"""Periodic background refresh."""

import threading
from collections.abc import Callable
from concurrent.futures import CancelledError, Future

import structlog

from remote_config.manager.models import RefreshResult


logger = structlog.get_logger()

RefreshTrigger = Callable[[], Future[RefreshResult]]


class RefreshScheduler:
    """Daemon thread that triggers refreshes on a fixed interval.

    After consecutive failures the wait doubles, capped at
    ``max_backoff_seconds``; a successful refresh resets it.
    """

    def __init__(
        self,
        trigger: RefreshTrigger,
        interval_seconds: float,
        max_backoff_seconds: float,
        name: str = "remote-config-refresh",
    ) -> None:
        """Initialize the scheduler.

        Args:
            trigger: Starts a refresh and returns its future.
            interval_seconds: Wait between refreshes while healthy.
            max_backoff_seconds: Upper bound for the wait after failures.
            name: Thread name.
        """
        if interval_seconds <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)
        self._trigger = trigger
        self._interval = interval_seconds
        self._max_backoff = max(max_backoff_seconds, interval_seconds)
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._consecutive_failures = 0
        self._log = logger.bind(component="scheduler")

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def consecutive_failures(self) -> int:
        """Number of failed ticks since the last success."""
        return self._consecutive_failures

    def next_wait_seconds(self) -> float:
        """Compute the wait before the next tick."""
        if self._consecutive_failures == 0:
            return self._interval
        wait = self._interval * (2 ** min(self._consecutive_failures, 32))
        return min(wait, self._max_backoff)

    def start(self) -> None:
        """Start the scheduler thread (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        self._log.info("scheduler_started", interval_seconds=self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the scheduler and wait for its thread to exit.

        Args:
            timeout: Maximum seconds to wait for the thread.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self._log.info("scheduler_stopped")

    def tick(self) -> RefreshResult | None:
        """Run one refresh and update the backoff state.

        Returns:
            The refresh result, or None if the refresh was cancelled
            or crashed.
        """
        try:
            result = self._trigger().result()
        except CancelledError:
            self._log.debug("scheduled_refresh_cancelled")
            return None
        except Exception as e:  # noqa: BLE001
            self._consecutive_failures += 1
            self._log.exception("scheduled_refresh_crashed", error=str(e))
            return None

        if result.success:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
            self._log.info(
                "scheduled_refresh_failed",
                consecutive_failures=self._consecutive_failures,
                next_wait_seconds=self.next_wait_seconds(),
            )
        return result

    def _run(self) -> None:
        while not self._stop_event.wait(self.next_wait_seconds()):
            self.tick()
