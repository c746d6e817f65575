"""Fixed-interval polling loop around the reconciliation engine."""

import logging
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, TextIO

from .errors import ErrorHandler
from .git_sync.engine import Failed, Outcome, ReconciliationEngine, Synchronized, UpToDate


@dataclass
class SyncState:
    """Loop bookkeeping, owned by the scheduler for the process lifetime."""
    last_change_time: datetime = field(default_factory=datetime.now)
    last_check_time: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    def record_check(self, now: datetime) -> None:
        self.last_check_time = now

    def record_change(self, now: datetime) -> None:
        self.last_change_time = now

    def seconds_since_change(self, now: datetime) -> int:
        return max(0, int((now - self.last_change_time).total_seconds()))


class StatusReporter:
    """Console output: one overwritten status line plus occasional notices."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._line_active = False

    def steady(self, state: SyncState, now: datetime) -> None:
        formatted_time = state.last_change_time.strftime("%Y-%m-%d %H:%M:%S")
        self.stream.write(
            f"\rNo new changes since {formatted_time}. "
            f"Elapsed time: {state.seconds_since_change(now)} seconds."
        )
        self.stream.flush()
        self._line_active = True

    def notice(self, message: str) -> None:
        if self._line_active:
            self.stream.write("\n")
            self._line_active = False
        self.stream.write(f"{message}\n")
        self.stream.flush()


class PollScheduler:
    """
    Runs one reconciliation per interval until stopped.

    Cycles never overlap: ``run_once`` holds a lock for the whole cycle, so
    a manual trigger from another thread waits for the loop's cycle.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval_seconds: float,
        state: Optional[SyncState] = None,
        reporter: Optional[StatusReporter] = None,
        error_handler: Optional[ErrorHandler] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.state = state or SyncState(last_change_time=clock())
        self.reporter = reporter or StatusReporter()
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger('autopull.scheduler')
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self.cycles = 0

        if engine.on_divergence is None:
            engine.on_divergence = self._announce_divergence

    def _announce_divergence(self, local_id: str, remote_id: str) -> None:
        self.reporter.notice("New changes detected. Synchronizing...")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to exit at the next check; interrupts the sleep."""
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Stop cleanly between cycles on SIGINT/SIGTERM."""
        def handle_signal(signum, frame):
            self.logger.info(f"Received signal {signum}, shutting down after the current cycle")
            self.stop()

        signal.signal(signal.SIGINT, handle_signal)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, handle_signal)

    def run_once(self) -> Outcome:
        """Run a single cycle and fold its outcome into the sync state."""
        with self._cycle_lock:
            try:
                outcome = self.engine.reconcile()
            except Exception as e:
                # Keep the loop alive whatever the engine does
                self.logger.error(f"Unexpected error during reconciliation: {e}", exc_info=True)
                outcome = Failed(e)
            self.cycles += 1
            self._apply(outcome)
            return outcome

    def _apply(self, outcome: Outcome) -> None:
        now = self.clock()
        self.state.record_check(now)

        if isinstance(outcome, UpToDate):
            self.state.consecutive_failures = 0
            self.state.last_error = None
            self.reporter.steady(self.state, now)
        elif isinstance(outcome, Synchronized):
            self.state.consecutive_failures = 0
            self.state.last_error = None
            if outcome.changed:
                self.state.record_change(now)
                self.reporter.notice(f"Synchronized {outcome.old_id[:12]} -> {outcome.new_id[:12]}")
            else:
                self.logger.warning("Pull completed but the local head did not move")
        elif isinstance(outcome, Failed):
            self.state.consecutive_failures += 1
            self.state.last_error = str(outcome.error)
            self.error_handler.handle_cycle_error(
                outcome.error,
                context={'consecutive_failures': self.state.consecutive_failures}
            )

    def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Loop until ``stop`` is called (or ``max_cycles`` cycles have run).

        The stop flag is checked before every cycle and the sleep between
        cycles returns as soon as it is set.
        """
        self.logger.info(f"Polling every {self.interval_seconds}s", extra={'operation': 'scheduler'})
        while not self._stop_event.is_set():
            self.run_once()
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            if self._stop_event.wait(self.interval_seconds):
                break
        self.logger.info(f"Scheduler stopped after {self.cycles} cycles", extra={'operation': 'scheduler'})
