"""
Scheduler Module

Background daemon that periodically materializes every due AUTOMATIC
obligation. One failing obligation is logged and skipped; the rest of the
sweep still runs. The daemon is a plain object owned by the process entry
point, started and stopped explicitly.
"""

from datetime import date, datetime, timedelta
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from .materializer import Materializer
from .obligations import ObligationManager
from .storage import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one scheduler pass"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r["success"])

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    def summary(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class SchedulerDaemon:
    """
    Periodic driver for automatic obligations

    ``start`` spawns a daemon thread that sweeps immediately (when
    ``run_on_start``) and then every ``interval_seconds``. ``run_now`` runs
    one sweep synchronously on the calling thread.
    """

    def __init__(
        self,
        materializer: Materializer,
        obligation_manager: ObligationManager,
        interval_seconds: float = 600,
        run_on_start: bool = True,
        clock: Callable[[], date] = date.today
    ):
        if interval_seconds <= 0:
            raise ValueError("Scheduler interval must be positive")
        self.materializer = materializer
        self.obligation_manager = obligation_manager
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.clock = clock

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._sweep_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._last_sweep: Optional[SweepResult] = None
        self._next_run_at: Optional[datetime] = None
        self._runs_completed = 0

    def start(self) -> bool:
        """Start the background thread; returns False if it is already running"""
        with self._state_lock:
            if self.is_running():
                logger.info("Scheduler already running")
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="finance-core-scheduler", daemon=True)
            self._thread.start()
        logger.info("Scheduler started with %ss interval", self.interval_seconds)
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Signal the loop to exit and wait for an in-flight sweep to finish"""
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Scheduler thread did not stop within %ss", timeout)
        else:
            with self._state_lock:
                self._thread = None
                self._next_run_at = None
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> Dict[str, Any]:
        last = self._last_sweep
        return {
            "running": self.is_running(),
            "interval_seconds": self.interval_seconds,
            "last_run_at": last.started_at.isoformat() if last else None,
            "next_run_at": self._next_run_at.isoformat() if self._next_run_at and self.is_running() else None,
            "runs_completed": self._runs_completed,
            "last_sweep": last.summary() if last else None,
        }

    def run_now(self) -> SweepResult:
        """Materialize everything due right now; sweeps never overlap"""
        with self._sweep_lock:
            sweep = SweepResult(started_at=utc_now())
            due = self.obligation_manager.find_due_automatic(self.clock())
            logger.info("Scheduler sweep found %d due obligations", len(due))

            for obligation in due:
                try:
                    result = self.materializer.materialize(obligation.id)
                    sweep.results.append({
                        "obligation_id": obligation.id,
                        "success": True,
                        "entry_id": result.entry.id,
                    })
                except Exception as e:
                    logger.exception("Failed to materialize obligation %s", obligation.id)
                    sweep.results.append({
                        "obligation_id": obligation.id,
                        "success": False,
                        "error": str(e),
                    })

            sweep.finished_at = utc_now()
            self._last_sweep = sweep
            self._runs_completed += 1

        logger.info("Scheduler sweep finished: %d succeeded, %d failed", sweep.succeeded, sweep.failed)
        return sweep

    def _run_loop(self) -> None:
        if not self.run_on_start:
            self._next_run_at = utc_now() + timedelta(seconds=self.interval_seconds)
            if self._stop_event.wait(self.interval_seconds):
                return

        while not self._stop_event.is_set():
            try:
                self.run_now()
            except Exception:
                # Loading the due list failed; try again next interval
                logger.exception("Scheduler sweep failed")
            self._next_run_at = utc_now() + timedelta(seconds=self.interval_seconds)
            if self._stop_event.wait(self.interval_seconds):
                break
