"""
Process-wide slot holding the single active (or most recent) migration run
"""

from typing import Callable, Optional
from datetime import datetime, timedelta
import logging
import threading

from models.base import MigrationStatus
from schemas.migration import MigrationRun

logger = logging.getLogger(__name__)


# Allowed status moves; anything else is ignored
TRANSITIONS = {
    MigrationStatus.PENDING: {MigrationStatus.RUNNING, MigrationStatus.FAILED, MigrationStatus.STOPPED},
    MigrationStatus.RUNNING: {MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.STOPPED},
}


class MigrationStatusRegistry:
    """
    Lock-guarded status slot shared by the service, the engine and pollers.

    Invariants kept here:
    - at most one run is pending or running
    - success_count + error_count == processed_records after every update
    - processed_records <= total_records (total grows if the source yields more)
    - status only moves forward; terminal runs are never resurrected

    A terminal run stays readable for ``retention_seconds`` and is then
    dropped lazily on the next read.
    """

    def __init__(
        self,
        retention_seconds: int = 300,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._run: Optional[MigrationRun] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _expire_locked(self) -> None:
        run = self._run
        if run is not None and run.is_terminal and run.end_time is not None:
            if self._clock() - run.end_time >= self.retention:
                logger.debug(f"Dropping finished run {run.run_id} from status registry")
                self._run = None

    def current(self) -> Optional[MigrationRun]:
        """Snapshot copy of the current run, or None."""
        with self._lock:
            self._expire_locked()
            return self._run.model_copy() if self._run is not None else None

    def is_active(self) -> bool:
        with self._lock:
            return self._run is not None and self._run.is_active

    def is_stopped(self, run_id: str) -> bool:
        with self._lock:
            return (
                self._run is None
                or self._run.run_id != run_id
                or self._run.status == MigrationStatus.STOPPED
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def try_start(self, run: MigrationRun) -> bool:
        """Register a new pending run unless another one is active."""
        with self._lock:
            if self._run is not None and self._run.is_active:
                logger.warning(
                    f"Rejected run {run.run_id}: {self._run.run_id} is still {self._run.status.value}"
                )
                return False
            self._run = run.model_copy()
            return True

    def _get_locked(self, run_id: str) -> Optional[MigrationRun]:
        if self._run is None or self._run.run_id != run_id:
            logger.warning(f"Ignoring update for unknown run {run_id}")
            return None
        return self._run

    def _transition_locked(self, run_id: str, target: MigrationStatus) -> Optional[MigrationRun]:
        run = self._get_locked(run_id)
        if run is None:
            return None
        if target not in TRANSITIONS.get(run.status, set()):
            logger.warning(
                f"Ignoring illegal transition {run.status.value} -> {target.value} for run {run_id}"
            )
            return None
        run.status = target
        if target.is_terminal:
            run.end_time = self._clock()
        return run

    def mark_running(self, run_id: str) -> Optional[MigrationRun]:
        with self._lock:
            run = self._transition_locked(run_id, MigrationStatus.RUNNING)
            return run.model_copy() if run else None

    def set_total(self, run_id: str, total: int) -> None:
        with self._lock:
            run = self._get_locked(run_id)
            if run is None or run.is_terminal:
                return
            run.total_records = max(total, run.processed_records)
            run.recompute_progress()

    def set_table(self, run_id: str, table_name: Optional[str]) -> None:
        with self._lock:
            run = self._get_locked(run_id)
            if run is not None and not run.is_terminal:
                run.table_name = table_name

    def record_batch(self, run_id: str, succeeded: int, failed: int) -> Optional[MigrationRun]:
        """Add one batch to the counters; returns the updated snapshot."""
        with self._lock:
            run = self._get_locked(run_id)
            # A batch committed while a stop was requested still counts
            if run is None or run.status not in (MigrationStatus.RUNNING, MigrationStatus.STOPPED):
                return None
            run.success_count += succeeded
            run.error_count += failed
            run.processed_records += succeeded + failed
            if run.processed_records > run.total_records:
                run.total_records = run.processed_records
            run.recompute_progress()
            return run.model_copy()

    def complete(self, run_id: str) -> Optional[MigrationRun]:
        with self._lock:
            run = self._transition_locked(run_id, MigrationStatus.COMPLETED)
            if run is None:
                return None
            run.progress = 100.0
            logger.info(
                f"Run {run_id} completed: {run.success_count} succeeded, "
                f"{run.error_count} failed of {run.total_records}"
            )
            return run.model_copy()

    def fail(self, run_id: str, message: str) -> Optional[MigrationRun]:
        with self._lock:
            run = self._transition_locked(run_id, MigrationStatus.FAILED)
            if run is None:
                return None
            run.error_message = message
            logger.error(f"Run {run_id} failed: {message}")
            return run.model_copy()

    def stop(self, run_id: Optional[str] = None) -> Optional[MigrationRun]:
        """Stop the active run (or the given one); None if nothing was stopped."""
        with self._lock:
            if self._run is None or not self._run.is_active:
                return None
            target_id = run_id or self._run.run_id
            run = self._transition_locked(target_id, MigrationStatus.STOPPED)
            if run is None:
                return None
            logger.info(f"Run {target_id} stopped after {run.processed_records} records")
            return run.model_copy()
