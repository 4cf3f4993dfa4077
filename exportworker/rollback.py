"""
Compensating rollback for update jobs.

When an update job is launched the coordinator records where its pre-update
snapshot lives and which execution runs it. stop_and_rollback() stops that
execution and restores the snapshot. A snapshot whose run stopped or failed
stays recorded until it is restored, so a rollback can be retried after the
execution is gone. Calls for the same job id are serialized and the snapshot
record is consumed by the first successful restore, so a snapshot is never
restored twice.
"""

import threading
from typing import Callable, Dict, Optional

from .logger import get_logger
from .models import BatchStatus, JobExecution
from .tracker import JobLifecycleTracker

logger = get_logger()

NOTHING_TO_ROLL_BACK = "Nothing to roll back for job {job_id}: no running execution is tracked."


class RollbackCoordinator:
    """
    Args:
        tracker: job id -> execution id registry shared with the runner
        stop_execution: callable(execution_id) that stops an execution and waits for it
        restore: callable(job_id, snapshot_ref) that re-applies the snapshot
    """

    def __init__(
        self,
        tracker: JobLifecycleTracker,
        stop_execution: Callable[[int], bool],
        restore: Callable[[str, str], None],
    ):
        self.tracker = tracker
        self._stop_execution = stop_execution
        self._restore = restore
        self._lock = threading.Lock()
        self._job_locks: Dict[str, threading.Lock] = {}
        self._snapshots: Dict[str, str] = {}
        self._executions: Dict[int, str] = {}

    def record_snapshot(self, job_id: str, snapshot_ref: str) -> None:
        with self._lock:
            self._snapshots[job_id] = snapshot_ref
        logger.info("Recorded rollback snapshot", job_id=job_id, snapshot=snapshot_ref)

    def bind_execution(self, execution_id: int, job_id: str) -> None:
        with self._lock:
            self._executions[execution_id] = job_id
        self.tracker.register_execution(job_id, execution_id)

    def snapshot_for(self, job_id: str) -> Optional[str]:
        with self._lock:
            return self._snapshots.get(job_id)

    def job_for_execution(self, execution_id: int) -> Optional[str]:
        with self._lock:
            return self._executions.get(execution_id)

    def complete(self, job_id: str) -> None:
        """Forget the rollback record of a job that finished normally."""
        with self._lock:
            self._snapshots.pop(job_id, None)
            for execution_id in [e for e, j in self._executions.items() if j == job_id]:
                del self._executions[execution_id]

    def on_job_finished(self, execution: JobExecution) -> None:
        """Runner finish listener: completed update jobs no longer need their snapshot."""
        job_id = self.job_for_execution(execution.id)
        if job_id is not None and execution.status == BatchStatus.COMPLETED:
            self.complete(job_id)

    def stop_and_rollback(self, job_id: str) -> str:
        """Stop the tracked execution of job_id and restore its snapshot.

        A run that already ended without completing (stopped, failed, or a
        previous restore that failed) is restored from its recorded snapshot
        without a stop. Returns a human-readable outcome message; never raises
        for an unknown job.
        """
        with self._job_lock(job_id):
            execution_id = self.tracker.lookup_execution(job_id)
            if execution_id is not None:
                stopped = self._stop_execution(execution_id)
                logger.info("Stop requested for rollback", job_id=job_id, execution_id=execution_id, stopped=stopped)
            else:
                execution_id = self._finished_execution(job_id)
                if execution_id is None:
                    message = NOTHING_TO_ROLL_BACK.format(job_id=job_id)
                    logger.info(message, job_id=job_id)
                    return message
                logger.info("Rolling back finished execution", job_id=job_id, execution_id=execution_id)

            snapshot_ref = self.snapshot_for(job_id)
            if snapshot_ref is None:
                self._resolve(job_id, execution_id)
                message = f"Execution {execution_id} of job {job_id} was stopped; no snapshot was recorded, nothing restored."
                logger.warning(message, job_id=job_id)
                return message

            try:
                self._restore(job_id, snapshot_ref)
            except Exception as e:
                logger.record_error(type(e).__name__)
                logger.error("Rollback restore failed", job_id=job_id, snapshot=snapshot_ref, error=str(e))
                return f"Execution {execution_id} of job {job_id} was stopped, but restoring {snapshot_ref} failed: {e}"

            self._resolve(job_id, execution_id)

        message = f"Execution {execution_id} of job {job_id} was stopped and rolled back from {snapshot_ref}."
        logger.info(message, job_id=job_id)
        return message

    def _finished_execution(self, job_id: str) -> Optional[int]:
        """Latest bound execution of a job whose snapshot is still recorded."""
        with self._lock:
            if job_id not in self._snapshots:
                return None
            bound = [e for e, j in self._executions.items() if j == job_id]
        return max(bound) if bound else None

    def _resolve(self, job_id: str, execution_id: int) -> None:
        with self._lock:
            self._snapshots.pop(job_id, None)
            for bound in [e for e, j in self._executions.items() if j == job_id]:
                del self._executions[bound]
        self.tracker.forget(job_id, execution_id)

    def _job_lock(self, job_id: str) -> threading.Lock:
        with self._lock:
            return self._job_locks.setdefault(job_id, threading.Lock())
