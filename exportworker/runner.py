"""
Job runner: executes job definitions on a worker thread pool.

For every run the runner
  1. registers job id -> execution id with the lifecycle tracker,
  2. calls notifier.on_before(),
  3. runs the steps in order (stopping early on failure or stop request),
  4. settles the terminal status,
  5. calls notifier.on_after(),
  6. forgets the tracked execution and notifies finish listeners.

The three phases of one run (before, body, after) never overlap.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from .logger import get_logger
from .models import BatchStatus, ExitStatus, JobExecution, JobParameters, StepExecution
from .notifier import JobCompletionNotifier
from .tracker import JobLifecycleTracker

logger = get_logger()


class Step(Protocol):
    name: str

    def execute(self, step: StepExecution, job_execution: JobExecution) -> None: ...


@dataclass
class JobDefinition:
    name: str
    steps: List[Step] = field(default_factory=list)


FinishListener = Callable[[JobExecution], None]


class JobRunner:
    """
    Args:
        notifier: before/after observer
        tracker: job id -> execution id registry
        max_workers: jobs that may run at the same time
    """

    def __init__(self, notifier: JobCompletionNotifier, tracker: JobLifecycleTracker, max_workers: int = 4):
        self.notifier = notifier
        self.tracker = tracker
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")
        self._lock = threading.Lock()
        self._executions: Dict[int, JobExecution] = {}
        self._futures: Dict[int, Future] = {}
        self._listeners: List[FinishListener] = []

    def add_finish_listener(self, listener: FinishListener) -> None:
        self._listeners.append(listener)

    def create_execution(self, job: JobDefinition, parameters: JobParameters) -> JobExecution:
        execution = JobExecution(job_name=job.name, job_parameters=parameters)
        with self._lock:
            self._executions[execution.id] = execution
        if execution.job_id:
            self.tracker.register_execution(execution.job_id, execution.id)
        return execution

    def launch(self, job: JobDefinition, parameters: JobParameters) -> JobExecution:
        """Start the job on the worker pool and return its execution right away."""
        return self.submit(job, self.create_execution(job, parameters))

    def run(self, job: JobDefinition, parameters: JobParameters) -> JobExecution:
        """Run the job on the calling thread."""
        return self.execute(job, self.create_execution(job, parameters))

    def submit(self, job: JobDefinition, execution: JobExecution) -> JobExecution:
        """Start an execution made by create_execution() on the worker pool."""
        future = self._pool.submit(self._run_execution, job, execution)
        with self._lock:
            self._futures[execution.id] = future
        logger.info("Job launched", job=job.name, job_id=execution.job_id, execution_id=execution.id)
        return execution

    def execute(self, job: JobDefinition, execution: JobExecution) -> JobExecution:
        """Run an execution made by create_execution() on the calling thread."""
        return self._run_execution(job, execution)

    def get_execution(self, execution_id: int) -> Optional[JobExecution]:
        with self._lock:
            return self._executions.get(execution_id)

    def wait(self, execution_id: int, timeout: Optional[float] = None) -> Optional[JobExecution]:
        """Block until a launched execution finishes; returns it (None if unknown)."""
        with self._lock:
            future = self._futures.get(execution_id)
            execution = self._executions.get(execution_id)
        if future is not None:
            future.result(timeout=timeout)
        return execution

    def stop(self, execution_id: int, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """Ask an execution to stop. In-flight remote calls finish first.

        Returns False when the execution is unknown or already finished.
        """
        execution = self.get_execution(execution_id)
        if execution is None or not execution.status.is_running:
            return False
        logger.info("Stopping execution", execution_id=execution_id, job_id=execution.job_id)
        execution.request_stop()
        if wait:
            try:
                self.wait(execution_id, timeout=timeout)
            except FutureTimeout:
                logger.warning("Execution did not stop in time", execution_id=execution_id, timeout=timeout)
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _run_execution(self, job: JobDefinition, execution: JobExecution) -> JobExecution:
        execution.start_time = datetime.now()
        if execution.status == BatchStatus.STARTING:
            execution.status = BatchStatus.STARTED
        execution.exit_status = ExitStatus.EXECUTING
        execution.touch()
        logger.record_job_started()

        self.notifier.on_before(execution)

        try:
            for step in job.steps:
                if execution.stop_requested:
                    break
                step_execution = execution.create_step_execution(step.name)
                step.execute(step_execution, execution)
                if step_execution.status != BatchStatus.COMPLETED:
                    break
        except Exception as e:
            execution.add_failure_exception(e)
            logger.record_error(type(e).__name__)
            logger.error("Job failed", job=job.name, job_id=execution.job_id, error=str(e))
        finally:
            self._settle(execution)

        self.notifier.on_after(execution)

        if execution.job_id:
            self.tracker.forget(execution.job_id, execution.id)
        logger.record_job_finished(execution.status == BatchStatus.COMPLETED)
        for listener in self._listeners:
            try:
                listener(execution)
            except Exception as e:
                logger.error("Finish listener failed", execution_id=execution.id, error=str(e))
        return execution

    @staticmethod
    def _settle(execution: JobExecution) -> None:
        statuses = [step.status for step in execution.step_executions]
        if execution.failure_exceptions or BatchStatus.FAILED in statuses:
            execution.status = BatchStatus.FAILED
            execution.exit_status = ExitStatus.FAILED
        elif execution.stop_requested or BatchStatus.STOPPED in statuses:
            execution.status = BatchStatus.STOPPED
            execution.exit_status = ExitStatus.STOPPED
        else:
            execution.status = BatchStatus.COMPLETED
            execution.exit_status = ExitStatus.COMPLETED

        skipped = sum(step.skip_count for step in execution.step_executions)
        if skipped:
            execution.exit_status = execution.exit_status.with_description(f"{skipped} items skipped")
        execution.end_time = datetime.now()
        execution.touch()
        logger.info(
            "Job finished",
            job=execution.job_name,
            job_id=execution.job_id,
            status=execution.status.value,
        )
