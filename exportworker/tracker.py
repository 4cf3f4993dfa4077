import threading
from typing import Dict, Optional

from .logger import get_logger

logger = get_logger()


class JobLifecycleTracker:
    """
    Process-wide map of job id -> live execution id.

    One live execution per job id. Registering again for the same job id
    replaces the previous mapping (last writer wins); callers that need
    exclusive runs must check lookup_execution first.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._executions: Dict[str, int] = {}

    def register_execution(self, job_id: str, execution_id: int) -> None:
        with self._lock:
            previous = self._executions.get(job_id)
            self._executions[job_id] = execution_id
        if previous is not None and previous != execution_id:
            logger.warning("Replacing tracked execution", job_id=job_id, previous=previous, execution_id=execution_id)
        else:
            logger.debug("Tracking execution", job_id=job_id, execution_id=execution_id)

    def lookup_execution(self, job_id: str) -> Optional[int]:
        with self._lock:
            return self._executions.get(job_id)

    def job_for_execution(self, execution_id: int) -> Optional[str]:
        with self._lock:
            for job_id, tracked in self._executions.items():
                if tracked == execution_id:
                    return job_id
        return None

    def forget(self, job_id: str, execution_id: Optional[int] = None) -> Optional[int]:
        """Drop the mapping; with execution_id, only if it still points at that execution."""
        with self._lock:
            if execution_id is not None and self._executions.get(job_id) != execution_id:
                return None
            return self._executions.pop(job_id, None)
