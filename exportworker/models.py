"""
Execution records observed by the notifier and the published Job entity.

JobExecution / StepExecution are owned by the runner and mutated while a job
runs. Job is the immutable-ish snapshot built from an execution and sent to the
job updates channel.
"""

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class BatchStatus(str, Enum):
    STARTING = "STARTING"
    STARTED = "STARTED"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_running(self) -> bool:
        return self in (BatchStatus.STARTING, BatchStatus.STARTED, BatchStatus.STOPPING)


@dataclass(frozen=True)
class ExitStatus:
    exit_code: str
    exit_description: str = ""

    def with_description(self, description: str) -> "ExitStatus":
        if not description:
            return self
        if self.exit_description:
            description = f"{self.exit_description}; {description}"
        return ExitStatus(self.exit_code, description)

    def to_dict(self) -> Dict[str, str]:
        return {"exitCode": self.exit_code, "exitDescription": self.exit_description}


ExitStatus.UNKNOWN = ExitStatus("UNKNOWN")
ExitStatus.EXECUTING = ExitStatus("EXECUTING")
ExitStatus.COMPLETED = ExitStatus("COMPLETED")
ExitStatus.FAILED = ExitStatus("FAILED")
ExitStatus.STOPPED = ExitStatus("STOPPED")


class JobParameterNames:
    JOB_ID = "jobId"
    TEMP_OUTPUT_FILE_PATH = "tempOutputFilePath"
    OUTPUT_FILES_IN_STORAGE = "outputFilesInStorage"
    FILE_NAME = "fileName"
    EXPORT_TYPE = "exportType"
    ROLLBACK_FILE = "rollbackFile"
    QUERY = "query"
    FROM_DATE = "fromDate"
    TO_DATE = "toDate"


class ExportType(str, Enum):
    CIRCULATION_LOG = "CIRCULATION_LOG"
    AUTHORITY_CONTROL = "AUTHORITY_CONTROL"
    BURSAR_FEES_FINES = "BURSAR_FEES_FINES"
    BULK_EDIT_UPDATE = "BULK_EDIT_UPDATE"


class JobParameters:
    """String-keyed parameters a job was launched with."""

    def __init__(self, parameters: Optional[Dict[str, Any]] = None):
        self._parameters = dict(parameters or {})

    def get_string(self, name: str) -> Optional[str]:
        value = self._parameters.get(name)
        return None if value is None else str(value)

    def get(self, name: str, default: Any = None) -> Any:
        return self._parameters.get(name, default)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._parameters)

    def __contains__(self, name: str) -> bool:
        return name in self._parameters

    def __repr__(self) -> str:
        return f"JobParameters({self._parameters!r})"


_execution_ids = itertools.count(1)


@dataclass
class StepExecution:
    step_name: str
    status: BatchStatus = BatchStatus.STARTING
    exit_status: ExitStatus = ExitStatus.EXECUTING
    read_count: int = 0
    write_count: int = 0
    skip_count: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    failure_exceptions: List[BaseException] = field(default_factory=list)


@dataclass
class JobExecution:
    job_name: str
    job_parameters: JobParameters
    id: int = field(default_factory=lambda: next(_execution_ids))
    status: BatchStatus = BatchStatus.STARTING
    exit_status: ExitStatus = ExitStatus.UNKNOWN
    create_time: datetime = field(default_factory=datetime.now)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    execution_context: Dict[str, Any] = field(default_factory=dict)
    step_executions: List[StepExecution] = field(default_factory=list)
    failure_exceptions: List[BaseException] = field(default_factory=list)
    stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def job_id(self) -> Optional[str]:
        return self.job_parameters.get_string(JobParameterNames.JOB_ID)

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        if self.status.is_running:
            self.status = BatchStatus.STOPPING
        self.stop_event.set()
        self.touch()

    def touch(self) -> None:
        self.last_updated = datetime.now()

    def create_step_execution(self, step_name: str) -> StepExecution:
        step = StepExecution(step_name=step_name)
        self.step_executions.append(step)
        return step

    def add_failure_exception(self, exc: BaseException) -> None:
        self.failure_exceptions.append(exc)

    def all_failure_exceptions(self) -> List[BaseException]:
        """Job-level failures first, then every step's, in recording order."""
        result = list(self.failure_exceptions)
        for step in self.step_executions:
            for exc in step.failure_exceptions:
                if exc not in result:
                    result.append(exc)
        return result


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Job:
    """Job status update published to monitors, keyed by id."""

    id: str
    batch_status: Optional[BatchStatus] = None
    exit_status: Optional[ExitStatus] = None
    created_date: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    files: List[str] = field(default_factory=list)
    error_details: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "batchStatus": self.batch_status.value if self.batch_status else None,
            "exitStatus": self.exit_status.to_dict() if self.exit_status else None,
            "createdDate": _iso(self.created_date),
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "updatedDate": _iso(self.updated_date),
            "files": list(self.files),
            "errorDetails": self.error_details,
            "description": self.description,
        }
