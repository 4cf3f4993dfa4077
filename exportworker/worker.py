"""
Worker assembly: builds every collaborator once and launches jobs.

ExportWorker is the single place where clients, caches, the runner, the
notifier and the rollback coordinator are wired together. The CLI and the
queue consumer both go through it.
"""

import uuid
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from .acknowledgements import Acknowledgment, AcknowledgementRepository
from .cleanup import temp_output_prefix
from .clients import AuditClient, EntitiesLinksStatsClient, FeesFinesClient, OkapiClient, ReferenceClient, UserClient
from .config import Settings
from .errors import MalformedJobRequest
from .jobs import (
    build_authority_control_job,
    build_bursar_job,
    build_circulation_log_job,
    build_user_update_job,
    restore_users,
)
from .jobs.bulk_edit import take_user_snapshot
from .logger import get_logger
from .models import ExportType, JobExecution, JobParameterNames, JobParameters
from .notifier import JobCompletionNotifier
from .publishers import JobUpdatePublisher, build_publisher
from .reference_cache import ReferenceDataCache
from .rollback import RollbackCoordinator
from .runner import JobDefinition, JobRunner
from .snapshots import SnapshotStore
from .storage import LocalFileStorage
from .tracker import JobLifecycleTracker

logger = get_logger()


class ExportWorker:
    """
    Args:
        settings: worker configuration
        http: gateway client (built from settings by default)
        publisher: job updates sink (picked from settings by default)
    """

    def __init__(
        self,
        settings: Settings,
        http: Optional[OkapiClient] = None,
        publisher: Optional[JobUpdatePublisher] = None,
    ):
        self.settings = settings
        self.http = http or OkapiClient(settings.okapi_url, tenant=settings.okapi_tenant, token=settings.okapi_token)
        self.audit = AuditClient(self.http)
        self.entity_links = EntitiesLinksStatsClient(self.http)
        self.feesfines = FeesFinesClient(self.http)
        self.users = UserClient(self.http)
        self.cache = ReferenceDataCache(ReferenceClient(self.http))

        self.tracker = JobLifecycleTracker()
        self.acknowledgements = AcknowledgementRepository()
        self.publisher = publisher or build_publisher(settings)
        self.notifier = JobCompletionNotifier(self.publisher, self.acknowledgements)
        self.runner = JobRunner(self.notifier, self.tracker, max_workers=settings.max_workers)

        work_dir = settings.job_work_dir
        self.storage = LocalFileStorage(work_dir / "storage")
        self.snapshots = SnapshotStore(work_dir / "snapshots")
        self.rollback = RollbackCoordinator(
            self.tracker,
            stop_execution=lambda execution_id: self.runner.stop(execution_id, wait=True),
            restore=lambda job_id, snapshot_ref: restore_users(self.users, self.snapshots, job_id, snapshot_ref),
        )
        self.runner.add_finish_listener(self.rollback.on_job_finished)

    def job_parameters(self, export_type: ExportType, base_name: str, job_id: Optional[str] = None, **extra) -> JobParameters:
        """Parameters every job carries: jobId, exportType and the job-scoped temp prefix."""
        job_id = job_id or str(uuid.uuid4())
        prefix = temp_output_prefix(self.settings.job_work_dir, job_id, base_name)
        values: Dict[str, Any] = {
            JobParameterNames.JOB_ID: job_id,
            JobParameterNames.EXPORT_TYPE: export_type.value,
            JobParameterNames.TEMP_OUTPUT_FILE_PATH: str(prefix),
        }
        values.update({k: v for k, v in extra.items() if v is not None})
        return JobParameters(values)

    def export_circulation_log(
        self,
        query: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        job_id: Optional[str] = None,
        acknowledgment: Optional[Acknowledgment] = None,
        wait: bool = False,
    ) -> JobExecution:
        params = self.job_parameters(
            ExportType.CIRCULATION_LOG,
            "circulation-log",
            job_id,
            query=query,
            offset=offset,
            limit=limit,
        )
        job = build_circulation_log_job(self.audit, self.cache, self.storage, self.settings)
        return self._launch(job, params, acknowledgment, wait)

    def export_authority_stats(
        self,
        from_date: date,
        to_date: date,
        job_id: Optional[str] = None,
        acknowledgment: Optional[Acknowledgment] = None,
        wait: bool = False,
    ) -> JobExecution:
        params = self.job_parameters(
            ExportType.AUTHORITY_CONTROL,
            "authority-control",
            job_id,
            fromDate=str(from_date),
            toDate=str(to_date),
        )
        job = build_authority_control_job(self.entity_links, self.cache, self.storage, self.settings)
        return self._launch(job, params, acknowledgment, wait)

    def export_bursar_fees_fines(
        self,
        query: Optional[str] = None,
        job_id: Optional[str] = None,
        acknowledgment: Optional[Acknowledgment] = None,
        wait: bool = False,
    ) -> JobExecution:
        params = self.job_parameters(ExportType.BURSAR_FEES_FINES, "bursar", job_id, query=query)
        job = build_bursar_job(self.feesfines, self.cache, self.storage, self.settings)
        return self._launch(job, params, acknowledgment, wait)

    def bulk_update_users(
        self,
        input_file: Path,
        original_file: Optional[Path] = None,
        job_id: Optional[str] = None,
        wait: bool = False,
    ) -> JobExecution:
        """Snapshot the users in input_file, then launch the update job.

        The snapshot and the execution are registered with the rollback
        coordinator before the job starts, so it can be rolled back at once.
        """
        input_file = Path(input_file)
        if not input_file.is_file():
            raise MalformedJobRequest(f"Input file not found: {input_file}")

        params = self.job_parameters(
            ExportType.BULK_EDIT_UPDATE,
            input_file.stem,
            job_id,
            fileName=str(input_file),
        )
        job_id = params.get_string(JobParameterNames.JOB_ID)
        snapshot_ref = take_user_snapshot(self.users, self.snapshots, job_id, input_file, original=original_file)
        self.rollback.record_snapshot(job_id, snapshot_ref)

        job = build_user_update_job(self.users, self.cache, self.storage, self.settings)
        execution = self.runner.create_execution(job, params)
        self.rollback.bind_execution(execution.id, job_id)
        return self._start(job, execution, wait)

    def stop_and_rollback(self, job_id: str) -> str:
        return self.rollback.stop_and_rollback(job_id)

    def submit(self, command: Dict[str, Any], acknowledgment: Optional[Acknowledgment] = None) -> JobExecution:
        """Launch the export a queue command asks for.

        Command shape: {"id": ..., "type": <ExportType>, "exportTypeSpecificParameters": {...}}

        Raises:
            MalformedJobRequest: unknown type or missing id
        """
        job_id = command.get("id")
        if not job_id:
            raise MalformedJobRequest("Job command has no id")
        try:
            export_type = ExportType(command.get("type"))
        except ValueError as e:
            raise MalformedJobRequest(f"Unsupported export type: {command.get('type')!r}") from e
        specific = command.get("exportTypeSpecificParameters") or {}

        if export_type == ExportType.CIRCULATION_LOG:
            return self.export_circulation_log(
                query=specific.get("query"),
                offset=specific.get("offset", 0),
                limit=specific.get("limit"),
                job_id=job_id,
                acknowledgment=acknowledgment,
            )
        if export_type == ExportType.AUTHORITY_CONTROL:
            config = specific.get("authorityControlExportConfig") or specific
            if not config.get("fromDate") or not config.get("toDate"):
                raise MalformedJobRequest(f"Job {job_id}: authority control export needs fromDate and toDate")
            return self.export_authority_stats(
                config["fromDate"],
                config["toDate"],
                job_id=job_id,
                acknowledgment=acknowledgment,
            )
        if export_type == ExportType.BURSAR_FEES_FINES:
            return self.export_bursar_fees_fines(
                query=specific.get("query"),
                job_id=job_id,
                acknowledgment=acknowledgment,
            )
        raise MalformedJobRequest(f"Export type {export_type.value} cannot be started from a queue message")

    def wait(self, execution: JobExecution, timeout: Optional[float] = None) -> JobExecution:
        return self.runner.wait(execution.id, timeout=timeout) or execution

    def close(self) -> None:
        self.runner.shutdown()
        close = getattr(self.publisher, "close", None)
        if close is not None:
            close()

    def _launch(
        self,
        job: JobDefinition,
        params: JobParameters,
        acknowledgment: Optional[Acknowledgment],
        wait: bool,
    ) -> JobExecution:
        job_id = params.get_string(JobParameterNames.JOB_ID)
        if acknowledgment is not None:
            self.acknowledgements.add_acknowledgement(job_id, acknowledgment)
        execution = self.runner.create_execution(job, params)
        return self._start(job, execution, wait)

    def _start(self, job: JobDefinition, execution: JobExecution, wait: bool) -> JobExecution:
        if wait:
            return self.runner.execute(job, execution)
        self.runner.submit(job, execution)
        return execution
