"""
Job completion notifications.

The runner calls on_before() before a job body runs and on_after() once it
has finished. Each pass publishes a Job status update keyed by the job id.
The after pass also releases the inbound message acknowledgment and deletes
the job's temp files before building the final summary.

Neither pass ever raises: a broken notification must not stop or fail the job.
"""

from typing import List, Optional

from .acknowledgements import AcknowledgementRepository
from .cleanup import delete_temp_files
from .errors import MalformedJobRequest, PublicationFailure
from .logger import get_logger
from .models import BatchStatus, Job, JobExecution, JobParameterNames, JobParameters
from .publishers import JobUpdatePublisher

logger = get_logger()

CHARGE_FEESFINES_EXPORT_STEP = "exportChargeFeefinesStep"
REFUND_FEESFINES_EXPORT_STEP = "exportRefundFeefinesStep"


def get_root_cause(exc: BaseException) -> BaseException:
    """Walk the cause chain to its end. Stops on a cycle instead of looping."""
    seen = {id(exc)}
    current = exc
    while True:
        cause = current.__cause__
        if cause is None and not current.__suppress_context__:
            cause = current.__context__
        if cause is None or id(cause) in seen:
            return current
        seen.add(id(cause))
        current = cause


def parse_output_files(value: Optional[str]) -> List[str]:
    """Split the ';'-delimited outputFilesInStorage value."""
    if not value or not value.strip():
        return []
    return [part.strip() for part in value.split(";") if part.strip()]


def describe_bursar_counts(execution: JobExecution) -> Optional[str]:
    """Charge and refund counts from the bursar step write counts; None when neither step ran."""
    charges = None
    refunds = None
    for step in execution.step_executions:
        if step.step_name == CHARGE_FEESFINES_EXPORT_STEP:
            charges = step.write_count
        elif step.step_name == REFUND_FEESFINES_EXPORT_STEP:
            refunds = step.write_count
    if charges is None and refunds is None:
        return None
    return f"# of charges: {charges}\n# of refunds: {refunds}"


class JobCompletionNotifier:
    """
    Args:
        publisher: job updates channel
        acknowledgements: pending inbound acknowledgments by job id
    """

    def __init__(self, publisher: JobUpdatePublisher, acknowledgements: AcknowledgementRepository):
        self.publisher = publisher
        self.acknowledgements = acknowledgements

    def on_before(self, execution: JobExecution) -> Optional[Job]:
        return self._process_job_update(execution, after=False)

    def on_after(self, execution: JobExecution) -> Optional[Job]:
        return self._process_job_update(execution, after=True)

    def _process_job_update(self, execution: JobExecution, after: bool) -> Optional[Job]:
        job_id = execution.job_id
        if not job_id or not job_id.strip():
            error = MalformedJobRequest(f"Job update with empty job id, execution {execution.id}")
            logger.record_error(type(error).__name__)
            logger.error(str(error), execution_id=execution.id, job_name=execution.job_name)
            return None

        phase = "after" if after else "before"
        logger.info("Job update", job_id=job_id, phase=phase, status=execution.status.value)

        try:
            if after:
                self._process_job_after(job_id, execution.job_parameters)
            update = self.create_job_update(job_id, execution)
        except Exception as e:
            logger.record_error(type(e).__name__)
            logger.error("Cannot build job update", job_id=job_id, phase=phase, error=str(e))
            return None

        logger.info("Sending job update", job_id=job_id, status=update.batch_status.value)
        try:
            self.publisher.send(update)
        except Exception as e:
            failure = e if isinstance(e, PublicationFailure) else PublicationFailure(str(e))
            logger.record_error(type(failure).__name__)
            logger.error("Job update was not sent", job_id=job_id, phase=phase, error=str(failure))
            return update

        logger.info("Sent job update", job_id=job_id)
        if after:
            logger.info("-----------------------------JOB---ENDS-----------------------------")
        return update

    def _process_job_after(self, job_id: str, job_parameters: JobParameters) -> None:
        acknowledgment = self.acknowledgements.pop_acknowledgement(job_id)
        if acknowledgment is not None:
            try:
                acknowledgment.acknowledge()
                logger.info("Acknowledged job message", job_id=job_id)
            except Exception as e:
                logger.record_error(type(e).__name__)
                logger.error("Cannot acknowledge job message", job_id=job_id, error=str(e))

        temp_output_file_path = job_parameters.get_string(JobParameterNames.TEMP_OUTPUT_FILE_PATH)
        delete_temp_files(temp_output_file_path, job_id=job_id)

    def create_job_update(self, job_id: str, execution: JobExecution) -> Job:
        result = Job(id=job_id)

        if execution.status == BatchStatus.COMPLETED:
            result.description = describe_bursar_counts(execution)

        result.files = parse_output_files(
            execution.execution_context.get(JobParameterNames.OUTPUT_FILES_IN_STORAGE)
        )

        result.start_time = execution.start_time
        result.created_date = execution.create_time
        result.end_time = execution.end_time
        result.updated_date = execution.last_updated

        errors = execution.all_failure_exceptions()
        if errors:
            result.error_details = "\n".join(str(get_root_cause(e)) for e in errors)

        result.batch_status = execution.status
        result.exit_status = execution.exit_status
        return result
