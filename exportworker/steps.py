"""
Chunk-oriented steps: read up to N items, process each, write the chunk.

Items that fail processing with a skippable error (NotFound, PartialFailure)
are skipped, counted, written to the step's errors file and recorded as
PartialFailure on the step. Once more than skip_limit items were skipped the
step fails. Any other error (including RemoteUnavailable from a page fetch)
fails the step immediately.
"""

import csv
from datetime import datetime
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Type

from .errors import ExportWorkerError, NotFound, PartialFailure
from .logger import get_logger
from .models import BatchStatus, ExitStatus, JobExecution, JobParameterNames, StepExecution
from .notifier import parse_output_files
from .storage import LocalFileStorage

logger = get_logger()


class SkipLimitExceeded(ExportWorkerError):
    pass


class ItemWriter(Protocol):
    def open(self, job_execution: JobExecution) -> None: ...

    def write(self, items: List[Any]) -> None: ...

    def close(self, job_execution: JobExecution, success: bool) -> None: ...


def add_output_file(job_execution: JobExecution, reference: str) -> None:
    """Append a file reference to the ';'-delimited outputFilesInStorage value."""
    key = JobParameterNames.OUTPUT_FILES_IN_STORAGE
    files = parse_output_files(job_execution.execution_context.get(key))
    files.append(reference)
    job_execution.execution_context[key] = ";".join(files)


def temp_output_path(job_execution: JobExecution, suffix: str) -> Path:
    """<tempOutputFilePath><suffix>, so cleanup by prefix picks it up."""
    prefix = job_execution.job_parameters.get_string(JobParameterNames.TEMP_OUTPUT_FILE_PATH)
    if not prefix:
        raise ValueError(f"Job {job_execution.job_id} has no {JobParameterNames.TEMP_OUTPUT_FILE_PATH} parameter")
    return Path(prefix + suffix)


class CsvItemWriter:
    """Writes dict rows to a temp CSV and uploads it to storage when the step succeeds.

    Args:
        suffix: appended to the job's temp output prefix to name the temp file
        fieldnames: CSV header
        storage: where finished files go
        lazy: create the file on the first write only (used for errors files)
        upload_on_failure: upload even when the step did not complete
    """

    def __init__(
        self,
        suffix: str,
        fieldnames: Sequence[str],
        storage: LocalFileStorage,
        lazy: bool = False,
        upload_on_failure: bool = False,
    ):
        self.suffix = suffix
        self.fieldnames = list(fieldnames)
        self.storage = storage
        self.lazy = lazy
        self.upload_on_failure = upload_on_failure
        self.path: Optional[Path] = None
        self._file = None
        self._writer = None
        self._job_execution: Optional[JobExecution] = None

    def open(self, job_execution: JobExecution) -> None:
        self._job_execution = job_execution
        if not self.lazy:
            self._ensure_open()

    def _ensure_open(self) -> None:
        if self._file is not None:
            return
        self.path = temp_output_path(self._job_execution, self.suffix)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=self.fieldnames, extrasaction="ignore")
        self._writer.writeheader()

    def write(self, items: List[Any]) -> None:
        self._ensure_open()
        self._writer.writerows(items)

    def close(self, job_execution: JobExecution, success: bool) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None
        if success or self.upload_on_failure:
            job_id = job_execution.job_id or str(job_execution.id)
            object_name = self.path.name[len(job_id) + 1:] if self.path.name.startswith(job_id + "-") else self.path.name
            reference = self.storage.upload(job_id, self.path, object_name)
            add_output_file(job_execution, reference)
            logger.info("Uploaded output file", job_id=job_id, file=reference)


class ChunkedStep:
    """
    Args:
        name: step name, as reported in step executions
        reader_factory: builds the item iterable for one execution
        writer: receives each processed chunk
        processor: item -> output item; None filters the item out
        chunk_size: items per read/process/write cycle
        skip_limit: skipped items tolerated before the step fails
        error_writer: receives {"identifier", "error"} rows for skipped items
        item_key: item -> identifier used in error rows
    """

    skippable: Tuple[Type[BaseException], ...] = (NotFound, PartialFailure)

    def __init__(
        self,
        name: str,
        reader_factory: Callable[[JobExecution], Iterable[Any]],
        writer: ItemWriter,
        processor: Optional[Callable[[Any], Any]] = None,
        chunk_size: int = 100,
        skip_limit: int = 0,
        error_writer: Optional[ItemWriter] = None,
        item_key: Optional[Callable[[Any], str]] = None,
    ):
        self.name = name
        self.reader_factory = reader_factory
        self.writer = writer
        self.processor = processor
        self.chunk_size = chunk_size
        self.skip_limit = skip_limit
        self.error_writer = error_writer
        self.item_key = item_key or str

    def execute(self, step: StepExecution, job_execution: JobExecution) -> None:
        step.status = BatchStatus.STARTED
        step.start_time = datetime.now()
        logger.info("Step started", step=self.name, job_id=job_execution.job_id)
        opened = []
        try:
            reader = iter(self.reader_factory(job_execution))
            for writer in (self.writer, self.error_writer):
                if writer is not None:
                    writer.open(job_execution)
                    opened.append(writer)

            while True:
                if job_execution.stop_requested:
                    step.status = BatchStatus.STOPPED
                    step.exit_status = ExitStatus.STOPPED
                    logger.info("Step stopped", step=self.name, job_id=job_execution.job_id)
                    break
                items = list(islice(reader, self.chunk_size))
                if not items:
                    step.status = BatchStatus.COMPLETED
                    step.exit_status = ExitStatus.COMPLETED
                    break
                step.read_count += len(items)
                self._process_chunk(step, job_execution, items)
                job_execution.touch()
        except Exception as e:
            step.failure_exceptions.append(e)
            step.status = BatchStatus.FAILED
            step.exit_status = ExitStatus.FAILED.with_description(str(e))
            logger.record_error(type(e).__name__)
            logger.error("Step failed", step=self.name, job_id=job_execution.job_id, error=str(e))
        finally:
            success = step.status == BatchStatus.COMPLETED
            for writer in opened:
                try:
                    writer.close(job_execution, success)
                except Exception as e:
                    step.failure_exceptions.append(e)
                    step.status = BatchStatus.FAILED
                    step.exit_status = ExitStatus.FAILED.with_description(str(e))
                    logger.error("Cannot close writer", step=self.name, error=str(e))
            step.end_time = datetime.now()

        logger.info(
            "Step finished",
            step=self.name,
            job_id=job_execution.job_id,
            status=step.status.value,
            read=step.read_count,
            written=step.write_count,
            skipped=step.skip_count,
        )

    def _process_chunk(self, step: StepExecution, job_execution: JobExecution, items: List[Any]) -> None:
        processed = []
        for item in items:
            try:
                result = self.processor(item) if self.processor else item
            except self.skippable as e:
                self._skip(step, item, e)
                continue
            if result is not None:
                processed.append(result)
        if processed:
            self.writer.write(processed)
            step.write_count += len(processed)

    def _skip(self, step: StepExecution, item: Any, error: BaseException) -> None:
        step.skip_count += 1
        identifier = self.item_key(item)
        if isinstance(error, PartialFailure):
            failure = error
        else:
            failure = PartialFailure(f"{identifier}: {error}", item=item)
            failure.__cause__ = error
        step.failure_exceptions.append(failure)
        logger.warning("Item skipped", step=self.name, item=identifier, error=str(error))
        if self.error_writer is not None:
            self.error_writer.write([{"identifier": identifier, "error": str(error)}])
        if step.skip_count > self.skip_limit:
            raise SkipLimitExceeded(f"Skip limit {self.skip_limit} exceeded in step {self.name}")
