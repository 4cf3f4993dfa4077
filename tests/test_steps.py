"""
Tests for chunk-oriented steps and the CSV writer.
"""

import csv

import pytest

from exportworker.errors import NotFound, PartialFailure, RemoteUnavailable
from exportworker.models import BatchStatus, JobExecution, JobParameterNames, JobParameters
from exportworker.notifier import parse_output_files
from exportworker.steps import ChunkedStep, CsvItemWriter, SkipLimitExceeded, add_output_file, temp_output_path
from exportworker.storage import LocalFileStorage


class ListWriter:
    def __init__(self):
        self.chunks = []
        self.opened = False
        self.closed_with = None

    def open(self, job_execution):
        self.opened = True

    def write(self, items):
        self.chunks.append(list(items))

    def close(self, job_execution, success):
        self.closed_with = success


def read_csv(path):
    with open(path, encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))


class TestChunkedStep:
    def test_reads_in_chunks(self, make_execution):
        """Items are written in chunks of chunk_size."""
        writer = ListWriter()
        step = ChunkedStep("s", lambda e: iter(range(5)), writer, chunk_size=2)
        execution = make_execution()
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert writer.chunks == [[0, 1], [2, 3], [4]]
        assert step_execution.status == BatchStatus.COMPLETED
        assert step_execution.read_count == 5
        assert step_execution.write_count == 5
        assert writer.closed_with is True

    def test_processor_may_filter(self, make_execution):
        """Items the processor maps to None are not written."""
        writer = ListWriter()
        step = ChunkedStep("s", lambda e: range(6), writer, processor=lambda i: i if i % 2 else None, chunk_size=4)
        execution = make_execution()
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert writer.chunks == [[1, 3], [5]]
        assert step_execution.write_count == 3
        assert step_execution.read_count == 6

    def test_skips_not_found_items(self, make_execution):
        """Items that raise NotFound are skipped and counted."""
        def processor(item):
            if item == "b":
                raise NotFound("Service point", "sp-9")
            return item.upper()

        writer = ListWriter()
        errors = ListWriter()
        step = ChunkedStep("s", lambda e: ["a", "b", "c"], writer, processor=processor,
                           skip_limit=1, error_writer=errors)
        execution = make_execution()
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert step_execution.status == BatchStatus.COMPLETED
        assert step_execution.skip_count == 1
        assert writer.chunks == [["A", "C"]]
        assert errors.chunks == [[{"identifier": "b", "error": "Service point not found: sp-9"}]]
        failure = step_execution.failure_exceptions[0]
        assert isinstance(failure, PartialFailure)
        assert isinstance(failure.__cause__, NotFound)

    def test_skip_limit_exceeded_fails_step(self, make_execution):
        """Too many skips fail the step."""
        def processor(item):
            raise PartialFailure(f"bad record {item}", item=item)

        step = ChunkedStep("s", lambda e: range(3), ListWriter(), processor=processor, skip_limit=1)
        execution = make_execution()
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert step_execution.status == BatchStatus.FAILED
        assert step_execution.skip_count == 2
        assert any(isinstance(e, SkipLimitExceeded) for e in step_execution.failure_exceptions)

    def test_remote_failure_fails_step(self, make_execution):
        """A failed page fetch fails the step."""
        def reader(execution):
            yield 1
            yield 2
            raise RemoteUnavailable("audit unavailable", service="audit")

        writer = ListWriter()
        step = ChunkedStep("s", reader, writer, chunk_size=5)
        execution = make_execution()
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert step_execution.status == BatchStatus.FAILED
        assert "audit unavailable" in step_execution.exit_status.exit_description
        assert writer.closed_with is False

    def test_stop_request_between_chunks(self, make_execution):
        """A stop request ends the step after the current chunk."""
        execution = make_execution()

        class StoppingWriter(ListWriter):
            def write(self, items):
                super().write(items)
                execution.request_stop()

        writer = StoppingWriter()
        step = ChunkedStep("s", lambda e: range(10), writer, chunk_size=3)
        step_execution = execution.create_step_execution("s")

        step.execute(step_execution, execution)

        assert step_execution.status == BatchStatus.STOPPED
        assert writer.chunks == [[0, 1, 2]]


class TestCsvItemWriter:
    def test_writes_and_uploads(self, tmp_path, make_execution):
        """Rows are written as CSV and uploaded on success."""
        storage = LocalFileStorage(tmp_path / "storage")
        writer = CsvItemWriter(".csv", ["id", "name"], storage)
        execution = make_execution(base_name="circulation-log")

        writer.open(execution)
        writer.write([{"id": "1", "name": "a", "extra": "ignored"}])
        writer.write([{"id": "2", "name": "b"}])
        writer.close(execution, success=True)

        files = parse_output_files(execution.execution_context[JobParameterNames.OUTPUT_FILES_IN_STORAGE])
        assert len(files) == 1
        assert files[0].endswith("J1/circulation-log.csv")
        assert read_csv(files[0]) == [{"id": "1", "name": "a"}, {"id": "2", "name": "b"}]
        assert (tmp_path / "J1-circulation-log.csv").exists()

    def test_no_upload_on_failure(self, tmp_path, make_execution):
        """Nothing is uploaded when the step fails."""
        storage = LocalFileStorage(tmp_path / "storage")
        writer = CsvItemWriter(".csv", ["id"], storage)
        execution = make_execution()

        writer.open(execution)
        writer.write([{"id": "1"}])
        writer.close(execution, success=False)

        assert JobParameterNames.OUTPUT_FILES_IN_STORAGE not in execution.execution_context

    def test_lazy_writer_without_rows_creates_nothing(self, tmp_path, make_execution):
        """A lazy writer with no rows writes no file."""
        storage = LocalFileStorage(tmp_path / "storage")
        writer = CsvItemWriter("-errors.csv", ["identifier", "error"], storage, lazy=True, upload_on_failure=True)
        execution = make_execution()

        writer.open(execution)
        writer.close(execution, success=False)

        assert not (tmp_path / "J1-out-errors.csv").exists()
        assert execution.execution_context == {}

    def test_errors_file_uploaded_on_failure(self, tmp_path, make_execution):
        """The errors file is uploaded even when the step fails."""
        storage = LocalFileStorage(tmp_path / "storage")
        writer = CsvItemWriter("-errors.csv", ["identifier", "error"], storage, lazy=True, upload_on_failure=True)
        execution = make_execution()

        writer.open(execution)
        writer.write([{"identifier": "x", "error": "boom"}])
        writer.close(execution, success=False)

        files = parse_output_files(execution.execution_context[JobParameterNames.OUTPUT_FILES_IN_STORAGE])
        assert files[0].endswith("out-errors.csv")


class TestHelpers:
    def test_add_output_file_appends(self, make_execution):
        """Output references are joined with semicolons."""
        execution = make_execution()
        add_output_file(execution, "a.csv")
        add_output_file(execution, "errors.csv")
        assert execution.execution_context[JobParameterNames.OUTPUT_FILES_IN_STORAGE] == "a.csv;errors.csv"

    def test_temp_output_path_requires_prefix(self, make_execution):
        """A temp path needs the recorded prefix."""
        execution = make_execution()
        assert temp_output_path(execution, ".csv").name == "J1-out.csv"

        bare = JobExecution(job_name="x", job_parameters=JobParameters({"jobId": "J9"}))
        with pytest.raises(ValueError):
            temp_output_path(bare, ".csv")
