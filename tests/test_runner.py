"""
End-to-end tests for the job runner with the real notifier and tracker.
"""

import threading
import time

from exportworker.acknowledgements import AcknowledgementRepository
from exportworker.errors import PartialFailure, RemoteUnavailable
from exportworker.models import BatchStatus, JobParameterNames, JobParameters
from exportworker.notifier import JobCompletionNotifier
from exportworker.pagination import OffsetPaginatedSource, Page
from exportworker.runner import JobDefinition, JobRunner
from exportworker.steps import ChunkedStep
from exportworker.tracker import JobLifecycleTracker


class CollectingWriter:
    def __init__(self):
        self.items = []

    def open(self, job_execution):
        pass

    def write(self, items):
        self.items.extend(items)

    def close(self, job_execution, success):
        pass


def offset_step(records, writer, page_size=2, name="exportStep"):
    def fetch(offset, limit):
        return Page(records=records[offset:offset + limit])

    return ChunkedStep(
        name,
        lambda execution: OffsetPaginatedSource(fetch, page_size=page_size, stop_event=execution.stop_event),
        writer,
        chunk_size=2,
    )


def make_runner(publisher, acks=None):
    tracker = JobLifecycleTracker()
    notifier = JobCompletionNotifier(publisher, acks or AcknowledgementRepository())
    return JobRunner(notifier, tracker, max_workers=2), tracker


def params(tmp_path, job_id="J1"):
    return JobParameters({
        JobParameterNames.JOB_ID: job_id,
        JobParameterNames.TEMP_OUTPUT_FILE_PATH: str(tmp_path / f"{job_id}-out"),
    })


class TestJobRunner:
    def test_job_j1_end_to_end(self, tmp_path, publisher, acknowledgment):
        """Five records through a pageSize=2 offset source, before/after updates, ack after the body."""
        acks = AcknowledgementRepository()
        acks.add_acknowledgement("J1", acknowledgment)
        runner, tracker = make_runner(publisher, acks)
        writer = CollectingWriter()
        job = JobDefinition("exportJob", [offset_step(["a", "b", "c", "d", "e"], writer)])
        (tmp_path / "J1-out.csv").write_text("partial")

        execution = runner.run(job, params(tmp_path))

        assert writer.items == ["a", "b", "c", "d", "e"]
        assert execution.status == BatchStatus.COMPLETED
        assert [u.batch_status for u in publisher.sent] == [BatchStatus.STARTED, BatchStatus.COMPLETED]
        assert acknowledgment.calls == 1
        assert not (tmp_path / "J1-out.csv").exists()
        assert tracker.lookup_execution("J1") is None

    def test_before_runs_before_body_and_after_after(self, tmp_path, publisher):
        """Before, body and after run in order without overlap."""
        runner, _ = make_runner(publisher)
        seen = []

        class Probe:
            name = "probe"

            def execute(self, step, job_execution):
                seen.append(len(publisher.sent))
                step.status = BatchStatus.COMPLETED

        runner.run(JobDefinition("probeJob", [Probe()]), params(tmp_path))

        assert seen == [1]
        assert len(publisher.sent) == 2

    def test_failed_step_fails_job(self, tmp_path, publisher):
        """A failing step fails the job and skips later steps."""
        def fetch(offset, limit):
            raise RemoteUnavailable("audit unavailable", service="audit")

        step = ChunkedStep("s", lambda e: OffsetPaginatedSource(fetch, page_size=2), CollectingWriter())
        second = offset_step(["x"], CollectingWriter(), name="never")
        runner, _ = make_runner(publisher)

        execution = runner.run(JobDefinition("j", [step, second]), params(tmp_path))

        assert execution.status == BatchStatus.FAILED
        assert [s.step_name for s in execution.step_executions] == ["s"]
        assert publisher.sent[-1].error_details == "audit unavailable"

    def test_blank_job_id_still_runs_body(self, tmp_path, publisher):
        """A blank job id publishes nothing but the body runs."""
        runner, _ = make_runner(publisher)
        writer = CollectingWriter()

        execution = runner.run(
            JobDefinition("j", [offset_step(["a"], writer)]),
            JobParameters({JobParameterNames.JOB_ID: " "}),
        )

        assert writer.items == ["a"]
        assert execution.status == BatchStatus.COMPLETED
        assert publisher.sent == []

    def test_publish_failure_keeps_status(self, tmp_path, failing_publisher):
        """A failed publish does not change the job status."""
        runner, _ = make_runner(failing_publisher)

        execution = runner.run(JobDefinition("j", [offset_step(["a"], CollectingWriter())]), params(tmp_path))

        assert execution.status == BatchStatus.COMPLETED

    def test_skipped_items_are_described(self, tmp_path, publisher):
        """Skipped items show in the exit description and error details."""
        def processor(item):
            if item == "b":
                raise PartialFailure("bad b")
            return item

        step = ChunkedStep("s", lambda e: ["a", "b"], CollectingWriter(), processor=processor, skip_limit=10)
        runner, _ = make_runner(publisher)

        execution = runner.run(JobDefinition("j", [step]), params(tmp_path))

        assert execution.status == BatchStatus.COMPLETED
        assert execution.exit_status.exit_description == "1 items skipped"
        assert publisher.sent[-1].error_details == "bad b"

    def test_launch_and_stop(self, tmp_path, publisher):
        """A launched job stops when asked and ends STOPPED."""
        runner, tracker = make_runner(publisher)
        release = threading.Event()
        fetched = []

        def fetch(offset, limit):
            fetched.append(offset)
            if offset == 2:
                release.wait(5)
            return Page(records=list(range(offset, offset + limit)))

        step = ChunkedStep(
            "slow",
            lambda e: OffsetPaginatedSource(fetch, page_size=2, stop_event=e.stop_event),
            CollectingWriter(),
            chunk_size=2,
        )
        execution = runner.launch(JobDefinition("slowJob", [step]), params(tmp_path))
        assert tracker.lookup_execution("J1") == execution.id

        while len(fetched) < 2:
            time.sleep(0.01)
        stopper = threading.Thread(target=runner.stop, args=(execution.id,))
        stopper.start()
        while not execution.stop_requested:
            time.sleep(0.01)
        release.set()
        stopper.join(5)
        runner.wait(execution.id, timeout=5)

        assert execution.status == BatchStatus.STOPPED
        assert fetched == [0, 2]
        assert tracker.lookup_execution("J1") is None
        assert runner.stop(execution.id) is False
        runner.shutdown()

    def test_finish_listener(self, tmp_path, publisher):
        """Listeners see the final status and a failing one is contained."""
        runner, _ = make_runner(publisher)
        finished = []
        runner.add_finish_listener(lambda e: finished.append(e.status))
        runner.add_finish_listener(lambda e: 1 / 0)

        runner.run(JobDefinition("j", [offset_step(["a"], CollectingWriter())]), params(tmp_path))

        assert finished == [BatchStatus.COMPLETED]
