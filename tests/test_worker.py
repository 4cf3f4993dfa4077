"""
Tests for the assembled worker: launching jobs, bulk update with rollback, queue commands.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from exportworker.errors import MalformedJobRequest
from exportworker.models import BatchStatus, ExportType, JobParameterNames
from exportworker.pagination import Page
from exportworker.reference_cache import ReferenceDataCache
from exportworker.worker import ExportWorker


@pytest.fixture
def worker(settings, publisher):
    w = ExportWorker(settings, publisher=publisher)
    w.cache = ReferenceDataCache(MagicMock())
    yield w
    w.close()


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


class TestJobParameters:
    def test_temp_prefix_embeds_job_id(self, worker, settings):
        """The temp prefix lives in the work dir and starts with the job id."""
        params = worker.job_parameters(ExportType.CIRCULATION_LOG, "circulation-log", "J1", query=None, limit=5)

        assert params.get_string(JobParameterNames.TEMP_OUTPUT_FILE_PATH) == str(
            settings.job_work_dir / "J1-circulation-log"
        )
        assert params.get(JobParameterNames.EXPORT_TYPE) == "CIRCULATION_LOG"
        assert params.get("limit") == 5
        assert JobParameterNames.QUERY not in params

    def test_generated_job_id(self, worker):
        """A job id is generated when none is given."""
        first = worker.job_parameters(ExportType.BURSAR_FEES_FINES, "bursar")
        second = worker.job_parameters(ExportType.BURSAR_FEES_FINES, "bursar")
        assert first.get_string(JobParameterNames.JOB_ID) != second.get_string(JobParameterNames.JOB_ID)


class TestExports:
    def test_circulation_log_acknowledged_after_run(self, worker, publisher, acknowledgment):
        """The acknowledgment is released after the export runs."""
        worker.audit = MagicMock()
        worker.audit.get_circulation_audit_logs.return_value = Page(records=[])

        execution = worker.export_circulation_log(job_id="J1", acknowledgment=acknowledgment, wait=True)

        assert execution.status == BatchStatus.COMPLETED
        assert acknowledgment.calls == 1
        assert [u.batch_status for u in publisher.sent] == [BatchStatus.STARTED, BatchStatus.COMPLETED]

    def test_launch_in_background(self, worker):
        """Without wait the job runs on the pool."""
        worker.audit = MagicMock()
        worker.audit.get_circulation_audit_logs.return_value = Page(records=[])

        execution = worker.export_circulation_log(job_id="J2")
        finished = worker.wait(execution, timeout=5)

        assert finished.status == BatchStatus.COMPLETED


class TestBulkUpdate:
    def test_completed_update_leaves_nothing_to_roll_back(self, tmp_path, worker, write_jsonl):
        """A completed update drops its snapshot."""
        input_file = write_jsonl(tmp_path / "users.jsonl", [{"id": "u-1", "active": False}])
        worker.users = MagicMock()
        worker.users.get_users_by_query.return_value = [{"id": "u-1", "active": True}]

        execution = worker.bulk_update_users(input_file, job_id="J1", wait=True)

        assert execution.status == BatchStatus.COMPLETED
        worker.users.update_user.assert_called_once_with({"id": "u-1", "active": False})
        assert worker.rollback.snapshot_for("J1") is None
        assert "Nothing to roll back" in worker.stop_and_rollback("J1")

    def test_stop_and_rollback_restores_snapshot(self, tmp_path, worker, write_jsonl):
        """Stopping a running update writes the snapshot back."""
        input_file = write_jsonl(tmp_path / "users.jsonl", [
            {"id": "u-1", "active": False},
            {"id": "u-2", "active": False},
            {"id": "u-3", "active": False},
        ])
        originals = [{"id": f"u-{i}", "active": True} for i in (1, 2, 3)]
        release = threading.Event()
        updates = []

        def update_user(user):
            updates.append(user)
            if len(updates) == 1:
                release.wait(5)

        worker.users = MagicMock()
        worker.users.get_users_by_query.return_value = originals
        worker.users.update_user.side_effect = update_user

        execution = worker.bulk_update_users(input_file, job_id="J1")
        wait_until(lambda: len(updates) == 1)

        outcome = []
        rollback = threading.Thread(target=lambda: outcome.append(worker.stop_and_rollback("J1")))
        rollback.start()
        wait_until(lambda: execution.stop_requested)
        release.set()
        rollback.join(5)

        assert execution.status == BatchStatus.STOPPED
        assert "rolled back" in outcome[0]
        # chunk of two applied, then the three snapshot records written back
        assert updates[:2] == [{"id": "u-1", "active": False}, {"id": "u-2", "active": False}]
        assert updates[2:] == originals
        assert worker.rollback.snapshot_for("J1") is None

    def test_original_file_used_as_snapshot(self, tmp_path, worker, write_jsonl):
        """A given original file becomes the snapshot."""
        input_file = write_jsonl(tmp_path / "users.jsonl", [{"id": "u-1", "active": False}])
        original = write_jsonl(tmp_path / "original.jsonl", [{"id": "u-1", "active": True}])
        worker.users = MagicMock()

        worker.bulk_update_users(input_file, original_file=original, job_id="J1", wait=True)

        worker.users.get_users_by_query.assert_not_called()

    def test_missing_input(self, tmp_path, worker):
        """A missing input file is rejected."""
        with pytest.raises(MalformedJobRequest):
            worker.bulk_update_users(tmp_path / "missing.jsonl")


class TestSubmit:
    def test_circulation_command(self, worker, acknowledgment):
        """A circulation command starts an export with its acknowledgment."""
        worker.audit = MagicMock()
        worker.audit.get_circulation_audit_logs.return_value = Page(records=[])

        execution = worker.submit(
            {"id": "J5", "type": "CIRCULATION_LOG", "exportTypeSpecificParameters": {"query": "action==x"}},
            acknowledgment=acknowledgment,
        )
        worker.wait(execution, timeout=5)

        assert execution.job_id == "J5"
        assert execution.job_parameters.get_string(JobParameterNames.QUERY) == "action==x"
        assert acknowledgment.calls == 1

    def test_authority_command_needs_dates(self, worker):
        """An authority command without dates is rejected."""
        with pytest.raises(MalformedJobRequest):
            worker.submit({"id": "J6", "type": "AUTHORITY_CONTROL", "exportTypeSpecificParameters": {}})

    def test_authority_command(self, worker):
        """An authority command starts an export for its date range."""
        worker.entity_links = MagicMock()
        worker.entity_links.get_authority_stats.return_value = Page(records=[], next=None)
        command = {
            "id": "J7",
            "type": "AUTHORITY_CONTROL",
            "exportTypeSpecificParameters": {
                "authorityControlExportConfig": {"fromDate": "2024-01-01", "toDate": "2024-01-31"},
            },
        }

        execution = worker.wait(worker.submit(command), timeout=5)

        assert execution.status == BatchStatus.COMPLETED

    def test_unknown_type(self, worker):
        """Unknown export types are rejected."""
        with pytest.raises(MalformedJobRequest):
            worker.submit({"id": "J8", "type": "E_HOLDINGS"})

    def test_missing_id(self, worker):
        """A command without an id is rejected."""
        with pytest.raises(MalformedJobRequest):
            worker.submit({"type": "CIRCULATION_LOG"})

    def test_bulk_edit_not_accepted_from_queue(self, worker):
        """Bulk edit updates cannot start from the queue."""
        with pytest.raises(MalformedJobRequest):
            worker.submit({"id": "J9", "type": "BULK_EDIT_UPDATE"})
