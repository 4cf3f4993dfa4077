"""
Pytest configuration and shared fixtures.
"""

import json
from pathlib import Path
from typing import Any, List

import pytest
import requests

from exportworker.config import Settings
from exportworker.models import Job, JobExecution, JobParameterNames, JobParameters


class RecordingPublisher:
    """Job update sink that keeps every update in memory."""

    def __init__(self, fail: bool = False):
        self.sent: List[Job] = []
        self.fail = fail

    def send(self, job: Job) -> None:
        if self.fail:
            raise RuntimeError("job updates channel is down")
        self.sent.append(job)


class RecordingAcknowledgment:
    def __init__(self):
        self.calls = 0

    def acknowledge(self) -> None:
        self.calls += 1


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def failing_publisher() -> RecordingPublisher:
    return RecordingPublisher(fail=True)


@pytest.fixture
def acknowledgment() -> RecordingAcknowledgment:
    return RecordingAcknowledgment()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Small chunks and pages so a handful of records spans several of them."""
    return Settings(
        work_dir=tmp_path / "work",
        db_path=tmp_path / "updates.db",
        circulation_log_page_size=2,
        authority_stats_chunk_size=2,
        chunk_size=2,
        skip_limit=5,
        max_workers=2,
    )


@pytest.fixture
def make_execution(tmp_path):
    """Factory for a JobExecution with a job id and a temp output prefix under tmp_path."""

    def _make(job_id: Any = "J1", base_name: str = "out", job_name: str = "testJob", **extra) -> JobExecution:
        params = {JobParameterNames.TEMP_OUTPUT_FILE_PATH: str(tmp_path / f"{job_id}-{base_name}")}
        if job_id is not None:
            params[JobParameterNames.JOB_ID] = job_id
        params.update(extra)
        return JobExecution(job_name=job_name, job_parameters=JobParameters(params))

    return _make


@pytest.fixture
def make_response():
    """Factory for real requests.Response objects."""

    def _make(status: int = 200, body: Any = None, url: str = "http://okapi.test/x") -> requests.Response:
        resp = requests.Response()
        resp.status_code = status
        resp.url = url
        resp.encoding = "utf-8"
        if body is None:
            resp._content = b""
        elif isinstance(body, (bytes, str)):
            resp._content = body.encode("utf-8") if isinstance(body, str) else body
        else:
            resp._content = json.dumps(body).encode("utf-8")
        return resp

    return _make


@pytest.fixture
def write_jsonl():
    def _write(path: Path, records: List[dict]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")
        return path

    return _write
