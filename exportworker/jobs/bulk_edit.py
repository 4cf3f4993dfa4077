"""
Bulk user update with rollback.

Input is a JSON-lines file of full user records. Before the job is launched
the current state of every user in the file is saved as a snapshot; if the
job is stopped through the rollback coordinator the snapshot is written back
with restore_users().
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..clients.users import UserClient
from ..config import Settings
from ..errors import MalformedJobRequest, PartialFailure
from ..logger import get_logger
from ..models import ExportType, JobExecution, JobParameterNames
from ..reference_cache import ReferenceDataCache
from ..runner import JobDefinition
from ..snapshots import SnapshotStore, read_json_lines
from ..steps import ChunkedStep, CsvItemWriter
from ..storage import LocalFileStorage

logger = get_logger()

STEP_NAME = "updateUserRecordsStep"
SNAPSHOT_NAME = "users-snapshot.jsonl"
# Ids per users lookup while taking the snapshot
USER_ID_BATCH = 50

REPORT_FIELDS = ["id", "username", "barcode", "patronGroup", "active"]


def prepare_user(user: Dict[str, Any], cache: ReferenceDataCache) -> Dict[str, Any]:
    """Validate an input record and resolve patronGroupName to a group id."""
    if not user.get("id"):
        raise PartialFailure("User record has no id", item=user)
    user = dict(user)
    group_name = user.pop("patronGroupName", None)
    if group_name:
        group = cache.resolve_by_name("user_groups", group_name)
        user["patronGroup"] = group["id"]
    return user


class UserUpdateWriter:
    """PUTs each user and lists the updated users in a CSV report."""

    def __init__(self, users: UserClient, report: CsvItemWriter):
        self.users = users
        self.report = report

    def open(self, job_execution: JobExecution) -> None:
        self.report.open(job_execution)

    def write(self, items: List[Dict[str, Any]]) -> None:
        for user in items:
            self.users.update_user(user)
        self.report.write(items)

    def close(self, job_execution: JobExecution, success: bool) -> None:
        self.report.close(job_execution, success)


def input_path(execution: JobExecution) -> Path:
    file_name = execution.job_parameters.get_string(JobParameterNames.FILE_NAME)
    if not file_name:
        raise MalformedJobRequest(f"Job {execution.job_id} has no {JobParameterNames.FILE_NAME} parameter")
    return Path(file_name)


def read_user_ids(path: Path) -> List[str]:
    return [user["id"] for user in read_json_lines(path) if user.get("id")]


def fetch_current_users(users: UserClient, user_ids: List[str]) -> Iterator[Dict[str, Any]]:
    for i in range(0, len(user_ids), USER_ID_BATCH):
        batch = user_ids[i:i + USER_ID_BATCH]
        ids = " or ".join(f'"{user_id}"' for user_id in batch)
        yield from users.get_users_by_query(f"id==({ids})", limit=len(batch))


def take_user_snapshot(
    users: UserClient,
    snapshots: SnapshotStore,
    job_id: str,
    path: Path,
    original: Optional[Path] = None,
) -> str:
    """Save the pre-update state of the users in path.

    When the caller already holds the original records (the file the edits
    were made from) that file is used as the snapshot as is.
    """
    if original is not None:
        return snapshots.save(job_id, original)
    return snapshots.save_records(job_id, SNAPSHOT_NAME, fetch_current_users(users, read_user_ids(path)))


def restore_users(users: UserClient, snapshots: SnapshotStore, job_id: str, snapshot_ref: str) -> int:
    """Write every snapshot record back. Returns the number restored."""
    restored = 0
    for user in snapshots.read_records(snapshot_ref):
        users.update_user(user)
        restored += 1
    logger.info("Restored users from snapshot", job_id=job_id, snapshot=snapshot_ref, restored=restored)
    return restored


def build_user_update_job(
    users: UserClient,
    cache: ReferenceDataCache,
    storage: LocalFileStorage,
    settings: Settings,
) -> JobDefinition:
    """
    Job parameters used:
        fileName: JSON-lines file with the edited user records
    """

    def reader(execution: JobExecution) -> Iterator[Dict[str, Any]]:
        return read_json_lines(input_path(execution))

    step = ChunkedStep(
        STEP_NAME,
        reader,
        UserUpdateWriter(users, CsvItemWriter("-updated.csv", REPORT_FIELDS, storage)),
        processor=lambda user: prepare_user(user, cache),
        chunk_size=settings.chunk_size,
        skip_limit=settings.skip_limit,
        error_writer=CsvItemWriter("-errors.csv", ["identifier", "error"], storage, lazy=True, upload_on_failure=True),
        item_key=lambda user: user.get("id") or user.get("username") or "",
    )
    return JobDefinition(ExportType.BULK_EDIT_UPDATE.value, [step])
