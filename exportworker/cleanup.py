"""
Cleanup of temp and staged output files left by a job.

A job records a temp output path prefix such as
<workdir>/<appname>/<jobId>-<baseName>. After the job ends, every file in
that directory whose name starts with the prefix's base name is deleted,
whether the job succeeded or not. Base names start with the job id, so one
job's cleanup never touches another job's files.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from .errors import CleanupFailure
from .logger import get_logger

logger = get_logger()


def temp_output_prefix(work_dir: Path, job_id: str, base_name: str) -> Path:
    """Build the job-scoped temp path prefix: <work_dir>/<jobId>-<baseName>."""
    return Path(work_dir) / f"{job_id}-{base_name}"


def delete_temp_files(temp_output_file_path: Optional[str], job_id: Optional[str] = None) -> Tuple[List[Path], List[Path]]:
    """
    Delete every file next to temp_output_file_path whose name starts with its base name.

    Args:
        temp_output_file_path: recorded prefix, e.g. /tmp/export-worker/j1-out
        job_id: for logging only

    Returns:
        Tuple of (deleted, failed) paths. Failures are logged, never raised.
    """
    if not temp_output_file_path or not temp_output_file_path.strip():
        return ([], [])

    prefix = Path(temp_output_file_path)
    directory = prefix.parent
    name_start = prefix.name
    if not name_start or not directory.is_dir():
        logger.debug("No temp directory to clean", job_id=job_id, path=str(directory))
        return ([], [])

    deleted: List[Path] = []
    failed: List[Path] = []
    for candidate in sorted(directory.iterdir()):
        if not candidate.name.startswith(name_start) or not candidate.is_file():
            continue
        try:
            candidate.unlink()
            deleted.append(candidate)
        except OSError as e:
            failure = CleanupFailure(f"Cannot delete temp file {candidate}: {e}")
            logger.record_error(type(failure).__name__)
            logger.warning(str(failure), job_id=job_id, path=str(candidate))
            failed.append(candidate)

    if deleted:
        logger.info(
            f"Deleted {len(deleted)} temp files of job",
            job_id=job_id,
            files=[p.name for p in deleted],
        )
    return (deleted, failed)
