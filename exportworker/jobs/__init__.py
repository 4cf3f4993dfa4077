"""Concrete export/update jobs. Each builder returns a fresh JobDefinition per run."""

from .authority_control import build_authority_control_job
from .bulk_edit import build_user_update_job, restore_users
from .bursar import build_bursar_job
from .circulation_log import build_circulation_log_job

__all__ = [
    "build_authority_control_job",
    "build_bursar_job",
    "build_circulation_log_job",
    "build_user_update_job",
    "restore_users",
]
