"""
Runtime configuration for the export worker.

Values come from environment variables (optionally loaded from .env by
env.load_env). CLI flags override individual fields after loading.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    """Worker settings. Defaults suit local runs against a single Okapi gateway."""

    okapi_url: str = "http://localhost:9130"
    okapi_tenant: str = "diku"
    okapi_token: Optional[str] = None

    work_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    app_name: str = "export-worker"
    db_path: Path = Path("data/export_worker.db")

    # Where job status updates go: "sqlite" or "sqs"
    job_updates_sink: str = "sqlite"
    sqs_queue_url: Optional[str] = None
    aws_region: str = "us-east-1"

    circulation_log_page_size: int = 100
    authority_stats_chunk_size: int = 100
    chunk_size: int = 100
    skip_limit: int = 1000
    max_workers: int = 4

    log_level: str = "INFO"

    @property
    def job_work_dir(self) -> Path:
        """Shared directory for temp and output files: <workdir>/<appname>/"""
        return self.work_dir / self.app_name

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            okapi_url=os.getenv("OKAPI_URL", defaults.okapi_url),
            okapi_tenant=os.getenv("OKAPI_TENANT", defaults.okapi_tenant),
            okapi_token=os.getenv("OKAPI_TOKEN") or None,
            work_dir=Path(os.getenv("EXPORT_WORK_DIR") or defaults.work_dir),
            app_name=os.getenv("EXPORT_APP_NAME", defaults.app_name),
            db_path=Path(os.getenv("EXPORT_DB_PATH") or defaults.db_path),
            job_updates_sink=os.getenv("JOB_UPDATES_SINK", defaults.job_updates_sink).lower(),
            sqs_queue_url=os.getenv("SQS_QUEUE_URL") or None,
            aws_region=os.getenv("AWS_REGION", defaults.aws_region),
            circulation_log_page_size=_env_int("CIRCULATION_LOG_PAGE_SIZE", defaults.circulation_log_page_size),
            authority_stats_chunk_size=_env_int("AUTHORITY_STATS_CHUNK_SIZE", defaults.authority_stats_chunk_size),
            chunk_size=_env_int("CHUNK_SIZE", defaults.chunk_size),
            skip_limit=_env_int("SKIP_LIMIT", defaults.skip_limit),
            max_workers=_env_int("MAX_WORKERS", defaults.max_workers),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
