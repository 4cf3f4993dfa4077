import json
import shutil
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator

from .logger import get_logger

logger = get_logger()


class SnapshotStore:
    """Keeps pre-update state so an update job can be undone.

    Snapshots live in <root>/<jobId>-<name>; the returned path string is the
    snapshot reference handed to the rollback coordinator.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _target(self, job_id: str, name: str) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root / f"{job_id}-{name}"

    def save(self, job_id: str, source: Path) -> str:
        """Copy an existing file (e.g. the original export) as the snapshot."""
        source = Path(source)
        target = self._target(job_id, source.name)
        shutil.copyfile(source, target)
        logger.info("Saved rollback snapshot", job_id=job_id, snapshot=str(target))
        return str(target)

    def save_records(self, job_id: str, name: str, records: Iterable[Dict[str, Any]]) -> str:
        """Write records as JSON lines and return the snapshot reference."""
        target = self._target(job_id, name)
        count = 0
        with target.open("w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
                count += 1
        logger.info("Saved rollback snapshot", job_id=job_id, snapshot=str(target), records=count)
        return str(target)

    def load(self, snapshot_ref: str) -> Path:
        path = Path(snapshot_ref)
        if not path.is_file():
            raise FileNotFoundError(f"Rollback snapshot not found: {snapshot_ref}")
        return path

    def read_records(self, snapshot_ref: str) -> Iterator[Dict[str, Any]]:
        return read_json_lines(self.load(snapshot_ref))

    def discard(self, snapshot_ref: str) -> None:
        Path(snapshot_ref).unlink(missing_ok=True)


def read_json_lines(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield one dict per non-blank line."""
    with Path(path).open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_no}: invalid JSON record: {e}") from e
