import shutil
from pathlib import Path


class LocalFileStorage:
    """Final resting place for job output files.

    Jobs write into temp files under the shared work directory; finished
    files are copied here, under one folder per job, and the returned
    references end up in the job's outputFilesInStorage list.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def upload(self, job_id: str, source: Path, object_name: str) -> str:
        target_dir = self.root / job_id
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / object_name
        shutil.copyfile(source, target)
        return str(target)

    def open_text(self, reference: str) -> str:
        return Path(reference).read_text(encoding="utf-8")
