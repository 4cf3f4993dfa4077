"""Exception taxonomy shared by clients, sources, steps and the notifier."""

from typing import Optional


class ExportWorkerError(Exception):
    """Base class for every error raised by the worker."""
    pass


class RemoteUnavailable(ExportWorkerError):
    """Upstream call failed (network error, timeout, 5xx, exhausted retries)."""

    def __init__(self, message: str, service: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status = status


class NotFound(ExportWorkerError):
    """Lookup succeeded but matched nothing."""

    def __init__(self, kind: str, key: str, message: Optional[str] = None):
        super().__init__(message or f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class MalformedJobRequest(ExportWorkerError):
    """Job parameters are missing something required, usually the job id."""
    pass


class PartialFailure(ExportWorkerError):
    """One record failed during processing; the step keeps going."""

    def __init__(self, message: str, item=None):
        super().__init__(message)
        self.item = item


class CleanupFailure(ExportWorkerError):
    """A temp file could not be deleted."""
    pass


class PublicationFailure(ExportWorkerError):
    """A job status update could not be sent."""
    pass
