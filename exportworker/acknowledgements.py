"""
Inbound message acknowledgments.

A job started from a queue message carries an acknowledgment handle. The
handle is stored per job id when the job is accepted and acknowledged once,
by the notifier, after the job body has finished.
"""

import threading
from typing import Dict, Optional, Protocol

from .logger import get_logger

logger = get_logger()


class Acknowledgment(Protocol):
    def acknowledge(self) -> None: ...


class SqsAcknowledgment:
    """Acknowledges an SQS message by deleting it from its queue."""

    def __init__(self, sqs_client, queue_url: str, receipt_handle: str):
        self._sqs = sqs_client
        self.queue_url = queue_url
        self.receipt_handle = receipt_handle
        self._done = False

    def acknowledge(self) -> None:
        if self._done:
            return
        self._sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=self.receipt_handle)
        self._done = True
        logger.debug("SQS message acknowledged", queue_url=self.queue_url)


class AcknowledgementRepository:
    """Thread-safe job id -> pending acknowledgment handle."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Dict[str, Acknowledgment] = {}

    def add_acknowledgement(self, job_id: str, acknowledgment: Acknowledgment) -> None:
        with self._lock:
            self._pending[job_id] = acknowledgment

    def get_acknowledgement(self, job_id: str) -> Optional[Acknowledgment]:
        with self._lock:
            return self._pending.get(job_id)

    def pop_acknowledgement(self, job_id: str) -> Optional[Acknowledgment]:
        """Remove and return the handle, so only one caller ever gets it."""
        with self._lock:
            return self._pending.pop(job_id, None)

    def delete_acknowledgement(self, job_id: str) -> None:
        with self._lock:
            self._pending.pop(job_id, None)
