"""
Queue consumer for export commands.

Polls an SQS queue for job commands and hands each one to the worker with
an SqsAcknowledgment. The message is deleted by the notifier once the job
has finished, so a worker crash mid-job leaves it on the queue for redelivery.
Commands that cannot be parsed or started are logged and deleted right away.
"""

import json
import threading
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .acknowledgements import SqsAcknowledgment
from .errors import MalformedJobRequest
from .logger import get_logger
from .worker import ExportWorker

logger = get_logger()


class JobCommandConsumer:
    """
    Args:
        worker: launches the jobs
        sqs_client: boto3 SQS client
        queue_url: queue with job commands
        max_messages: messages per receive call (SQS caps this at 10)
        wait_seconds: long-poll wait per receive call
    """

    def __init__(
        self,
        worker: ExportWorker,
        sqs_client,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: int = 20,
    ):
        if not queue_url:
            raise ValueError("SQS queue URL is required to consume job commands")
        self.worker = worker
        self._sqs = sqs_client
        self.queue_url = queue_url
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds

    def poll_once(self) -> List[str]:
        """Receive one batch and launch its jobs. Returns the launched job ids."""
        try:
            resp = self._sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=self.max_messages,
                WaitTimeSeconds=self.wait_seconds,
                MessageAttributeNames=["All"],
            )
        except (BotoCoreError, ClientError) as e:
            logger.record_error(type(e).__name__)
            logger.error("Cannot receive job commands", queue_url=self.queue_url, error=str(e))
            return []

        launched = []
        for message in resp.get("Messages", []):
            job_id = self.handle_message(message)
            if job_id:
                launched.append(job_id)
        return launched

    def handle_message(self, message: Dict[str, Any]) -> Optional[str]:
        acknowledgment = SqsAcknowledgment(self._sqs, self.queue_url, message["ReceiptHandle"])
        try:
            command = json.loads(message.get("Body") or "")
            if not isinstance(command, dict):
                raise MalformedJobRequest("Job command must be a JSON object")
            execution = self.worker.submit(command, acknowledgment=acknowledgment)
        except (ValueError, MalformedJobRequest) as e:
            logger.record_error(type(e).__name__)
            logger.error("Dropping job command", message_id=message.get("MessageId"), error=str(e))
            acknowledgment.acknowledge()
            return None

        logger.info("Job command accepted", job_id=execution.job_id, message_id=message.get("MessageId"))
        return execution.job_id

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Poll until stop_event is set."""
        stop_event = stop_event or threading.Event()
        logger.info("Consuming job commands", queue_url=self.queue_url)
        while not stop_event.is_set():
            self.poll_once()
