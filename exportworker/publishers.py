"""
Job status publication channel.

Every update goes to one logical topic, keyed by job id, with Job.to_dict()
as payload. Two sinks:

- SqliteJobUpdatePublisher appends to the job_updates table (local runs, and
  the log behind the `updates` CLI command).
- SqsJobUpdatePublisher sends to an SQS queue; with a FIFO queue the job id
  is the message group, which keeps per-job ordering.

Publishers raise PublicationFailure; they never retry.
"""

import hashlib
import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import JobUpdate, init_database
from .errors import PublicationFailure
from .logger import get_logger
from .models import Job

logger = get_logger()

JOB_UPDATES_TOPIC = "DATA_EXPORT_JOB_EXECUTION_UPDATES"


class JobUpdatePublisher(Protocol):
    def send(self, job: Job) -> None: ...


class SqliteJobUpdatePublisher:
    """Appends job updates to a SQLite table."""

    def __init__(self, db_path: Path, topic: str = JOB_UPDATES_TOPIC):
        self.db_path = Path(db_path)
        self.topic = topic
        self._engine = init_database(self.db_path)
        self._Session = sessionmaker(bind=self._engine)
        self._lock = threading.Lock()

    def send(self, job: Job) -> None:
        payload = job.to_dict()
        row = JobUpdate(
            job_id=job.id,
            topic=self.topic,
            batch_status=payload["batchStatus"],
            payload=json.dumps(payload, ensure_ascii=False),
        )
        with self._lock:
            session = self._Session()
            try:
                session.add(row)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PublicationFailure(f"Cannot store update for job {job.id}: {e}") from e
            finally:
                session.close()
        logger.debug("Stored job update", job_id=job.id, status=payload["batchStatus"])

    def list_updates(self, job_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Published payloads in publication order, optionally for one job."""
        session = self._Session()
        try:
            query = session.query(JobUpdate).filter(JobUpdate.topic == self.topic)
            if job_id:
                query = query.filter(JobUpdate.job_id == job_id)
            return [json.loads(row.payload) for row in query.order_by(JobUpdate.id).all()]
        finally:
            session.close()

    def close(self) -> None:
        self._engine.dispose()


def get_sqs_client(region: str):
    """SQS client using the default credential chain."""
    client = boto3.client("sqs", region_name=region)
    logger.info("SQS client initialized", region=region)
    return client


class SqsJobUpdatePublisher:
    """Sends job updates as JSON messages to an SQS queue."""

    def __init__(self, sqs_client, queue_url: str, topic: str = JOB_UPDATES_TOPIC):
        if not queue_url:
            raise ValueError("SQS queue URL is required for the sqs job updates sink")
        self._sqs = sqs_client
        self.queue_url = queue_url
        self.topic = topic
        self.fifo = queue_url.endswith(".fifo")

    def send(self, job: Job) -> None:
        payload = job.to_dict()
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        params = {
            "QueueUrl": self.queue_url,
            "MessageBody": body,
            "MessageAttributes": {
                "topic": {"DataType": "String", "StringValue": self.topic},
                "job_id": {"DataType": "String", "StringValue": job.id},
                "status": {"DataType": "String", "StringValue": payload["batchStatus"] or "UNKNOWN"},
                "content_type": {"DataType": "String", "StringValue": "application/json"},
            },
        }
        if self.fifo:
            params["MessageGroupId"] = job.id
            params["MessageDeduplicationId"] = hashlib.sha256(body.encode("utf-8")).hexdigest()

        try:
            resp = self._sqs.send_message(**params)
        except (BotoCoreError, ClientError) as e:
            raise PublicationFailure(f"Cannot send update for job {job.id}: {e}") from e
        logger.info("SQS publish ok", job_id=job.id, msg_id=resp.get("MessageId", ""))


def build_publisher(settings) -> JobUpdatePublisher:
    """Pick the sink named by settings.job_updates_sink."""
    if settings.job_updates_sink == "sqs":
        return SqsJobUpdatePublisher(get_sqs_client(settings.aws_region), settings.sqs_queue_url)
    if settings.job_updates_sink == "sqlite":
        return SqliteJobUpdatePublisher(settings.db_path)
    raise ValueError(f"Unknown job updates sink: {settings.job_updates_sink}")
