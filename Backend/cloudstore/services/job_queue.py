"""
Tagging job queue on a Redis list.

Producers RPUSH to the tail, workers BLPOP from the head, so entries are
handed out in push order. Pop removes the entry atomically and there is no
acknowledgement: a job that fails after being popped is gone.
"""
from __future__ import annotations

import logging
from typing import Optional, Union

import redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cloudstore.core.config import settings
from cloudstore.core.exceptions import MalformedJobError
from cloudstore.services.file_repository import FileRecord

logger = logging.getLogger(__name__)


class JobDescriptor(BaseModel):
    """Wire format: {"fileId": ..., "filePath": ...}. Unknown keys are ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file_id: str = Field(alias="fileId", min_length=1)
    file_path: str = Field(alias="filePath", min_length=1)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "JobDescriptor":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedJobError(f"Invalid job entry {raw!r}: {e.error_count()} error(s)") from e


class JobQueue:
    """Thin wrapper over the Redis list commands the queue needs."""

    def __init__(self, client: redis.Redis, key: Optional[str] = None):
        self.client = client
        self.key = key or settings.TAGGING_QUEUE

    def push(self, job: JobDescriptor) -> int:
        """Append to the tail. Returns the queue length after the push."""
        return self.client.rpush(self.key, job.to_json())

    def pop(self, timeout: int = 0) -> Optional[Union[str, bytes]]:
        """
        Block until an entry is available and return it without parsing it.
        timeout=0 waits forever; otherwise None is returned after `timeout` seconds.

        Raises MalformedJobError when a decoding client cannot decode the entry.
        The entry is already off the list by then.
        """
        try:
            item = self.client.blpop([self.key], timeout=timeout)
        except UnicodeDecodeError as e:
            raise MalformedJobError(f"Queue entry is not valid UTF-8: {e}") from e
        if item is None:
            return None
        _key, value = item
        return value

    def size(self) -> int:
        return self.client.llen(self.key)


class JobEnqueuer:
    """
    Called from the upload route once the File Record is committed.
    Never raises on Redis failures: the upload already succeeded, so the
    caller only learns whether the job made it onto the queue.
    """

    def __init__(self, queue: JobQueue):
        self.queue = queue

    def enqueue(self, record: FileRecord) -> bool:
        if not record.id or not record.file_path:
            raise ValueError("Cannot enqueue a file record without an id and a path")

        job = JobDescriptor(file_id=record.id, file_path=record.file_path)
        try:
            depth = self.queue.push(job)
        except redis.RedisError as e:
            logger.error(f"Failed to enqueue tagging job for file {record.id} ({record.file_path}): {e}")
            return False

        logger.info(f"Queued tagging job for file {record.id} (queue depth {depth})")
        return True
