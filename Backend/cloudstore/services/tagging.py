"""
Tagging step run by the worker for each queued upload.

The tag derivation is a placeholder (fixed labels + file extension) behind a
short simulated delay. Results go to the Result Store first and then to the
Redis cache; the two writes are not transactional and the cache is never
authoritative.
"""
import json
import logging
import os
import time
from enum import Enum
from typing import Dict, List, Optional

import redis

from cloudstore.core.config import settings
from cloudstore.services.file_repository import FileRepository
from cloudstore.services.job_queue import JobDescriptor

logger = logging.getLogger(__name__)

BASE_TAGS = ("AI", "Processed")


def derive_tags(file_path: str) -> List[str]:
    """Fixed labels plus the extension of `file_path` (without the dot, case kept)."""
    ext = os.path.splitext(file_path)[1].lstrip(".")
    tags = list(BASE_TAGS)
    if ext:
        tags.append(ext)
    return tags


def cache_key(file_id: str) -> str:
    return f"file:{file_id}:ai:tagging"


class TagCache:
    """Derived tag cache: one hash per file with a JSON `tags` field. No TTL."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def set_tags(self, file_id: str, tags: List[str]) -> None:
        self.client.hset(cache_key(file_id), mapping={"tags": json.dumps(tags, separators=(",", ":"))})

    def get_tags(self, file_id: str) -> Optional[List[str]]:
        data: Dict[str, str] = self.client.hgetall(cache_key(file_id))
        if not data or "tags" not in data:
            return None
        return json.loads(data["tags"])


class ProcessingOutcome(str, Enum):
    TAGGED = "tagged"
    ORPHANED = "orphaned"  # no File Record; cache still written
    FAILED = "failed"


class TaggingProcessor:
    def __init__(
        self,
        repository: FileRepository,
        cache: TagCache,
        delay_seconds: Optional[float] = None,
    ):
        self.repository = repository
        self.cache = cache
        self.delay_seconds = settings.PROCESSING_DELAY_SECONDS if delay_seconds is None else delay_seconds

    def process(self, job: JobDescriptor) -> ProcessingOutcome:
        """
        Tag one file. Errors are logged here and reported as FAILED; they are
        never raised to the worker loop.
        """
        try:
            logger.info(f"Starting tagging for {job.file_path}...")
            tags = derive_tags(job.file_path)
            if self.delay_seconds > 0:
                time.sleep(self.delay_seconds)

            record = self.repository.find_by_id(job.file_id)
            if record is not None:
                record.ai_tags = tags
                self.repository.save(record)
                outcome = ProcessingOutcome.TAGGED
                logger.info(f"Updated result store for file {record.file_name} ({record.id})")
            else:
                outcome = ProcessingOutcome.ORPHANED
                logger.warning(f"File ID {job.file_id} not found in result store")

            self.cache.set_tags(job.file_id, tags)
            logger.info(f"Finished tagging {job.file_path}: {tags}")
            return outcome

        except Exception as e:
            logger.error(f"Tagging failed for {job.file_path}: {e}", exc_info=True)
            return ProcessingOutcome.FAILED
