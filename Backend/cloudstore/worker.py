"""
Tagging worker: drains the tagging queue one job at a time.

Run one process per consumer (`python -m cloudstore.worker`). Several
processes can share the queue; Redis' atomic BLPOP is the only coordination
between them. A worker stops when its stop event is set (SIGINT/SIGTERM in
the CLI) or when receiving from Redis fails, which is fatal.
"""
import argparse
import logging
import signal
import sys
import threading
from enum import Enum
from typing import Optional, Union

import redis

from cloudstore.core.config import settings
from cloudstore.core.exceptions import DatabaseUnavailableError, MalformedJobError, WorkerStartupError
from cloudstore.core.redis_client import create_redis_client
from cloudstore.db import Database
from cloudstore.services.file_repository import FileRepository
from cloudstore.services.job_queue import JobDescriptor, JobQueue
from cloudstore.services.tagging import ProcessingOutcome, TagCache, TaggingProcessor

logger = logging.getLogger(__name__)

# Bounded wait used by drain() when the configured pop timeout is "forever".
DRAIN_POP_TIMEOUT = 1


class WorkerState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    BLOCKED_ON_POP = "blocked_on_pop"
    PROCESSING = "processing"
    STOPPED = "stopped"


class JobWorker:
    """
    Single-consumer loop over the tagging queue.

    The worker owns the Database and Redis handles it is given: connect()
    opens them, close() releases them.
    """

    def __init__(
        self,
        database: Database,
        redis_client: redis.Redis,
        queue_key: Optional[str] = None,
        pop_timeout: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.database = database
        self.redis = redis_client
        self.queue = JobQueue(redis_client, queue_key)
        self.processor = TaggingProcessor(FileRepository(database), TagCache(redis_client), delay_seconds)
        self.pop_timeout = settings.WORKER_POP_TIMEOUT_SECONDS if pop_timeout is None else pop_timeout
        self.state = WorkerState.STOPPED
        self._stop_event = threading.Event()

    def connect(self) -> None:
        """Reach both stores or raise WorkerStartupError. No retries."""
        self.state = WorkerState.CONNECTING
        try:
            self.database.connect()
            self.redis.ping()
        except (DatabaseUnavailableError, redis.RedisError) as e:
            self.state = WorkerState.STOPPED
            logger.error(f"Worker startup failed: {e}")
            raise WorkerStartupError(str(e)) from e

        self._stop_event.clear()
        self.state = WorkerState.READY
        logger.info(f"Worker connected; consuming '{self.queue.key}'")

    def stop(self) -> None:
        """Ask the loop to exit after the current pop or job."""
        self._stop_event.set()

    def close(self) -> None:
        self.database.close()
        self.redis.close()
        self.state = WorkerState.STOPPED

    def handle(self, raw: Union[str, bytes]) -> Optional[ProcessingOutcome]:
        """Decode and process one queue entry. Returns None for malformed entries."""
        try:
            job = JobDescriptor.from_json(raw)
        except MalformedJobError as e:
            logger.error(f"Dropping malformed job entry: {e}")
            return None

        self.state = WorkerState.PROCESSING
        logger.info(f"Processing tagging job for file: {job.file_id}")
        return self.processor.process(job)

    def _pop_and_handle(self, timeout: int) -> bool:
        """Take one entry off the queue and handle it. False if the pop timed out."""
        self.state = WorkerState.BLOCKED_ON_POP
        try:
            raw = self.queue.pop(timeout)
        except MalformedJobError as e:
            logger.error(f"Dropping malformed job entry: {e}")
            return True
        if raw is None:
            return False
        self.handle(raw)
        return True

    def run(self, stop_event: Optional[threading.Event] = None) -> int:
        """
        Consume until stopped. Returns the number of entries handled.

        A stop_event passed in replaces the worker's own, so stop() sets it.
        Redis errors while popping are not caught: the loop cannot continue
        without its queue and the process is expected to be restarted.
        """
        if self.state != WorkerState.READY:
            raise RuntimeError("JobWorker.connect() must succeed before run()")
        if stop_event is not None:
            self._stop_event = stop_event

        handled = 0
        try:
            while not self._stop_event.is_set():
                if self._pop_and_handle(self.pop_timeout):
                    handled += 1
        finally:
            self.state = WorkerState.STOPPED
        logger.info(f"Worker stopped after {handled} job(s)")
        return handled

    def drain(self) -> int:
        """Handle entries until a bounded pop comes back empty."""
        if self.state != WorkerState.READY:
            raise RuntimeError("JobWorker.connect() must succeed before drain()")
        timeout = self.pop_timeout or DRAIN_POP_TIMEOUT

        handled = 0
        while not self._stop_event.is_set():
            if not self._pop_and_handle(timeout):
                break
            handled += 1
        self.state = WorkerState.READY
        logger.info(f"Queue drained: {handled} job(s) handled")
        return handled


def build_worker() -> JobWorker:
    return JobWorker(Database(), create_redis_client())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Consume the file tagging queue.")
    parser.add_argument("--drain", action="store_true", help="Exit once the queue is empty instead of waiting for more jobs.")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    worker = build_worker()
    try:
        worker.connect()
    except WorkerStartupError:
        return 1

    def _request_stop(signum, frame):
        logger.info(f"Signal {signum} received, stopping worker...")
        worker.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    try:
        if args.drain:
            worker.drain()
        else:
            worker.run()
    except redis.RedisError as e:
        logger.critical(f"Lost connection to the tagging queue: {e}", exc_info=True)
        return 1
    except Exception:
        logger.critical("Worker crashed", exc_info=True)
        return 1
    finally:
        worker.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
