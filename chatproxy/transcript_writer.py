"""Background transcript persistence.

Transcripts are produced after the caller already has its response, so
nothing here may raise back into the request path. Jobs go through a bounded
queue drained by a fixed set of workers; file I/O and parsing run in a thread
to keep the event loop free.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .models import ChatCompletionRequest
from .stream_merger import reconstruct_reply
from .transcript import render_transcript

logger = logging.getLogger(__name__)

TRANSCRIPT_TAG = "POST.azure"


@dataclass(frozen=True)
class TranscriptJob:
    """Everything needed to write one transcript, captured at request time."""

    request_path: str
    model: str
    request_body: bytes
    response_body: bytes
    received_at: datetime = field(default_factory=datetime.now)


def transcript_path(log_dir: str, model: str, now: datetime) -> Path:
    """Path for a transcript: ``<log_dir>/<date>/POST.azure.<date>.T<time>.<model>.<unix>.yaml``.

    The unix-seconds suffix is not unique within one second; a second
    transcript for the same model in the same second overwrites the first.
    """
    date_str = now.strftime("%Y-%m-%d")
    time_str = now.strftime("T%H:%M:%S")
    seq = int(now.timestamp())
    filename = f"{TRANSCRIPT_TAG}.{date_str}.{time_str}.{model}.{seq}.yaml"
    return Path(log_dir) / date_str / filename


def write_transcript(path: Path, content: str) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to write transcript (%s): %s", path, e)
        return False
    return True


def process_transcript(job: TranscriptJob, log_dir: str) -> Optional[Path]:
    """Parse, render and persist one exchange. Returns the written path."""
    try:
        request = ChatCompletionRequest.model_validate_json(job.request_body)
    except ValidationError as e:
        logger.warning(
            "Failed to parse request body for %s, skipping transcript: %s",
            job.request_path,
            e.error_count(),
        )
        return None

    reply = reconstruct_reply(job.response_body)
    content = render_transcript(job.request_path, request.messages, reply)
    path = transcript_path(log_dir, job.model, job.received_at)
    logger.info("Write transcript to %s", path)
    logger.debug("Transcript content:\n%s", content)
    if not write_transcript(path, content):
        return None
    return path


class TranscriptQueue:
    """Bounded queue of transcript jobs drained by a fixed worker pool."""

    def __init__(self, log_dir: str, workers: int = 4, maxsize: int = 1000):
        self.log_dir = log_dir
        self.workers = max(1, workers)
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        """Start worker tasks on the running event loop."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"transcript-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("Started %d transcript workers (queue size %d)", self.workers, self.maxsize)

    async def stop(self) -> None:
        """Wait for pending jobs, then stop the workers."""
        if self._queue is None:
            return
        await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None

    async def submit(self, job: TranscriptJob) -> bool:
        """Enqueue a job without waiting; drops it if the queue is full."""
        if self._queue is None:
            logger.warning("Transcript queue not running; dropping %s", job.request_path)
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(
                "Transcript queue full (%d); dropping transcript for model=%s",
                self.maxsize,
                job.model,
            )
            return False
        return True

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await asyncio.to_thread(process_transcript, job, self.log_dir)
            except Exception:
                logger.exception("Transcript worker failed for %s", job.request_path)
            finally:
                self._queue.task_done()
