# turbo_upload/engine.py
"""
Per-file upload engine: chunk sequencing, retry with backoff, cancellation.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .chunking import split_chunks
from .exceptions import FinalizeError, SourceReadError, TransportError, UploadCancelled
from .models import FileDescriptor, TransferProgress
from .speed import SpeedEstimator
from .utils import percent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Shared stop / pause switch threaded through every network await."""

    def __init__(self):
        self._cancelled = asyncio.Event()
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def cancel(self):
        self._cancelled.set()
        # Release anyone parked in wait_if_paused
        self._resumed.set()

    def pause(self):
        if not self.cancelled:
            self._resumed.clear()

    def resume(self):
        self._resumed.set()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise UploadCancelled("Upload cancelled")

    async def wait_if_paused(self):
        await self._resumed.wait()
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it as soon as the token is cancelled."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise UploadCancelled("Upload cancelled")
        task = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if task.cancelled():
            raise UploadCancelled("Upload cancelled")
        return task.result()


@dataclass
class RetryPolicy:
    """Bounded attempts with exponential backoff between them."""
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(settings.MAX_ATTEMPTS, settings.RETRY_BACKOFF_BASE, settings.RETRY_BACKOFF_MAX)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)


class FileUploadDriver:
    """Drives one file through the upload protocol.

    The driver never touches queue state. Every progress change is published
    as a `TransferProgress` through `on_progress`; failures propagate as
    exceptions for the orchestrator to record.
    """

    def __init__(self, client, file: FileDescriptor, chunk_size: int,
                 on_progress: Optional[Callable[[TransferProgress], None]] = None,
                 retry: Optional[RetryPolicy] = None,
                 token: Optional[CancellationToken] = None,
                 estimator: Optional[SpeedEstimator] = None):
        self.client = client
        self.file = file
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self.retry = retry or RetryPolicy()
        self.token = token or CancellationToken()
        self.estimator = estimator or SpeedEstimator()

        self.chunks = split_chunks(file.size, chunk_size)
        self._reported_bytes = 0

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    def _publish(self, bytes_so_far: int, current_chunk: int, total_chunks: int):
        # A retried chunk starts counting from zero again; never report going backwards
        self._reported_bytes = max(self._reported_bytes, min(bytes_so_far, self.file.size))
        speed = self.estimator.sample(self._reported_bytes)
        progress = percent(self._reported_bytes, self.file.size) if self.file.size else 100
        if self.on_progress:
            self.on_progress(TransferProgress(
                bytes_transferred=self._reported_bytes,
                progress=progress,
                speed=speed,
                current_chunk=current_chunk,
                total_chunks=total_chunks,
            ))

    def _read(self, start: int, end: int) -> bytes:
        try:
            data = self.file.read_range(start, end)
        except OSError as e:
            raise SourceReadError(f"Cannot read {self.file.name}: {e}") from e
        if len(data) != end - start:
            raise SourceReadError(
                f"{self.file.name} is shorter than when it was queued "
                f"(expected {end - start} bytes at offset {start}, got {len(data)})")
        return data

    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await self.token.guard(call())
            except TransportError as e:
                if not e.retryable or attempt >= self.retry.max_attempts:
                    raise
                wait_time = self.retry.delay(attempt)
                logger.warning("%s (retry %d/%d): %s. Retrying in %.1fs.",
                               label, attempt, self.retry.max_attempts - 1, e, wait_time)
                await self.token.guard(asyncio.sleep(wait_time))
                attempt += 1

    async def upload_chunks(self):
        """Phase 1 for a chunked file: start the session and send every chunk in order.

        Finalization is left to the caller so that byte transfer and
        server-side assembly are reported separately.
        """
        name = self.file.name
        total = self.total_chunks

        # Not idempotent on the server: exactly one attempt
        await self.token.guard(self.client.start_session(name))
        self.estimator.sample(0)

        uploaded = 0
        for chunk in self.chunks:
            await self.token.wait_if_paused()
            data = self._read(chunk.start, chunk.end)
            current = chunk.index + 1

            def on_bytes(loaded: int, _total: int, base=uploaded, current=current):
                self._publish(base + loaded, current, total)

            await self._with_retry(
                f"{name} chunk {current}/{total}",
                lambda chunk=chunk, data=data, on_bytes=on_bytes: self.client.upload_chunk(
                    name, chunk.index, data, on_bytes),
            )
            uploaded += chunk.size
            self._publish(uploaded, current, total)
            logger.debug("%s: chunk %d/%d acknowledged", name, current, total)

        if total == 0:
            self._publish(0, 0, 0)

    async def upload_whole(self, target_dir: str):
        """Single-shot path: the whole file in one multipart request."""
        name = self.file.name
        await self.token.wait_if_paused()
        data = self._read(0, self.file.size)
        self.estimator.sample(0)

        def on_bytes(loaded: int, _total: int):
            self._publish(loaded, 1, 1)

        await self._with_retry(name, lambda: self.client.upload_file(name, data, target_dir, on_bytes))
        self._publish(self.file.size, 1, 1)

    async def finalize(self, target_dir: str):
        """Phase 2: have the server assemble the chunks into `target_dir`."""
        try:
            await self._with_retry(
                f"{self.file.name} finalize",
                lambda: self.client.complete_session(self.file.name, target_dir),
            )
        except TransportError as e:
            raise FinalizeError.from_transport(e) from e
