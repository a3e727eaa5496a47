# turbo_upload/orchestrator.py
"""
Queue orchestration: two-phase batch upload with fleet-wide telemetry.

Phase 1 transfers the bytes of every file in submission order; Phase 2 then
asks the server to assemble each chunked file. Files are processed strictly
one at a time, and a failing file never stops its siblings.
"""

import dataclasses
import logging
from typing import Callable, Iterable, List, Optional

from .chunking import count_chunks, uses_chunked_upload
from .config import Settings
from .engine import CancellationToken, FileUploadDriver, RetryPolicy
from .exceptions import UploadCancelled, UploadError, ValidationError
from .models import (
    FileDescriptor,
    FileStatus,
    FileUploadState,
    QueueState,
    QueueStatus,
    TransferProgress,
)
from .speed import SpeedEstimator
from .utils import percent, round_half_up

logger = logging.getLogger(__name__)

Listener = Callable[[QueueState], None]
StatusCallback = Callable[[str, int], None]


class UploadQueueOrchestrator:
    """Owns the file queue of one upload dialog and is its only writer."""

    def __init__(self, client, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or Settings()
        self.retry = RetryPolicy.from_settings(self.settings)

        self.files: List[FileUploadState] = []
        self.is_uploading = False
        self.token = CancellationToken()
        self.target_dir: Optional[str] = None

        self._listeners: List[Listener] = []
        # Transient per-file notices (message, logging level)
        self.status_callback: Optional[StatusCallback] = None

    # -- queue editing -------------------------------------------------

    def add_files(self, files: Iterable[FileDescriptor]):
        self._ensure_idle("add files")
        self.files.extend(FileUploadState(file=f) for f in files)
        self._emit()

    def remove_file(self, name: str):
        self._ensure_idle("remove files")
        before = len(self.files)
        self.files = [f for f in self.files if f.name != name]
        if len(self.files) == before:
            raise ValidationError(f"No file named {name!r} in the queue")
        self._emit()

    def clear(self):
        self._ensure_idle("clear the queue")
        self.files = []
        self._emit()

    def _ensure_idle(self, action: str):
        if self.is_uploading:
            raise ValidationError(f"Cannot {action} while an upload is running")

    # -- control -------------------------------------------------------

    def stop(self):
        if not self.is_uploading:
            return
        self.token.cancel()
        self._update_status("Upload stopping...")

    def pause(self):
        self.token.pause()
        self._update_status("Upload paused.")

    def resume(self):
        self.token.resume()
        self._update_status("Upload resumed.")

    # -- subscription --------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener` for every queue change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> QueueState:
        total_size = sum(f.size for f in self.files)
        done_bytes = sum(f.size if f.status == FileStatus.COMPLETED else f.bytes_transferred
                         for f in self.files)
        completed = sum(1 for f in self.files if f.status == FileStatus.COMPLETED)

        if total_size > 0:
            overall = percent(done_bytes, total_size)
        else:
            overall = 100 if self.files and completed == len(self.files) else 0

        active = next((f for f in self.files if f.is_active), None)
        speed = active.speed if active else 0.0
        eta = round_half_up((total_size - done_bytes) / speed) if speed > 0 else None

        return QueueState(
            is_uploading=self.is_uploading,
            status=self._overall_status(completed),
            completed_files=completed,
            total_files=len(self.files),
            overall_progress=overall,
            speed=speed,
            estimated_time_remaining=eta,
            files=tuple(dataclasses.replace(f) for f in self.files),
        )

    def _overall_status(self, completed: int) -> QueueStatus:
        statuses = {f.status for f in self.files}
        if FileStatus.FAILED in statuses:
            return QueueStatus.ERROR
        if FileStatus.CANCELLED in statuses or (self.token.cancelled and completed < len(self.files)):
            return QueueStatus.CANCELLED
        if FileStatus.FINALIZING in statuses:
            return QueueStatus.FINALIZING
        if self.is_uploading:
            return QueueStatus.UPLOADING
        if self.files and completed == len(self.files):
            return QueueStatus.COMPLETED
        return QueueStatus.PENDING

    def _emit(self):
        state = self.snapshot()
        for listener in list(self._listeners):
            listener(state)

    def _update_status(self, message: str, level: int = logging.INFO):
        logger.log(level, message)
        if self.status_callback:
            self.status_callback(message, level)

    # -- run -----------------------------------------------------------

    def _preflight(self, target_dir: str):
        if self.is_uploading:
            raise ValidationError("An upload is already running")
        if not target_dir or not target_dir.strip():
            raise ValidationError("Please select a destination directory")
        if not self.files:
            raise ValidationError("Please select files to upload")
        seen = set()
        for f in self.files:
            if f.name in seen:
                raise ValidationError(f"Duplicate file name in queue: {f.name}")
            seen.add(f.name)

    async def upload(self, target_dir: str) -> QueueState:
        """Run both phases over the queue and return the final snapshot.

        Completed files from an earlier run are skipped; every other file is
        reset and attempted again.
        """
        self._preflight(target_dir)

        self.target_dir = target_dir
        self.token = CancellationToken()
        for f in self.files:
            if f.status != FileStatus.COMPLETED:
                f.reset()
        self.is_uploading = True
        self._emit()

        try:
            await self._transfer_phase(target_dir)
            if not self.token.cancelled:
                await self._finalize_phase(target_dir)
            if self.token.cancelled:
                self._update_status("Upload cancelled", logging.WARNING)
        finally:
            self.is_uploading = False
            self._emit()

        return self.snapshot()

    def _make_driver(self, state: FileUploadState) -> FileUploadDriver:
        def on_progress(update: TransferProgress):
            state.apply(update)
            self._emit()

        return FileUploadDriver(
            self.client, state.file, self.settings.CHUNK_SIZE,
            on_progress=on_progress,
            retry=self.retry,
            token=self.token,
            estimator=SpeedEstimator(self.settings.SPEED_SAMPLE_INTERVAL),
        )

    def _fail(self, state: FileUploadState, error: UploadError, message: str):
        if isinstance(error, UploadCancelled):
            state.transition(FileStatus.CANCELLED)
        else:
            state.failure = error
            state.transition(FileStatus.FAILED)
            self._update_status(message, logging.ERROR)
            logger.error("%s: %s", state.name, error)
        self._emit()

    async def _transfer_phase(self, target_dir: str):
        for state in self.files:
            if self.token.cancelled:
                break
            if state.status != FileStatus.PENDING:
                continue

            chunked = uses_chunked_upload(state.size, self.settings.CHUNK_THRESHOLD)
            driver = self._make_driver(state)
            state.transition(FileStatus.UPLOADING)
            state.current_chunk = 0
            state.total_chunks = count_chunks(state.size, self.settings.CHUNK_SIZE) if chunked else 1
            self._emit()

            try:
                if chunked:
                    self._update_status(f"Starting upload: {state.name} ({state.total_chunks} chunks)")
                    await driver.upload_chunks()
                    state.progress = 100
                    state.bytes_transferred = state.size
                    state.transition(FileStatus.CHUNKED)
                else:
                    self._update_status(f"Starting upload: {state.name}")
                    await driver.upload_whole(target_dir)
                    state.progress = 100
                    state.bytes_transferred = state.size
                    state.transition(FileStatus.COMPLETED)
                    self._update_status(f"{state.name} uploaded successfully!")
                self._emit()
            except UploadError as e:
                self._fail(state, e, f"Failed to upload chunks for {state.name}" if chunked
                           else f"Failed to upload {state.name}")

    async def _finalize_phase(self, target_dir: str):
        for state in self.files:
            if self.token.cancelled:
                break
            if state.status != FileStatus.CHUNKED:
                continue

            state.transition(FileStatus.FINALIZING)
            self._emit()
            self._update_status(f"Finalizing upload in destination: {target_dir}")
            try:
                await self._make_driver(state).finalize(target_dir)
                state.transition(FileStatus.COMPLETED)
                self._emit()
                self._update_status(f"{state.name} uploaded successfully!")
            except UploadError as e:
                self._fail(state, e, f"Failed to finalize {state.name}")
