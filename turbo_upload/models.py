# turbo_upload/models.py
"""
Data Models for TurboUpload
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple, Union

from .exceptions import InvalidTransition, UploadError


@dataclass(frozen=True)
class ChunkInfo:
    """A contiguous byte range [start, end) of a file"""
    index: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


class FileSource:
    """Reads byte ranges from a file on disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read_range(self, start: int, end: int) -> bytes:
        with open(self.path, 'rb') as f:
            f.seek(start)
            return f.read(end - start)

    def __repr__(self):
        return f"FileSource({str(self.path)!r})"


class MemorySource:
    """Serves byte ranges from an in-memory buffer."""

    def __init__(self, data: bytes):
        self._data = bytes(data)

    def read_range(self, start: int, end: int) -> bytes:
        return self._data[start:end]

    def __repr__(self):
        return f"MemorySource({len(self._data)} bytes)"


@dataclass(frozen=True)
class FileDescriptor:
    """One user-selected file. `name` must be unique within a queue."""
    name: str
    size: int
    source: Union[FileSource, MemorySource] = field(repr=False, compare=False)

    @classmethod
    def from_path(cls, path: Union[str, Path], name: Optional[str] = None) -> "FileDescriptor":
        path = Path(path)
        return cls(name=name or path.name, size=path.stat().st_size, source=FileSource(path))

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> "FileDescriptor":
        return cls(name=name, size=len(data), source=MemorySource(data))

    def read_range(self, start: int, end: int) -> bytes:
        return self.source.read_range(start, end)


class FileStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    CHUNKED = "chunked"  # every chunk acknowledged, awaiting finalize
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "error"
    CANCELLED = "cancelled"


class QueueStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


_TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.UPLOADING}),
    FileStatus.UPLOADING: frozenset({
        FileStatus.CHUNKED, FileStatus.COMPLETED, FileStatus.FAILED, FileStatus.CANCELLED,
    }),
    FileStatus.CHUNKED: frozenset({FileStatus.FINALIZING, FileStatus.CANCELLED}),
    FileStatus.FINALIZING: frozenset({FileStatus.COMPLETED, FileStatus.FAILED, FileStatus.CANCELLED}),
    FileStatus.COMPLETED: frozenset(),
    FileStatus.FAILED: frozenset(),
    FileStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = frozenset({FileStatus.UPLOADING, FileStatus.FINALIZING})


@dataclass(frozen=True)
class TransferProgress:
    """Progress published by a driver for the file it is transferring"""
    bytes_transferred: int
    progress: int
    speed: float
    current_chunk: int
    total_chunks: int


@dataclass
class FileUploadState:
    """Upload state of one file in a queue run"""
    file: FileDescriptor
    status: FileStatus = FileStatus.PENDING
    progress: int = 0
    bytes_transferred: int = 0
    speed: float = 0.0
    current_chunk: int = 0
    total_chunks: int = 0
    failure: Optional[UploadError] = None

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def size(self) -> int:
        return self.file.size

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def transition(self, new_status: FileStatus):
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(self.name, self.status.value, new_status.value)
        self.status = new_status

    def apply(self, update: TransferProgress):
        self.bytes_transferred = update.bytes_transferred
        self.progress = update.progress
        self.speed = update.speed
        self.current_chunk = update.current_chunk
        self.total_chunks = update.total_chunks

    def reset(self):
        """Return a non-completed file to `pending` for resubmission."""
        if self.status == FileStatus.COMPLETED:
            raise InvalidTransition(self.name, self.status.value, FileStatus.PENDING.value)
        self.status = FileStatus.PENDING
        self.progress = 0
        self.bytes_transferred = 0
        self.speed = 0.0
        self.current_chunk = 0
        self.total_chunks = 0
        self.failure = None


@dataclass(frozen=True)
class QueueState:
    """Immutable snapshot of a whole queue, emitted to subscribers"""
    is_uploading: bool
    status: QueueStatus
    completed_files: int
    total_files: int
    overall_progress: int
    speed: float
    estimated_time_remaining: Optional[int]
    files: Tuple[FileUploadState, ...] = ()

    @property
    def active_file(self) -> Optional[FileUploadState]:
        return next((f for f in self.files if f.is_active), None)
