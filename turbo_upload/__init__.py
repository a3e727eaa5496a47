"""
TurboUpload - chunked upload client for the Aaxion file storage service.
"""

from .chunking import count_chunks, split_chunks, uses_chunked_upload
from .client import UploadSessionClient
from .config import Settings, get_api_base_url
from .engine import CancellationToken, FileUploadDriver, RetryPolicy
from .exceptions import (
    FinalizeError,
    InvalidTransition,
    SourceReadError,
    TransportError,
    UploadCancelled,
    UploadError,
    ValidationError,
)
from .models import (
    ChunkInfo,
    FileDescriptor,
    FileStatus,
    FileUploadState,
    QueueState,
    QueueStatus,
    TransferProgress,
)
from .orchestrator import UploadQueueOrchestrator
from .speed import SpeedEstimator

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "ChunkInfo",
    "FileDescriptor",
    "FileStatus",
    "FileUploadDriver",
    "FileUploadState",
    "FinalizeError",
    "InvalidTransition",
    "QueueState",
    "QueueStatus",
    "RetryPolicy",
    "Settings",
    "SourceReadError",
    "SpeedEstimator",
    "TransferProgress",
    "TransportError",
    "UploadCancelled",
    "UploadError",
    "UploadQueueOrchestrator",
    "UploadSessionClient",
    "ValidationError",
    "count_chunks",
    "get_api_base_url",
    "split_chunks",
    "uses_chunked_upload",
]
