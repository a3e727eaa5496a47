# turbo_upload/chunking.py
"""
Splits a file into the ordered byte ranges sent as individual chunks.
"""

from typing import List

from .models import ChunkInfo


def count_chunks(total_size: int, chunk_size: int) -> int:
    """Number of chunks needed to cover `total_size` bytes."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if total_size < 0:
        raise ValueError(f"total_size must not be negative, got {total_size}")
    return -(-total_size // chunk_size)


def split_chunks(total_size: int, chunk_size: int) -> List[ChunkInfo]:
    """Cover [0, total_size) with contiguous chunks of at most `chunk_size` bytes.

    The last chunk may be shorter. An empty file yields no chunks, which
    callers treat as an already finished chunk phase.
    """
    chunks = []
    for i in range(count_chunks(total_size, chunk_size)):
        start = i * chunk_size
        end = min(start + chunk_size, total_size)
        chunks.append(ChunkInfo(index=i, start=start, end=end))
    return chunks


def uses_chunked_upload(size: int, threshold: int) -> bool:
    """Files at or above the threshold go through the session protocol."""
    return size >= threshold
