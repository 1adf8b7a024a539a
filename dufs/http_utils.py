"""Helpers for streaming request and response bodies."""

from __future__ import annotations

from typing import BinaryIO, Iterator

DEFAULT_CHUNK_SIZE = 4096


def length_limited_stream(
    reader: BinaryIO, limit: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield chunks read from `reader`, stopping after `limit` bytes or at EOF."""
    if limit < 0:
        raise ValueError("limit must not be negative")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    remaining = limit
    while remaining > 0:
        chunk = reader.read(min(chunk_size, remaining))
        if not chunk:
            return
        chunk = bytes(chunk[:remaining])
        remaining -= len(chunk)
        yield chunk