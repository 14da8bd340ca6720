from __future__ import annotations

from .errors import InvalidRange
from .models import Chunk


def chunk_count(first_page: int, last_page: int, chunk_size: int) -> int:
    span = last_page - first_page + 1
    return -(-span // chunk_size)


def plan_chunks(first_page: int, last_page: int, chunk_size: int) -> list[Chunk]:
    """Split ``[first_page, last_page]`` into consecutive chunks of at most ``chunk_size`` pages."""

    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if first_page < 1:
        raise InvalidRange(f"First page must be >= 1, got {first_page}")
    if last_page < first_page:
        raise InvalidRange(f"Last page {last_page} precedes first page {first_page}")
    chunks: list[Chunk] = []
    for index in range(chunk_count(first_page, last_page, chunk_size)):
        start = first_page + index * chunk_size
        end = min(start + chunk_size - 1, last_page)
        chunks.append(Chunk(index=index, first_page=start, last_page=end))
    return chunks


__all__ = ["chunk_count", "plan_chunks"]
