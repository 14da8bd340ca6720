"""Domain models for page image conversion."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union


@dataclass(slots=True)
class ConversionRequest:
    """A request to render pages of a remote document."""

    source: str | None
    first_page: int | None = None
    last_page: int | None = None
    total_pages: int | None = None
    scale_hint: int | None = None


@dataclass(frozen=True, slots=True)
class Chunk:
    index: int
    first_page: int
    last_page: int

    @property
    def page_count(self) -> int:
        return self.last_page - self.first_page + 1

    def pages(self) -> range:
        return range(self.first_page, self.last_page + 1)


@dataclass(slots=True)
class Success:
    chunk_index: int
    files: tuple[str, ...]

    @property
    def produced_file_count(self) -> int:
        return len(self.files)


@dataclass(slots=True)
class Failure:
    chunk_index: int
    reason: str


WorkerOutcome = Union[Success, Failure]


@dataclass(frozen=True, slots=True)
class Artifact:
    page_ordinal: int
    filename: str
    location: str


@dataclass(slots=True)
class OutputSession:
    """Filesystem resources owned by a single conversion request."""

    session_id: str
    output_dir: Path
    temp_input: Path | None = None
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class ConversionResult:
    session_id: str
    links: list[str]
    artifacts: list[Artifact]
    metadata: dict[str, object]


@dataclass(slots=True)
class CleanupReport:
    session_id: str
    removed_files: int = 0
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


__all__ = [
    "Artifact",
    "Chunk",
    "CleanupReport",
    "ConversionRequest",
    "ConversionResult",
    "Failure",
    "OutputSession",
    "Success",
    "WorkerOutcome",
]
