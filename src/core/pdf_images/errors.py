"""Typed failures raised by the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class ConversionError(RuntimeError):
    code = "CONVERSION_ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class MissingSource(ConversionError):
    code = "MISSING_SOURCE"
    http_status = 400


class InvalidRange(ConversionError):
    code = "INVALID_RANGE"
    http_status = 400


class UnresolvableSource(ConversionError):
    code = "UNRESOLVABLE_SOURCE"
    http_status = 422


class SourceUnavailable(ConversionError):
    code = "SOURCE_UNAVAILABLE"
    http_status = 502


class ServiceBusy(ConversionError):
    code = "SERVICE_BUSY"
    http_status = 503


@dataclass(frozen=True, slots=True)
class ChunkFailure:
    chunk_index: int
    first_page: int
    last_page: int
    reason: str

    def describe(self) -> str:
        return f"chunk {self.chunk_index} (pages {self.first_page}-{self.last_page}): {self.reason}"


class ConversionFailed(ConversionError):
    code = "CONVERSION_FAILED"
    http_status = 500

    def __init__(self, message: str, failures: Sequence[ChunkFailure] = ()) -> None:
        super().__init__(message)
        self.failures = list(failures)

    @property
    def chunk_indices(self) -> list[int]:
        return [failure.chunk_index for failure in self.failures]


class NoArtifacts(ConversionError):
    code = "NO_ARTIFACTS"
    http_status = 500


class CleanupFailed(ConversionError):
    """Recorded by the cleanup scheduler; never propagated to callers."""

    code = "CLEANUP_FAILED"


__all__ = [
    "ChunkFailure",
    "CleanupFailed",
    "ConversionError",
    "ConversionFailed",
    "InvalidRange",
    "MissingSource",
    "NoArtifacts",
    "ServiceBusy",
    "SourceUnavailable",
    "UnresolvableSource",
]
