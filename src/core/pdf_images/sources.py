"""Source retrieval and page-count inspection."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

import httpx
from pdf2image import pdfinfo_from_path

from .config import RuntimeConfig
from .errors import SourceUnavailable, UnresolvableSource
from .log_utils import logger


REMOTE_SCHEMES = {"http", "https"}
READ_CHUNK = 1024 * 1024


@dataclass(slots=True)
class FetchedSource:
    path: Path
    size_bytes: int
    sha256: str
    elapsed_ms: float = 0.0


class SourceFetcher(Protocol):
    def fetch(self, reference: str, destination: Path) -> FetchedSource:  # pragma: no cover - interface
        ...


class PageCounter(Protocol):
    def page_count(self, path: Path) -> int:  # pragma: no cover - interface
        ...


def is_remote(reference: str) -> bool:
    return urlparse(reference).scheme.lower() in REMOTE_SCHEMES


class HttpSourceFetcher:
    """Streams a remote document to disk while hashing it."""

    def __init__(
        self,
        *,
        timeout_s: float,
        max_bytes: int,
        client: httpx.Client | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=True)

    def fetch(self, reference: str, destination: Path) -> FetchedSource:
        start = time.perf_counter()
        digest = hashlib.sha256()
        size = 0
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._client.stream("GET", reference) as response:
                response.raise_for_status()
                with destination.open("wb") as handle:
                    for block in response.iter_bytes(READ_CHUNK):
                        size += len(block)
                        if size > self._max_bytes:
                            raise SourceUnavailable(
                                f"Document exceeds {self._max_bytes // (1024 * 1024)} MB limit"
                            )
                        handle.write(block)
                        digest.update(block)
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(
                f"Fetching {reference} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Unable to fetch {reference}: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Took {elapsed_ms:.0f}ms to download {size} bytes from {reference}")
        return FetchedSource(path=destination, size_bytes=size, sha256=digest.hexdigest(), elapsed_ms=elapsed_ms)

    def close(self) -> None:
        self._client.close()


class LocalSourceFetcher:
    """Copies a local document into the session's temp input."""

    def __init__(self, *, max_bytes: int) -> None:
        self._max_bytes = max_bytes

    def fetch(self, reference: str, destination: Path) -> FetchedSource:
        start = time.perf_counter()
        parsed = urlparse(reference)
        source = Path(parsed.path if parsed.scheme == "file" else reference).expanduser()
        if not source.is_file():
            raise SourceUnavailable(f"Source file does not exist: {source}")
        if source.stat().st_size > self._max_bytes:
            raise SourceUnavailable(f"Document exceeds {self._max_bytes // (1024 * 1024)} MB limit")
        digest = hashlib.sha256()
        size = 0
        destination.parent.mkdir(parents=True, exist_ok=True)
        with source.open("rb") as reader, destination.open("wb") as writer:
            while block := reader.read(READ_CHUNK):
                size += len(block)
                writer.write(block)
                digest.update(block)
        elapsed_ms = (time.perf_counter() - start) * 1000
        return FetchedSource(path=destination, size_bytes=size, sha256=digest.hexdigest(), elapsed_ms=elapsed_ms)


class RoutingFetcher:
    """Selects the HTTP or local fetcher based on the reference."""

    def __init__(self, remote: HttpSourceFetcher, local: LocalSourceFetcher | None = None) -> None:
        self._remote = remote
        self._local = local

    def fetch(self, reference: str, destination: Path) -> FetchedSource:
        if is_remote(reference):
            return self._remote.fetch(reference, destination)
        if self._local is None:
            raise SourceUnavailable(f"Unsupported source reference: {reference}")
        return self._local.fetch(reference, destination)

    def close(self) -> None:
        self._remote.close()


def build_fetcher(runtime: RuntimeConfig) -> RoutingFetcher:
    max_bytes = runtime.max_download_mb * 1024 * 1024
    remote = HttpSourceFetcher(timeout_s=runtime.fetch_timeout_s, max_bytes=max_bytes)
    local = LocalSourceFetcher(max_bytes=max_bytes) if runtime.allow_local_sources else None
    return RoutingFetcher(remote, local)


class PopplerInspector:
    """Reads the page count with Poppler's ``pdfinfo``."""

    def __init__(self, *, timeout_s: float | None = None, poppler_path: str | None = None) -> None:
        self._timeout_s = timeout_s
        self._poppler_path = poppler_path

    def page_count(self, path: Path) -> int:
        try:
            info = pdfinfo_from_path(
                str(path),
                poppler_path=self._poppler_path,
                timeout=self._timeout_s,
            )
        except Exception as exc:
            raise UnresolvableSource(f"Unable to read page count: {exc}") from exc
        try:
            return int(info.get("Pages", 0))
        except (TypeError, ValueError):
            return 0


__all__ = [
    "FetchedSource",
    "HttpSourceFetcher",
    "LocalSourceFetcher",
    "PageCounter",
    "PopplerInspector",
    "RoutingFetcher",
    "SourceFetcher",
    "build_fetcher",
    "is_remote",
]
