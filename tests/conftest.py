from __future__ import annotations

import hashlib
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from core.pdf_images.config import AppConfig, CleanupConfig, RenderConfig, RuntimeConfig
from core.pdf_images.core import ConversionService
from core.pdf_images.dispatcher import RenderDispatcher
from core.pdf_images.lifecycle import CleanupScheduler
from core.pdf_images.models import Failure, Success
from core.pdf_images.sources import FetchedSource
from core.pdf_images.worker import artifact_name


PDF_BYTES = b"%PDF-1.4\n% fake document\n"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    def __init__(self, payload: bytes = PDF_BYTES) -> None:
        self.payload = payload
        self.calls: list[str] = []

    def fetch(self, reference: str, destination: Path) -> FetchedSource:
        self.calls.append(reference)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payload)
        return FetchedSource(
            path=destination,
            size_bytes=len(self.payload),
            sha256=hashlib.sha256(self.payload).hexdigest(),
        )


class FakeInspector:
    def __init__(self, pages: int) -> None:
        self.pages = pages
        self.calls = 0

    def page_count(self, path: Path) -> int:
        self.calls += 1
        return self.pages


class RecordingRenderer:
    """Thread-safe stand-in for the process worker that writes empty PNG files."""

    def __init__(self, fail_chunks: set[int] | None = None) -> None:
        self.fail_chunks = fail_chunks or set()
        self.calls: list[tuple[int, int, int, int]] = []
        self._lock = threading.Lock()

    def __call__(
        self,
        input_path: str,
        chunk_index: int,
        first_page: int,
        last_page: int,
        output_dir: str,
        scale: int,
        timeout_s: float | None = None,
        poppler_path: str | None = None,
        use_pdftocairo: bool = True,
    ) -> Success | Failure:
        with self._lock:
            self.calls.append((chunk_index, first_page, last_page, scale))
        if chunk_index in self.fail_chunks:
            return Failure(chunk_index=chunk_index, reason="PDFSyntaxError: corrupt page")
        names = []
        for page in range(first_page, last_page + 1):
            name = artifact_name(page)
            (Path(output_dir) / name).write_bytes(b"\x89PNG")
            names.append(name)
        return Success(chunk_index=chunk_index, files=tuple(names))


def thread_executor_factory(max_workers: int) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="render-test")


def build_config(tmp_path: Path, **render_overrides: object) -> AppConfig:
    render = RenderConfig(**render_overrides)  # type: ignore[arg-type]
    runtime = RuntimeConfig(
        output_dir=tmp_path / "output",
        temp_dir=tmp_path / "tmp",
        log_dir=tmp_path / "logs",
        render=render,
        cleanup=CleanupConfig(retention_s=600.0, failure_retention_s=0.0, poll_interval_s=0.01),
    )
    return AppConfig(runtime=runtime)


def build_service(
    config: AppConfig,
    *,
    renderer: RecordingRenderer,
    pages: int = 45,
    clock: FakeClock | None = None,
    fetcher: FakeFetcher | None = None,
    inspector: FakeInspector | None = None,
) -> ConversionService:
    scheduler = CleanupScheduler(config.runtime.cleanup, clock=clock or FakeClock())
    dispatcher = RenderDispatcher(
        config.runtime.render,
        executor_factory=thread_executor_factory,
        render=renderer,
    )
    return ConversionService(
        config,
        scheduler=scheduler,
        fetcher=fetcher or FakeFetcher(),
        inspector=inspector or FakeInspector(pages),
        dispatcher=dispatcher,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
