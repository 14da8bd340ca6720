from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path

from .collector import collect_artifacts, verify_artifacts
from .config import AppConfig
from .dispatcher import DispatchResult, RenderDispatcher
from .errors import (
    ChunkFailure,
    ConversionError,
    ConversionFailed,
    InvalidRange,
    MissingSource,
    ServiceBusy,
    UnresolvableSource,
)
from .lifecycle import CleanupScheduler
from .log_utils import logger
from .logging import RunLogEntry, RunLogger, StageTimings
from .models import Chunk, ConversionRequest, ConversionResult, OutputSession
from .planner import plan_chunks
from .sources import FetchedSource, PageCounter, PopplerInspector, SourceFetcher, build_fetcher
from .utils import generate_run_id, iso, utc_now
from .worker import choose_scale


class ConversionStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    SOURCE_RESOLVED = "source_resolved"
    PLANNED = "planned"
    DISPATCHED = "dispatched"
    COLLECTED = "collected"
    RESPONDED = "responded"
    CLEANUP_SCHEDULED = "cleanup_scheduled"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class _ResolvedSource:
    source: FetchedSource
    total_pages: int
    first_page: int
    last_page: int

    @property
    def pages(self) -> range:
        return range(self.first_page, self.last_page + 1)


@dataclass(slots=True)
class _ConversionContext:
    request: ConversionRequest
    stage: ConversionStage = ConversionStage.RECEIVED
    session: OutputSession | None = None
    timings: StageTimings = field(default_factory=StageTimings)
    resolved: _ResolvedSource | None = None
    chunks: list[Chunk] = field(default_factory=list)
    page_count: int = 0

    @property
    def label(self) -> str:
        return self.session.session_id if self.session else "request"


class ConversionService:
    def __init__(
        self,
        config: AppConfig,
        *,
        scheduler: CleanupScheduler,
        fetcher: SourceFetcher | None = None,
        inspector: PageCounter | None = None,
        dispatcher: RenderDispatcher | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        runtime = config.runtime
        if runtime.max_inflight_requests < 1:
            raise ValueError("max_inflight_requests must be >= 1")
        self._config = config
        self._scheduler = scheduler
        self._fetcher = fetcher or build_fetcher(runtime)
        self._inspector = inspector or PopplerInspector(
            timeout_s=runtime.render.render_timeout_s,
            poppler_path=runtime.render.poppler_path,
        )
        self._dispatcher = dispatcher or RenderDispatcher(runtime.render)
        self._run_logger = run_logger or RunLogger(runtime.run_log_path)
        self._admission = threading.BoundedSemaphore(runtime.max_inflight_requests)

    @property
    def scheduler(self) -> CleanupScheduler:
        return self._scheduler

    def convert(self, request: ConversionRequest, *, base_url: str = "") -> ConversionResult:
        context = _ConversionContext(request=request)
        logger.info(f"Received request for {request.source!r}")
        try:
            self._validate(request)
        except ConversionError as exc:
            self._fail(context, exc.code, str(exc))
            raise
        context.stage = ConversionStage.VALIDATED

        if not self._admission.acquire(timeout=self._config.runtime.admission_timeout_s):
            busy = ServiceBusy("Too many conversions in flight; retry later")
            self._fail(context, busy.code, str(busy))
            raise busy
        try:
            return self._convert_admitted(context, base_url)
        finally:
            self._admission.release()

    def _validate(self, request: ConversionRequest) -> None:
        if not request.source or not request.source.strip():
            raise MissingSource("PDF URL is required")
        first, last = request.first_page, request.last_page
        if first is not None and first < 1:
            raise InvalidRange(f"First page must be >= 1, got {first}")
        if last is not None and last < 1:
            raise InvalidRange(f"Last page must be >= 1, got {last}")
        if first is not None and last is not None and last < first:
            raise InvalidRange(f"Last page {last} precedes first page {first}")

    def _temp_input(self, session_id: str) -> Path:
        return self._config.runtime.temp_dir / f"{session_id}.pdf"

    def _open_session(self) -> OutputSession:
        runtime = self._config.runtime
        session_id = generate_run_id("session")
        output_dir = runtime.output_dir / session_id
        output_dir.mkdir(parents=True, exist_ok=False)
        runtime.temp_dir.mkdir(parents=True, exist_ok=True)
        return OutputSession(
            session_id=session_id,
            output_dir=output_dir,
            temp_input=self._temp_input(session_id),
        )

    def _convert_admitted(self, context: _ConversionContext, base_url: str) -> ConversionResult:
        start = time.perf_counter()
        try:
            session = self._open_session()
            context.session = session
            result = self._run(context, session, base_url)
        except ConversionError as exc:
            self._fail(context, exc.code, str(exc))
            raise
        except Exception as exc:
            logger.exception(f"Unexpected failure converting {context.label}")
            self._fail(context, "INTERNAL_ERROR", str(exc))
            raise

        context.stage = ConversionStage.RESPONDED
        self._append_run_log(context, "success", None)
        self._scheduler.schedule(session, self._config.runtime.cleanup.retention_s)
        context.stage = ConversionStage.CLEANUP_SCHEDULED
        logger.info(
            f"Converted {context.page_count} page(s) for {session.session_id} "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return result

    def _fail(self, context: _ConversionContext, code: str, message: str) -> None:
        failed_at = context.stage
        context.stage = ConversionStage.FAILED
        logger.error(f"Conversion {context.label} failed after {failed_at.value}: {code} {message}")
        self._append_run_log(context, "failure", code)
        if context.session is not None:
            self._scheduler.schedule(context.session, self._config.runtime.cleanup.failure_retention_s)

    def _run(self, context: _ConversionContext, session: OutputSession, base_url: str) -> ConversionResult:
        resolved = self._resolve_source(context, session)
        scale = self._plan(context, resolved)
        dispatch = self._dispatch(context, session, resolved, scale)
        return self._collect(context, session, resolved, dispatch, scale, base_url)

    def _resolve_source(self, context: _ConversionContext, session: OutputSession) -> _ResolvedSource:
        request = context.request
        source = self._fetcher.fetch(str(request.source), self._temp_input(session.session_id))
        context.timings.fetch_ms = source.elapsed_ms

        total = request.total_pages if request.total_pages and request.total_pages > 0 else None
        if total is None:
            inspect_start = time.perf_counter()
            total = self._inspector.page_count(source.path)
            context.timings.inspect_ms = (time.perf_counter() - inspect_start) * 1000
            logger.info(f"Total pages: {total}")
        if total < 1:
            raise UnresolvableSource("Unable to determine the page count of the document")

        first = request.first_page or 1
        last = request.last_page or total
        if last > total:
            raise InvalidRange(f"Last page {last} exceeds document page count {total}")
        if first > last:
            raise InvalidRange(f"First page {first} is beyond last page {last}")
        context.resolved = _ResolvedSource(source=source, total_pages=total, first_page=first, last_page=last)
        context.stage = ConversionStage.SOURCE_RESOLVED
        return context.resolved

    def _plan(self, context: _ConversionContext, resolved: _ResolvedSource) -> int:
        render = self._config.runtime.render
        context.chunks = plan_chunks(resolved.first_page, resolved.last_page, render.chunk_size)
        context.stage = ConversionStage.PLANNED
        return choose_scale(render, resolved.total_pages, context.request.scale_hint)

    def _dispatch(
        self,
        context: _ConversionContext,
        session: OutputSession,
        resolved: _ResolvedSource,
        scale: int,
    ) -> DispatchResult:
        result = self._dispatcher.dispatch(context.chunks, resolved.source.path, session.output_dir, scale)
        context.timings.render_ms = result.elapsed_ms
        context.stage = ConversionStage.DISPATCHED
        if result.failures:
            by_index = {chunk.index: chunk for chunk in context.chunks}
            failures = [
                ChunkFailure(
                    chunk_index=failure.chunk_index,
                    first_page=by_index[failure.chunk_index].first_page,
                    last_page=by_index[failure.chunk_index].last_page,
                    reason=failure.reason,
                )
                for failure in result.failures
            ]
            summary = "; ".join(failure.describe() for failure in failures)
            raise ConversionFailed(
                f"{len(failures)} of {len(context.chunks)} chunk(s) failed to render: {summary}",
                failures,
            )
        return result

    def _collect(
        self,
        context: _ConversionContext,
        session: OutputSession,
        resolved: _ResolvedSource,
        dispatch: DispatchResult,
        scale: int,
        base_url: str,
    ) -> ConversionResult:
        runtime = self._config.runtime
        collect_start = time.perf_counter()
        artifacts = collect_artifacts(
            session.output_dir,
            session.session_id,
            base_url=base_url,
            public_prefix=runtime.public_prefix,
        )
        verify_artifacts(artifacts, resolved.pages, dispatch.files)
        context.timings.collect_ms = (time.perf_counter() - collect_start) * 1000
        context.page_count = len(artifacts)
        context.stage = ConversionStage.COLLECTED

        expires_at = utc_now() + timedelta(seconds=runtime.cleanup.retention_s)
        metadata: dict[str, object] = {
            "sessionId": session.session_id,
            "totalPages": resolved.total_pages,
            "firstPage": resolved.first_page,
            "lastPage": resolved.last_page,
            "pageCount": len(artifacts),
            "chunkCount": len(context.chunks),
            "scalePageTo": scale,
            "expiresAt": iso(expires_at),
            "source": {
                "sha256": resolved.source.sha256,
                "sizeBytes": resolved.source.size_bytes,
            },
            "timings": {
                "fetchMs": round(context.timings.fetch_ms, 1),
                "inspectMs": round(context.timings.inspect_ms, 1),
                "renderMs": round(context.timings.render_ms, 1),
                "collectMs": round(context.timings.collect_ms, 1),
            },
        }
        return ConversionResult(
            session_id=session.session_id,
            links=[artifact.location for artifact in artifacts],
            artifacts=artifacts,
            metadata=metadata,
        )

    def _append_run_log(self, context: _ConversionContext, status: str, error_code: str | None) -> None:
        request, resolved = context.request, context.resolved
        # requests rejected before admission have no session
        try:
            self._run_logger.append(
                RunLogEntry(
                    session_id=context.session.session_id if context.session else "",
                    source=str(request.source),
                    status=status,
                    error_code=error_code,
                    first_page=resolved.first_page if resolved else request.first_page,
                    last_page=resolved.last_page if resolved else request.last_page,
                    total_pages=resolved.total_pages if resolved else request.total_pages,
                    chunk_count=len(context.chunks),
                    page_count=context.page_count,
                    timings=context.timings,
                )
            )
        except OSError as exc:
            logger.error(f"Unable to append run log {self._run_logger.path}: {exc}")

    def close(self) -> None:
        close = getattr(self._fetcher, "close", None)
        if callable(close):
            close()


__all__ = [
    "ConversionService",
    "ConversionStage",
    "ConversionError",
]
