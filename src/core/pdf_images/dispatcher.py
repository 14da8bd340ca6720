from __future__ import annotations

import time
from concurrent.futures import (
    ALL_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass
from multiprocessing import get_context
from pathlib import Path
from typing import Callable, Sequence

from .config import RenderConfig
from .log_utils import logger
from .models import Chunk, Failure, Success, WorkerOutcome
from .worker import render_chunk


ExecutorFactory = Callable[[int], Executor]
RenderFunction = Callable[..., WorkerOutcome]


def process_pool_factory(max_workers: int) -> Executor:
    # spawn avoids fork-related deadlocks with the server's threads
    return ProcessPoolExecutor(max_workers=max_workers, mp_context=get_context("spawn"))


@dataclass(slots=True)
class DispatchResult:
    outcomes: list[WorkerOutcome]
    elapsed_ms: float = 0.0

    @property
    def failures(self) -> list[Failure]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Failure)]

    @property
    def succeeded(self) -> list[Success]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Success)]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def files(self) -> list[str]:
        names: list[str] = []
        for outcome in self.succeeded:
            names.extend(outcome.files)
        return names


class RenderDispatcher:
    """Fans chunks out to isolated render workers and joins on all of them.

    Every chunk gets its own single-process executor. A worker that dies takes
    down only its own pool, so siblings finish and only the crashed chunk is
    reported. A thread pool sized by ``worker_count`` bounds how many worker
    processes run at once.
    """

    def __init__(
        self,
        config: RenderConfig,
        *,
        executor_factory: ExecutorFactory | None = None,
        render: RenderFunction = render_chunk,
    ) -> None:
        if config.max_workers_per_request < 1:
            raise ValueError("max_workers_per_request must be >= 1")
        self._config = config
        self._executor_factory = executor_factory or process_pool_factory
        self._render = render

    def worker_count(self, chunk_total: int) -> int:
        return max(1, min(self._config.max_workers_per_request, chunk_total))

    def dispatch(
        self,
        chunks: Sequence[Chunk],
        input_path: Path,
        output_dir: Path,
        scale: int,
    ) -> DispatchResult:
        if not chunks:
            return DispatchResult(outcomes=[])
        start = time.perf_counter()
        workers = self.worker_count(len(chunks))
        logger.debug(f"Dispatching {len(chunks)} chunk(s) to {workers} worker(s) for {output_dir.name}")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render-dispatch") as pool:
            futures: dict[Future[WorkerOutcome], Chunk] = {
                pool.submit(self._run_isolated, chunk, str(input_path), str(output_dir), scale): chunk
                for chunk in chunks
            }
            wait(futures, return_when=ALL_COMPLETED)
        outcomes = [self._outcome(future, chunk) for future, chunk in futures.items()]
        outcomes.sort(key=lambda outcome: outcome.chunk_index)
        elapsed_ms = (time.perf_counter() - start) * 1000
        return DispatchResult(outcomes=outcomes, elapsed_ms=elapsed_ms)

    def _run_isolated(self, chunk: Chunk, input_path: str, output_dir: str, scale: int) -> WorkerOutcome:
        with self._executor_factory(1) as executor:
            future = executor.submit(
                self._render,
                input_path,
                chunk.index,
                chunk.first_page,
                chunk.last_page,
                output_dir,
                scale,
                self._config.render_timeout_s,
                self._config.poppler_path,
                self._config.use_pdftocairo,
            )
            return future.result()

    def _outcome(self, future: Future[WorkerOutcome], chunk: Chunk) -> WorkerOutcome:
        try:
            outcome = future.result()
        except Exception as exc:
            # BrokenProcessPool and pickling errors surface here instead of from the worker
            logger.error(
                f"Render worker for pages {chunk.first_page}-{chunk.last_page} crashed: {exc!r}"
            )
            return Failure(chunk_index=chunk.index, reason=f"{type(exc).__name__}: {exc}")
        if outcome.chunk_index != chunk.index:
            return Failure(
                chunk_index=chunk.index,
                reason=f"worker reported chunk {outcome.chunk_index} for chunk {chunk.index}",
            )
        if isinstance(outcome, Failure):
            logger.warning(
                f"Failed to convert pages {chunk.first_page} to {chunk.last_page}: {outcome.reason}"
            )
        else:
            logger.info(
                f"Converted pages {chunk.first_page} to {chunk.last_page} "
                f"({outcome.produced_file_count} file(s))"
            )
        return outcome


__all__ = ["DispatchResult", "ExecutorFactory", "RenderDispatcher", "process_pool_factory"]
