"""Deferred deletion of per-request session files.

Each conversion hands its :class:`OutputSession` to the scheduler once the
response is ready. The scheduler keeps one pending entry per session id and a
background thread removes the temp input, the rendered pages and the session
directory once the retention delay has elapsed. Cleanup never raises: missing
files and filesystem errors are reported and logged.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import CleanupConfig
from .errors import CleanupFailed
from .log_utils import logger
from .models import CleanupReport, OutputSession


Clock = Callable[[], float]
CleanupFunction = Callable[[OutputSession], CleanupReport]

SESSION_PREFIX = "session-"


def _remove_file(path: Path, report: CleanupReport) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        report.missing.append(str(path))
        logger.warning(f"Cleanup of {report.session_id}: {path.name} was already removed")
    except OSError as exc:
        failure = CleanupFailed(f"Unable to delete {path}: {exc}")
        report.errors.append(str(failure))
        logger.error(f"Cleanup of {report.session_id} failed: {failure}")
    else:
        report.removed_files += 1


def _remove_dir(path: Path, report: CleanupReport) -> None:
    try:
        path.rmdir()
    except FileNotFoundError:
        report.missing.append(str(path))
    except OSError as exc:
        failure = CleanupFailed(f"Unable to remove directory {path}: {exc}")
        report.errors.append(str(failure))
        logger.error(f"Cleanup of {report.session_id} failed: {failure}")


def _empty_dir(directory: Path, report: CleanupReport) -> None:
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        report.missing.append(str(directory))
        logger.warning(f"Cleanup of {report.session_id}: {directory} was already removed")
        return
    except OSError as exc:
        failure = CleanupFailed(f"Unable to list {directory}: {exc}")
        report.errors.append(str(failure))
        logger.error(f"Cleanup of {report.session_id} failed: {failure}")
        return
    for entry in entries:
        if entry.is_dir() and not entry.is_symlink():
            _empty_dir(entry, report)
            _remove_dir(entry, report)
        else:
            _remove_file(entry, report)


def cleanup_session(session: OutputSession) -> CleanupReport:
    """Delete everything a session owns. Safe to call more than once."""

    report = CleanupReport(session_id=session.session_id)
    if session.temp_input is not None:
        _remove_file(session.temp_input, report)
    _empty_dir(session.output_dir, report)
    if session.output_dir.exists():
        _remove_dir(session.output_dir, report)
    logger.info(
        f"Deleted {report.removed_files} file(s) for {session.session_id}"
        + (f" with {len(report.errors)} error(s)" if report.errors else "")
    )
    return report


@dataclass(slots=True)
class PendingCleanup:
    session: OutputSession
    due_at: float


class CleanupScheduler:
    """Registry of one-shot cleanups keyed by session id."""

    def __init__(
        self,
        config: CleanupConfig,
        *,
        clock: Clock = time.monotonic,
        cleanup: CleanupFunction = cleanup_session,
    ) -> None:
        self._config = config
        self._clock = clock
        self._cleanup = cleanup
        self._pending: dict[str, PendingCleanup] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def schedule(self, session: OutputSession, delay_s: float | None = None) -> float:
        delay = self._config.retention_s if delay_s is None else max(0.0, delay_s)
        due_at = self._clock() + delay
        with self._lock:
            self._pending[session.session_id] = PendingCleanup(session=session, due_at=due_at)
        logger.debug(f"Scheduled cleanup of {session.session_id} in {delay:.0f}s")
        return due_at

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._pending

    def discard(self, session_id: str) -> OutputSession | None:
        """Drop a pending cleanup without running it."""
        with self._lock:
            entry = self._pending.pop(session_id, None)
        return entry.session if entry else None

    def run_due(self) -> list[CleanupReport]:
        now = self._clock()
        with self._lock:
            due = [key for key, entry in self._pending.items() if entry.due_at <= now]
            entries = [self._pending.pop(key) for key in due]
        return [self._execute(entry) for entry in entries]

    def run_now(self, session_id: str) -> CleanupReport | None:
        with self._lock:
            entry = self._pending.pop(session_id, None)
        if entry is None:
            return None
        return self._execute(entry)

    def flush(self) -> list[CleanupReport]:
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        return [self._execute(entry) for entry in entries]

    def _execute(self, entry: PendingCleanup) -> CleanupReport:
        try:
            return self._cleanup(entry.session)
        except Exception as exc:
            logger.exception(f"Cleanup of {entry.session.session_id} raised")
            report = CleanupReport(session_id=entry.session.session_id)
            report.errors.append(str(CleanupFailed(str(exc))))
            return report

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="cleanup-scheduler", daemon=True)
        self._thread.start()

    def stop(self, *, flush: bool = True) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=max(self._config.poll_interval_s * 2, 1.0))
            self._thread = None
        if flush:
            self.flush()

    def _loop(self) -> None:  # pragma: no cover - background thread timing
        while not self._stop_event.wait(self._config.poll_interval_s):
            try:
                self.run_due()
            except Exception:
                logger.exception("Cleanup scheduler tick failed")


def sweep_orphans(
    output_root: Path,
    temp_root: Path,
    *,
    older_than_s: float,
    now: float | None = None,
) -> list[CleanupReport]:
    """Remove session files left behind by a previous process."""

    cutoff = (time.time() if now is None else now) - older_than_s
    reports: list[CleanupReport] = []
    if output_root.exists():
        for run_dir in sorted(output_root.iterdir()):
            if not run_dir.is_dir() or not run_dir.name.startswith(SESSION_PREFIX):
                continue
            if run_dir.stat().st_mtime > cutoff:
                continue
            temp_input = temp_root / f"{run_dir.name}.pdf"
            session = OutputSession(
                session_id=run_dir.name,
                output_dir=run_dir,
                temp_input=temp_input if temp_input.exists() else None,
            )
            reports.append(cleanup_session(session))
    if temp_root.exists():
        for temp_file in sorted(temp_root.glob(f"{SESSION_PREFIX}*.pdf")):
            if temp_file.stat().st_mtime > cutoff:
                continue
            report = CleanupReport(session_id=temp_file.stem)
            _remove_file(temp_file, report)
            reports.append(report)
    return reports


__all__ = [
    "CleanupScheduler",
    "PendingCleanup",
    "cleanup_session",
    "sweep_orphans",
]
