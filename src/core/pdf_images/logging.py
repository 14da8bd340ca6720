from __future__ import annotations

import json
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class StageTimings:
    fetch_ms: float = 0.0
    inspect_ms: float = 0.0
    render_ms: float = 0.0
    collect_ms: float = 0.0


@dataclass(slots=True)
class RunLogEntry:
    session_id: str
    source: str
    status: str
    error_code: str | None
    first_page: int | None
    last_page: int | None
    total_pages: int | None
    chunk_count: int
    page_count: int
    timings: StageTimings
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timings"] = asdict(self.timings)
        return payload


class RunLogger:
    """Appends one JSON line per conversion request."""

    def __init__(self, log_file: Path) -> None:
        self._log_file = log_file
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_file

    def append(self, entry: RunLogEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with self._log_file.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
