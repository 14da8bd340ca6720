from __future__ import annotations

import hashlib
import os
import re
import time
from datetime import datetime, timezone


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
INTEGER_TOKEN_RE = re.compile(r"\d+")


def generate_run_id(prefix: str = "session") -> str:
    epoch_ms = int(time.time() * 1000)
    random_bits = hashlib.sha256(os.urandom(16)).hexdigest()[:16]
    return f"{prefix}-{epoch_ms}-{random_bits}"


def first_integer(value: str) -> int | None:
    match = INTEGER_TOKEN_RE.search(value)
    if match is None:
        return None
    return int(match.group())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)
