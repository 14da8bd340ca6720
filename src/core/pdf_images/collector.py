from __future__ import annotations

import os
from collections import Counter
from operator import attrgetter
from pathlib import Path
from typing import Iterable
from urllib.parse import quote

from .errors import ConversionFailed, NoArtifacts
from .log_utils import logger
from .models import Artifact
from .utils import first_integer


def build_location(base_url: str, public_prefix: str, session_id: str, filename: str) -> str:
    prefix = public_prefix.strip("/")
    path = f"/{prefix}" if prefix else ""
    path += f"/{quote(session_id)}/{quote(filename)}"
    return f"{base_url.rstrip('/')}{path}"


def _list_entries(output_dir: Path) -> list[str]:
    try:
        with os.scandir(output_dir) as entries:
            return [
                entry.name
                for entry in entries
                if entry.is_file() and not entry.name.startswith(".")
            ]
    except FileNotFoundError as exc:
        raise NoArtifacts(f"Output directory is missing: {output_dir.name}") from exc


def collect_artifacts(
    output_dir: Path,
    session_id: str,
    *,
    base_url: str = "",
    public_prefix: str = "/images",
) -> list[Artifact]:
    """List rendered files and order them by the page number embedded in each name.

    The sort is stable, so two names claiming the same ordinal keep the order in
    which the directory listed them.
    """

    artifacts: list[Artifact] = []
    for name in _list_entries(output_dir):
        ordinal = first_integer(name)
        if ordinal is None:
            logger.warning(f"Ignoring {name} in {session_id}: no page number in filename")
            continue
        artifacts.append(
            Artifact(
                page_ordinal=ordinal,
                filename=name,
                location=build_location(base_url, public_prefix, session_id, name),
            )
        )
    if not artifacts:
        raise NoArtifacts(f"No rendered pages found for {session_id}")
    artifacts.sort(key=attrgetter("page_ordinal"))
    return artifacts


def verify_artifacts(
    artifacts: Iterable[Artifact],
    expected_pages: range,
    reported_files: Iterable[str] = (),
) -> None:
    collected = list(artifacts)
    counts = Counter(artifact.page_ordinal for artifact in collected)
    expected = set(expected_pages)
    problems: list[str] = []

    duplicates = sorted(ordinal for ordinal, count in counts.items() if count > 1)
    if duplicates:
        problems.append(f"duplicate pages {duplicates}")
    missing = sorted(expected - counts.keys())
    if missing:
        problems.append(f"missing pages {missing}")
    unexpected = sorted(counts.keys() - expected)
    if unexpected:
        problems.append(f"unexpected pages {unexpected}")
    unlisted = sorted(set(reported_files) - {artifact.filename for artifact in collected})
    if unlisted:
        problems.append(f"reported files not found {unlisted}")

    if problems:
        raise ConversionFailed("artifact verification failed: " + "; ".join(problems))


__all__ = ["build_location", "collect_artifacts", "verify_artifacts"]
