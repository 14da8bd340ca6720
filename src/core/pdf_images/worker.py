"""Render worker executed inside an isolated process.

``render_chunk`` is the unit of work handed to the dispatcher's process pool. It
must stay a module-level function taking plain arguments so it can be pickled
into a spawned interpreter. Poppler writes each page into a per-chunk staging
folder with a ``-<page>`` suffix; pages are then moved into the session output
directory under ``page-<page>.png`` so the page ordinal is the first number in
every artifact name.
"""

from __future__ import annotations

import os
import re
import shutil
from pathlib import Path

from pdf2image import convert_from_path

from .config import RenderConfig
from .models import Failure, Success, WorkerOutcome


ARTIFACT_TEMPLATE = "page-{page:05d}.png"
PAGE_SUFFIX_RE = re.compile(r"-(\d+)$")


def artifact_name(page: int) -> str:
    return ARTIFACT_TEMPLATE.format(page=page)


def staging_dir(output_dir: Path, chunk_index: int) -> Path:
    return output_dir / f".chunk-{chunk_index:04d}"


def choose_scale(config: RenderConfig, total_pages: int, scale_hint: int | None = None) -> int:
    """Return the long-edge pixel size for a document of ``total_pages`` pages.

    An explicit hint wins. Otherwise large documents drop one tier below the
    configured default.
    """

    if scale_hint is not None and scale_hint > 0:
        return scale_hint
    scale = config.scale_page_to
    if total_pages <= config.large_document_threshold:
        return scale
    lower = sorted((tier for tier in config.scale_tiers if tier < scale), reverse=True)
    return lower[0] if lower else scale


def _publish(staged: list[str], output_dir: Path, first_page: int, last_page: int) -> list[str]:
    published: dict[int, str] = {}
    for raw in staged:
        path = Path(raw)
        match = PAGE_SUFFIX_RE.search(path.stem)
        if match is None:
            raise ValueError(f"Unexpected renderer output name: {path.name}")
        page = int(match.group(1))
        if not first_page <= page <= last_page or page in published:
            raise ValueError(f"Renderer produced unexpected page {page} ({path.name})")
        name = artifact_name(page)
        os.replace(path, output_dir / name)
        published[page] = name
    return [published[page] for page in sorted(published)]


def render_chunk(
    input_path: str,
    chunk_index: int,
    first_page: int,
    last_page: int,
    output_dir: str,
    scale: int,
    timeout_s: float | None = None,
    poppler_path: str | None = None,
    use_pdftocairo: bool = True,
) -> WorkerOutcome:
    output = Path(output_dir)
    staging = staging_dir(output, chunk_index)
    try:
        staging.mkdir(parents=True, exist_ok=True)
        convert_from_path(
            input_path,
            first_page=first_page,
            last_page=last_page,
            output_folder=str(staging),
            fmt="png",
            paths_only=True,
            size=scale,
            thread_count=1,
            use_pdftocairo=use_pdftocairo,
            timeout=timeout_s,
            poppler_path=poppler_path,
        )
        staged = sorted(str(path) for path in staging.iterdir() if path.suffix == ".png")
        files = _publish(staged, output, first_page, last_page)
    except Exception as exc:  # worker boundary: every engine error becomes a Failure
        return Failure(chunk_index=chunk_index, reason=f"{type(exc).__name__}: {exc}")
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    expected = last_page - first_page + 1
    if len(files) != expected:
        return Failure(
            chunk_index=chunk_index,
            reason=f"rendered {len(files)} of {expected} pages ({first_page}-{last_page})",
        )
    return Success(chunk_index=chunk_index, files=tuple(files))


__all__ = ["artifact_name", "choose_scale", "render_chunk", "staging_dir"]
