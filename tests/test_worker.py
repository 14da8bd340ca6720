from pathlib import Path
from typing import Any

import pytest
from pdf2image.exceptions import PDFPageCountError

from core.pdf_images import worker
from core.pdf_images.config import RenderConfig
from core.pdf_images.models import Failure, Success
from core.pdf_images.worker import artifact_name, choose_scale, render_chunk, staging_dir


class FakePoppler:
    """Writes files named the way pdftocairo does: ``<uuid>-<page>.png``."""

    def __init__(self, skip: set[int] | None = None, error: Exception | None = None) -> None:
        self.skip = skip or set()
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def __call__(self, pdf_path: str, **kwargs: Any) -> list[str]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        folder = Path(kwargs["output_folder"])
        written = []
        for page in range(kwargs["first_page"], kwargs["last_page"] + 1):
            if page in self.skip:
                continue
            target = folder / f"3f2a9c0001-{page:02d}.png"
            target.write_bytes(b"\x89PNG")
            written.append(str(target))
        return written


def test_render_chunk_publishes_pages_by_ordinal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    poppler = FakePoppler()
    monkeypatch.setattr(worker, "convert_from_path", poppler)

    outcome = render_chunk("doc.pdf", 1, 21, 25, str(tmp_path), 1024, timeout_s=30)

    assert isinstance(outcome, Success)
    assert outcome.chunk_index == 1
    assert outcome.files == tuple(artifact_name(page) for page in range(21, 26))
    assert sorted(path.name for path in tmp_path.iterdir()) == list(outcome.files)
    assert not staging_dir(tmp_path, 1).exists()
    call = poppler.calls[0]
    assert call["size"] == 1024
    assert call["fmt"] == "png"
    assert call["timeout"] == 30
    assert call["thread_count"] == 1


def test_render_chunk_converts_engine_error_into_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(worker, "convert_from_path", FakePoppler(error=PDFPageCountError("bad xref")))

    outcome = render_chunk("doc.pdf", 2, 41, 45, str(tmp_path), 1536)

    assert isinstance(outcome, Failure)
    assert outcome.chunk_index == 2
    assert "PDFPageCountError" in outcome.reason
    assert list(tmp_path.iterdir()) == []


def test_render_chunk_reports_missing_pages(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(worker, "convert_from_path", FakePoppler(skip={3}))

    outcome = render_chunk("doc.pdf", 0, 1, 4, str(tmp_path), 1536)

    assert isinstance(outcome, Failure)
    assert "rendered 3 of 4 pages" in outcome.reason
    assert not staging_dir(tmp_path, 0).exists()


def test_artifact_name_orders_lexically() -> None:
    names = [artifact_name(page) for page in (2, 10, 100)]
    assert names == sorted(names)
    assert artifact_name(7) == "page-00007.png"


def test_choose_scale_uses_default_for_small_documents() -> None:
    assert choose_scale(RenderConfig(), 45) == 1536


def test_choose_scale_drops_a_tier_for_large_documents() -> None:
    assert choose_scale(RenderConfig(), 500) == 1024


def test_choose_scale_prefers_explicit_hint() -> None:
    assert choose_scale(RenderConfig(), 500, 2048) == 2048


def test_choose_scale_keeps_lowest_tier() -> None:
    config = RenderConfig(scale_page_to=768)
    assert choose_scale(config, 1000) == 768
