import hashlib
from pathlib import Path

import httpx
import pytest

from core.pdf_images import sources
from core.pdf_images.errors import SourceUnavailable, UnresolvableSource
from core.pdf_images.sources import (
    HttpSourceFetcher,
    LocalSourceFetcher,
    PopplerInspector,
    RoutingFetcher,
    is_remote,
)


PAYLOAD = b"%PDF-1.7\n" + b"0" * 4096


def build_http(handler, max_bytes: int = 1024 * 1024) -> HttpSourceFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpSourceFetcher(timeout_s=5, max_bytes=max_bytes, client=client)


def test_http_fetch_streams_to_destination(tmp_path: Path) -> None:
    fetcher = build_http(lambda request: httpx.Response(200, content=PAYLOAD))
    destination = tmp_path / "tmp" / "session-1.pdf"

    fetched = fetcher.fetch("https://example.com/doc.pdf", destination)

    assert destination.read_bytes() == PAYLOAD
    assert fetched.size_bytes == len(PAYLOAD)
    assert fetched.sha256 == hashlib.sha256(PAYLOAD).hexdigest()


def test_http_error_status_is_unavailable(tmp_path: Path) -> None:
    fetcher = build_http(lambda request: httpx.Response(404))

    with pytest.raises(SourceUnavailable, match="HTTP 404"):
        fetcher.fetch("https://example.com/missing.pdf", tmp_path / "doc.pdf")


def test_http_transport_error_is_unavailable(tmp_path: Path) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SourceUnavailable):
        build_http(refuse).fetch("https://example.com/doc.pdf", tmp_path / "doc.pdf")


def test_http_fetch_enforces_size_limit(tmp_path: Path) -> None:
    fetcher = build_http(lambda request: httpx.Response(200, content=PAYLOAD), max_bytes=1024)

    with pytest.raises(SourceUnavailable, match="limit"):
        fetcher.fetch("https://example.com/doc.pdf", tmp_path / "doc.pdf")


def test_local_fetch_copies_file(tmp_path: Path) -> None:
    source = tmp_path / "input.pdf"
    source.write_bytes(PAYLOAD)

    fetched = LocalSourceFetcher(max_bytes=1024 * 1024).fetch(source.as_uri(), tmp_path / "copy.pdf")

    assert fetched.path.read_bytes() == PAYLOAD


def test_router_rejects_local_paths_when_disabled(tmp_path: Path) -> None:
    fetcher = RoutingFetcher(build_http(lambda request: httpx.Response(200, content=PAYLOAD)))

    with pytest.raises(SourceUnavailable, match="Unsupported"):
        fetcher.fetch("/etc/passwd", tmp_path / "doc.pdf")


def test_is_remote() -> None:
    assert is_remote("https://example.com/a.pdf")
    assert is_remote("HTTP://example.com/a.pdf")
    assert not is_remote("file:///tmp/a.pdf")
    assert not is_remote("a.pdf")


def test_inspector_reads_pages(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sources, "pdfinfo_from_path", lambda path, **kwargs: {"Pages": 7})
    assert PopplerInspector().page_count(tmp_path / "doc.pdf") == 7


def test_inspector_treats_missing_count_as_zero(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sources, "pdfinfo_from_path", lambda path, **kwargs: {"Title": "x"})
    assert PopplerInspector().page_count(tmp_path / "doc.pdf") == 0


def test_inspector_failure_is_unresolvable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(path, **kwargs):
        raise ValueError("Syntax Error: Couldn't find trailer dictionary")

    monkeypatch.setattr(sources, "pdfinfo_from_path", broken)
    with pytest.raises(UnresolvableSource):
        PopplerInspector().page_count(tmp_path / "doc.pdf")
