from pathlib import Path

from fastapi.testclient import TestClient

from api.app import create_app
from core.pdf_images.sources import FetchedSource

from conftest import FakeClock, FakeFetcher, RecordingRenderer, build_config, build_service


SOURCE = "https://example.com/report.pdf"


def build_client(tmp_path: Path, **kwargs) -> tuple[TestClient, object]:
    config = build_config(tmp_path)
    service = build_service(config, clock=FakeClock(), **kwargs)
    return TestClient(create_app(config, service=service)), service


def test_health(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer())
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["pendingCleanups"] == 0
    assert body["cleanupRunning"] is False


def test_convert_returns_ordered_links(tmp_path: Path) -> None:
    client, service = build_client(tmp_path, renderer=RecordingRenderer(), pages=25)

    response = client.post("/convert", json={"pdfUrl": SOURCE, "firstPage": 3, "lastPage": 24})

    assert response.status_code == 200
    body = response.json()
    assert len(body["links"]) == 22
    assert body["links"][0].startswith("http://testserver/images/session-")
    assert body["links"][0].endswith("page-00003.png")
    assert body["metadata"]["chunkCount"] == 2
    assert body["metadata"]["sessionId"] in service.scheduler


def test_rendered_pages_are_served(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer(), pages=1)

    link = client.post("/convert", json={"pdfUrl": SOURCE}).json()["links"][0]
    response = client.get(link)

    assert response.status_code == 200
    assert response.content == b"\x89PNG"


def test_missing_url_is_bad_request(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer())

    response = client.post("/convert", json={"firstPage": 1})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MISSING_SOURCE"


def test_invalid_range_is_bad_request(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer())

    response = client.post("/convert", json={"pdfUrl": SOURCE, "lastPage": 0})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_RANGE"


def test_unresolvable_page_count(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer(), pages=0)

    response = client.post("/convert", json={"pdfUrl": SOURCE})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "UNRESOLVABLE_SOURCE"


def test_chunk_failure_is_server_error(tmp_path: Path) -> None:
    client, service = build_client(tmp_path, renderer=RecordingRenderer(fail_chunks={0}), pages=5)

    response = client.post("/convert", json={"pdfUrl": SOURCE})

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "CONVERSION_FAILED"
    assert len(service.scheduler) == 1


def test_unexpected_error_is_reported_generically(tmp_path: Path) -> None:
    class BrokenFetcher(FakeFetcher):
        def fetch(self, reference: str, destination: Path) -> FetchedSource:
            raise RuntimeError("disk on fire")

    client, _ = build_client(tmp_path, renderer=RecordingRenderer(), fetcher=BrokenFetcher())

    response = client.post("/convert", json={"pdfUrl": SOURCE})

    assert response.status_code == 500
    assert response.json()["detail"] == {
        "code": "INTERNAL_ERROR",
        "message": "An error occurred while processing the PDF",
    }


def test_scale_hint_is_validated(tmp_path: Path) -> None:
    client, _ = build_client(tmp_path, renderer=RecordingRenderer())

    response = client.post("/convert", json={"pdfUrl": SOURCE, "scalePageTo": 4})

    assert response.status_code == 422
