import base64
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader

import app as web_app

from conftest import AMAZON_LINE


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client(upload_dir):
    cfg = {
        "storage": {"upload_dir": str(upload_dir)},
        "report": {"skip_leading_pages": 2, "fee_labels": ["Manipulationsentgelt"]},
    }
    return TestClient(web_app.create_app(cfg))


def pdf_file(name: str, data: bytes):
    return (name, data, "application/pdf")


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


def test_analyze_returns_report(client, statement_pdf, upload_dir):
    res = client.post("/api/analyze", files={"main": pdf_file("statement.pdf", statement_pdf)})

    assert res.status_code == 200
    body = res.json()
    assert body["detectedPages"] == 3
    assert body["reportedPages"] == 1
    [page] = body["pages"]
    assert page["page"] == 3
    assert page["name"] == "Max Mustermann"
    [entry] = page["entries"]
    assert entry["raw"] == AMAZON_LINE
    assert entry["amountValue"] == 125.0
    assert list(upload_dir.iterdir()) == []


def test_analyze_requires_main(client):
    res = client.post("/api/analyze")
    assert res.status_code == 400
    assert "main" in res.json()["error"]


def test_analyze_unreadable_pdf(client, upload_dir):
    res = client.post("/api/analyze", files={"main": pdf_file("statement.pdf", b"kein pdf")})
    assert res.status_code == 500
    assert "could not extract text" in res.json()["error"]
    assert list(upload_dir.iterdir()) == []


def test_combine_with_matching_receipt(client, statement_pdf, receipt_pdf, unrelated_pdf, upload_dir):
    res = client.post(
        "/api/combine",
        files=[
            ("main", pdf_file("statement.pdf", statement_pdf)),
            ("receipt", pdf_file("tanken.pdf", unrelated_pdf)),
            ("receipt", pdf_file("amazon.pdf", receipt_pdf)),
        ],
    )

    assert res.status_code == 200
    body = res.json()
    assert body["missingPlaceholders"] == []
    merged = PdfReader(BytesIO(base64.b64decode(body["pdf"])))
    assert len(merged.pages) == 4
    assert "Gesamtbetrag" in merged.pages[3].extract_text()
    assert list(upload_dir.iterdir()) == []


def test_combine_without_receipts_returns_placeholder(client, statement_pdf):
    res = client.post("/api/combine", files=[("main", pdf_file("statement.pdf", statement_pdf))])

    assert res.status_code == 200
    [placeholder] = res.json()["missingPlaceholders"]
    assert placeholder["pages"] == [4]
    assert placeholder["expected"]["originalPage"] == 3
    assert placeholder["expected"]["owner"] == "Max Mustermann"
    assert placeholder["expected"]["entry"]["description"] == "AMAZON MARKETPLACE"


def test_combine_requires_main(client, receipt_pdf):
    res = client.post("/api/combine", files=[("receipt", pdf_file("amazon.pdf", receipt_pdf))])
    assert res.status_code == 400
    assert "main" in res.json()["error"]


def test_combine_fails_on_unreadable_statement(client, receipt_pdf, upload_dir):
    res = client.post(
        "/api/combine",
        files=[
            ("main", pdf_file("statement.pdf", b"kaputt")),
            ("receipt", pdf_file("amazon.pdf", receipt_pdf)),
        ],
    )
    assert res.status_code == 500
    assert res.json()["error"]
    assert list(upload_dir.iterdir()) == []


def test_report_options_normalise_labels():
    skip, labels = web_app.report_options({"report": {"fee_labels": [" Manipulationsentgelt "]}})
    assert skip == 2
    assert labels == ("manipulationsentgelt",)


def test_cleanup_uploads_tolerates_failures(tmp_path, caplog):
    directory = tmp_path / "not-a-file"
    directory.mkdir()
    web_app.cleanup_uploads([tmp_path / "missing.pdf", directory])
    assert directory.exists()
    assert "Could not remove uploaded file" in caplog.text


def test_frontend_index_is_served(client):
    res = client.get("/")
    assert res.status_code == 200
    assert "/api/analyze" in res.text


def test_unknown_api_path_is_not_served_by_frontend(client):
    assert client.get("/api/unknown").status_code == 404
