"""HTTP tests for the document conversion endpoint."""

import io

from docx import Document
from fastapi.testclient import TestClient

from test_document_converter import make_text_pdf, make_xlsx


def _post(client: TestClient, data: bytes, filename: str, source: str | None, target: str | None):
    fields = {}
    if source is not None:
        fields["from"] = source
    if target is not None:
        fields["to"] = target
    return client.post(
        "/v1/documents/convert",
        files={"file": (filename, data, "application/octet-stream")},
        data=fields,
    )


def test_pdf_to_docx(client: TestClient):
    resp = _post(client, make_text_pdf("Board minutes"), "minutes.pdf", "pdf", "docx")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )
    assert resp.headers["content-disposition"] == 'attachment; filename="converted.docx"'
    assert "X-RateLimit-Remaining" in resp.headers
    paragraphs = [p.text for p in Document(io.BytesIO(resp.content)).paragraphs]
    assert any("Board minutes" in p for p in paragraphs)


def test_xlsx_to_csv(client: TestClient):
    resp = _post(client, make_xlsx({"S": [["a", 1]]}), "book.xlsx", "xlsx", "csv")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.content == b"a,1\n"


def test_unsupported_pair(client: TestClient):
    resp = _post(client, b"hello", "note.txt", "txt", "pdf")

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Conversion from TXT to PDF is not yet supported."


def test_missing_target_format(client: TestClient):
    resp = _post(client, b"hello", "note.txt", "txt", None)

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Conversion format is required"


def test_missing_file(client: TestClient):
    resp = client.post("/v1/documents/convert", data={"from": "txt", "to": "docx"})

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "No file provided"


def test_empty_file(client: TestClient):
    resp = _post(client, b"", "empty.txt", "txt", "docx")

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "empty_file"


def test_corrupted_input_returns_500(client: TestClient):
    resp = _post(client, b"%PDF-1.4\nbroken", "broken.pdf", "pdf", "txt")

    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == (
        "Failed to convert PDF to TXT. The file may be corrupted or in an unsupported format."
    )
