import uuid

import fitz
import pytest
from fastapi.testclient import TestClient

from helpers import ScriptedService, no_sleep, pipeline_handler
from regextract.api import main
from regextract.llm.retry import RetryPolicy
from regextract.pipeline.orchestrator import Pipeline


@pytest.fixture()
def client():
    pipeline = Pipeline(
        main.store,
        RetryPolicy(ScriptedService(handler=pipeline_handler), sleep=no_sleep),
        sleep=no_sleep,
    )
    main.app.dependency_overrides[main.get_pipeline] = lambda: pipeline
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _unique_pdf():
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), f"Procedure {uuid.uuid4()}")
    content = doc.tobytes()
    doc.close()
    return content


def _upload(client, content, name="procedure.pdf"):
    return client.post(
        "/upload",
        files={"file": (name, content, "application/pdf")},
        data={"title": "Retail Market Procedures"},
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_upload_process_and_browse(client):
    content = _unique_pdf()
    first = _upload(client, content)
    assert first.status_code == 200
    document_id = first.json()["document"]["id"]
    assert not first.json()["duplicate"]
    assert _upload(client, content).json()["document"]["id"] == document_id

    processed = client.post(f"/process/{document_id}")
    assert processed.status_code == 200
    assert processed.json()["status"] == "completed"
    assert processed.json()["obligation_count"] == 2

    obligations = client.get(f"/documents/{document_id}/obligations").json()
    assert {ob["section_number"] for ob in obligations} == {"4.2", "4.3"}

    archive = client.get("/documents", params={"search": "retail market"}).json()
    assert document_id in [doc["id"] for doc in archive]
    assert client.get("/stats").json()["total_obligations"] >= 2

    patched = client.patch(f"/documents/{document_id}", json={"version": "3.0"})
    assert patched.json()["version"] == "3.0"

    cleared = client.post(f"/documents/{document_id}/clear-cache").json()
    assert cleared["obligations"] == 2
    details = client.get(f"/documents/{document_id}").json()
    assert details["extraction_status"] == "pending"


def test_clear_cache_releases_the_uploaded_file(client):
    content = _unique_pdf()
    document_id = _upload(client, content).json()["document"]["id"]
    assert document_id in main.uploads

    assert client.post(f"/documents/{document_id}/clear-cache").status_code == 200
    assert document_id not in main.uploads
    assert client.post(f"/process/{document_id}").status_code == 404

    assert _upload(client, content).json()["duplicate"]
    assert client.post(f"/process/{document_id}").status_code == 200


def test_deliverable_needs_obligations(client):
    document_id = _upload(client, _unique_pdf()).json()["document"]["id"]
    response = client.post(f"/documents/{document_id}/deliverables/rtm")
    assert response.status_code == 400


def test_rejected_upload_and_unknown_document(client):
    assert _upload(client, b"plain text", name="notes.txt").status_code == 400
    assert client.get("/documents/missing").status_code == 404
    assert client.post("/process/missing").status_code == 404
