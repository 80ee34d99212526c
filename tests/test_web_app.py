import asyncio
import json
import logging

import pytest
from fastapi.testclient import TestClient

from hopeai.services import ClinicalQueryService
from web_app import app, get_query_service, stream_query

DIRECT_ANSWER = '{"mainAnswer": "Likely anxiety", "reasoning": "Symptoms", "confidenceScore": 0.75}'


@pytest.fixture
def use_service():
    """Route requests through a service backed by the given fake LLM."""
    def _use(llm, mode="direct"):
        service = ClinicalQueryService(llm=llm, mode=mode)
        app.dependency_overrides[get_query_service] = lambda: service
        return service
    yield _use
    app.dependency_overrides.clear()


@pytest.fixture
def client(db):
    with TestClient(app) as client:
        yield client


def test_health_and_models(client):
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["database"] == "connected"
    assert "clinical_queries" in client.get("/api/models").json()["models"]
    assert client.get("/api/analysis").status_code == 200


def test_demo_patients_are_seeded(client):
    patients = client.get("/api/patients").json()
    assert {"PS005", "PS006", "PS007"} <= {p["id"] for p in patients}
    laura = client.get("/api/patients/PS005").json()
    assert laura["consultReason"] == "Anxiety and sleep problems"
    assert len(laura["testResults"]) == 2


def test_patient_crud(client):
    created = client.post("/api/patients", json={"name": "Ana Ruiz", "age": 40, "consultReason": "Grief"})
    assert created.status_code == 201
    patient_id = created.json()["id"]

    updated = client.put(f"/api/patients/{patient_id}", json={"status": "In treatment"}).json()
    assert updated["status"] == "In treatment"
    assert updated["consultReason"] == "Grief"

    draft = client.put(f"/api/patients/{patient_id}/evaluation-draft", json={"draft": "Notes"}).json()
    assert draft["evaluationDraft"] == "Notes"

    result = client.post(f"/api/patients/{patient_id}/test-results",
                         json={"name": "BDI-II", "score": 18, "interpretation": "Mild depression"})
    assert result.status_code == 201
    assert result.json()["score"] == "18"

    assert client.get("/api/patients/UNKNOWN").status_code == 404
    assert client.put("/api/patients/UNKNOWN", json={"status": "x"}).status_code == 404
    assert client.post("/api/patients/UNKNOWN/test-results", json={"name": "BDI-II"}).status_code == 404
    assert client.post("/api/patients", json={"name": ""}).status_code == 422


def test_patient_update_rejects_null_name_and_status(client):
    assert client.put("/api/patients/PS005", json={"name": None}).status_code == 422
    assert client.put("/api/patients/PS005", json={"status": None}).status_code == 422
    assert client.get("/api/patients/PS005").json()["name"] == "Laura Fernández"


def test_create_query_processes_in_background(client, use_service, make_llm):
    use_service(make_llm(DIRECT_ANSWER))
    response = client.post("/api/clinical/queries",
                           json={"patientId": "PS005", "question": "Is this anxiety?", "tags": ["anxiety"]})
    assert response.status_code == 201
    query_id = response.json()["data"]["id"]

    query = client.get(f"/api/clinical/queries/{query_id}").json()["data"]
    assert query["answer"] == "Likely anxiety"
    assert query["confidenceScore"] == 0.75
    assert query["createdBy"] == "system"


def test_create_query_for_unknown_patient(client, use_service, make_llm):
    use_service(make_llm(DIRECT_ANSWER))
    response = client.post("/api/clinical/queries", json={"patientId": "UNKNOWN", "question": "Question"})
    assert response.status_code == 404


def test_list_update_favorite_and_delete(client, db):
    first = db.create_query("PS005", "First", tags=["sleep"])
    db.create_query("PS005", "Second")

    listed = client.get("/api/clinical/queries/patient/PS005").json()
    assert listed["success"] is True
    assert listed["data"]["total"] == 2

    tagged = client.get("/api/clinical/queries/patient/PS005", params={"tag": "sleep"}).json()
    assert [q["question"] for q in tagged["data"]["queries"]] == ["First"]

    favorite = client.patch(f"/api/clinical/queries/{first['id']}/favorite").json()["data"]
    assert favorite["isFavorite"] is True
    favorites = client.get("/api/clinical/queries/patient/PS005", params={"favorite": "true"}).json()
    assert favorites["data"]["total"] == 1

    updated = client.put(f"/api/clinical/queries/{first['id']}", json={"answer": "Manual answer", "tags": []})
    assert updated.json()["data"]["answer"] == "Manual answer"
    assert updated.json()["data"]["tags"] == []

    assert client.delete(f"/api/clinical/queries/{first['id']}").status_code == 200
    assert client.get(f"/api/clinical/queries/{first['id']}").status_code == 404
    assert client.delete(f"/api/clinical/queries/{first['id']}").status_code == 404


def test_process_endpoint(client, db, use_service, make_llm, pipeline_responses):
    use_service(make_llm(*pipeline_responses), mode="flow")
    query = db.create_query("PS005", "Is this anxiety?")

    processed = client.post(f"/api/clinical/queries/{query['id']}/process").json()["data"]
    assert processed["answer"] == "The presentation is compatible with generalised anxiety."
    assert client.post("/api/clinical/queries/999/process").status_code == 404


def test_process_endpoint_failure(client, db, use_service, make_llm, monkeypatch):
    service = use_service(make_llm(DIRECT_ANSWER))
    monkeypatch.setattr(service, "process_query", lambda query_id, **kwargs: None)
    query = db.create_query("PS005", "Question")
    assert client.post(f"/api/clinical/queries/{query['id']}/process").status_code == 500


def test_stream_endpoint(client, db, use_service, make_llm, pipeline_responses):
    use_service(make_llm(*pipeline_responses), mode="flow")
    query = db.create_query("PS005", "Is this anxiety?")

    response = client.post(f"/api/clinical/queries/{query['id']}/stream")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    frames = [frame for frame in response.text.split("\n\n") if frame]
    events = [frame.split("\n")[0].removeprefix("event: ") for frame in frames]
    assert events[0] == "progress"
    assert "token" in events
    assert events[-1] == "result"
    result = json.loads(frames[-1].split("data: ", 1)[1])
    assert result["confidenceScore"] == 0.8


def test_html_endpoint(client, db, use_service, make_llm):
    use_service(make_llm(DIRECT_ANSWER))
    query = db.create_query("PS005", "Question")
    client.post(f"/api/clinical/queries/{query['id']}/process")

    html = client.get(f"/api/clinical/queries/{query['id']}/html")
    assert html.status_code == 200
    assert "Likely anxiety" in html.text
    assert "medium-confidence" in html.text


def test_feedback(client, db):
    query = db.create_query("PS005", "Question")
    response = client.post(f"/api/clinical/queries/{query['id']}/feedback",
                           json={"rating": 5, "feedback": "Great", "helpful": True, "detailed": True})
    data = response.json()["data"]
    assert data["hasFeedback"] is True
    assert data["feedbackTags"] == ["helpful", "detailed"]
    assert client.post(f"/api/clinical/queries/{query['id']}/feedback", json={"rating": 9}).status_code == 422
    assert client.post("/api/clinical/queries/999/feedback", json={"rating": 3}).status_code == 404


def test_symptom_analysis_endpoints(client, use_service, make_llm):
    use_service(make_llm("- Worry", "Criterion A", "F41.1", "CBT", "Start with CBT."))

    assert client.post("/api/clinical/analyze", json={}).status_code == 400
    analysis = client.post("/api/clinical/analyze", json={"patientData": "Worried for months"}).json()["data"]
    assert analysis["symptoms"] == ["Worry"]
    assert analysis["treatmentSuggestions"] == ["CBT"]

    assert client.post("/api/clinical/question", json={"question": "Next?"}).status_code == 400
    answer = client.post("/api/clinical/question", json={"question": "Next?", "analysisState": analysis}).json()
    assert answer["data"]["answer"] == "Start with CBT."


def test_stream_endpoint_direct_mode(client, db, use_service, make_llm):
    use_service(make_llm(DIRECT_ANSWER))
    query = db.create_query("PS005", "Is this anxiety?")

    response = client.post(f"/api/clinical/queries/{query['id']}/stream")
    frames = [frame for frame in response.text.split("\n\n") if frame]
    events = [frame.split("\n")[0].removeprefix("event: ") for frame in frames]
    assert events[0] == "progress"
    assert "token" in events
    assert events[-1] == "result"
    assert json.loads(frames[-1].split("data: ", 1)[1])["answer"] == "Likely anxiety"


def test_stream_disconnect_keeps_processing(db, patient, make_llm, caplog):
    caplog.set_level(logging.INFO, logger="hopeai")
    service = ClinicalQueryService(llm=make_llm(DIRECT_ANSWER), mode="direct")
    query = db.create_query("PS100", "Question")

    async def leave_after_first_frame():
        response = await stream_query(query["id"], service=service)
        frames = response.body_iterator
        first = await frames.__anext__()
        await frames.aclose()
        for _ in range(200):
            if db.get_query(query["id"])["answer"]:
                break
            await asyncio.sleep(0.01)
        return first

    first = asyncio.run(leave_after_first_frame())
    assert first.startswith("event: progress")
    assert f"Client left the stream of query {query['id']}" in caplog.text
    assert db.get_query(query["id"])["answer"] == "Likely anxiety"
