import json

from hopeai.context_builder import PROCESSING_ANSWER
from hopeai.services import ClinicalQueryService
from hopeai.streaming import ResponseStreamManager


def test_send_to_ai_valid_response(make_llm):
    service = ClinicalQueryService(llm=make_llm(json.dumps({
        "mainAnswer": "Answer",
        "reasoning": "Because",
        "confidenceScore": 0.9,
        "references": [{"source": "DSM-5", "citation": "criteria"}],
    })))
    response = service.send_to_ai("Question", "Context")
    assert response["mainAnswer"] == "Answer"
    assert response["confidenceScore"] == 0.9
    assert response["references"] == [{"source": "DSM-5", "citation": "criteria"}]


def test_send_to_ai_fills_defaults(make_llm):
    service = ClinicalQueryService(llm=make_llm(json.dumps({
        "mainAnswer": "Answer",
        "reasoning": "Because",
        "confidenceScore": "high",
        "references": "DSM-5",
    })))
    response = service.send_to_ai("Question", "Context")
    assert response["confidenceScore"] == 0.5
    assert response["references"] == []


def test_send_to_ai_incomplete_response(make_llm):
    raw = json.dumps({"mainAnswer": "Only an answer"}) + "x" * 600
    response = ClinicalQueryService(llm=make_llm(raw)).send_to_ai("Question", "Context")
    assert response["confidenceScore"] == 0.3
    assert response["mainAnswer"].endswith(raw[:500])
    assert response["references"][0]["source"] == "Error"


def test_send_to_ai_unparsable_response(make_llm):
    response = ClinicalQueryService(llm=make_llm("Plain prose answer")).send_to_ai("Question", "Context")
    assert response["confidenceScore"] == 0.3
    assert "Plain prose answer" in response["mainAnswer"]


def test_send_to_ai_service_error(broken_llm):
    response = ClinicalQueryService(llm=broken_llm).send_to_ai("Question", "Context")
    assert response["confidenceScore"] == 0
    assert response["references"][0]["source"] == "System error"


def test_process_query_direct_mode(db, patient, make_llm):
    query = db.create_query("PS100", "Is this anxiety?")
    service = ClinicalQueryService(
        llm=make_llm('{"mainAnswer": "Likely anxiety", "reasoning": "Symptoms", "confidenceScore": 70}'),
        mode="direct",
    )
    updated = service.process_query(query["id"])

    assert updated["answer"] == "Likely anxiety"
    assert updated["confidence_score"] == 0.7
    assert updated["response_json"]["reasoning"] == "Symptoms"
    assert updated["references"] == []


def test_process_query_flow_mode(db, patient, make_llm, pipeline_responses):
    query = db.create_query("PS100", "Is this anxiety?")
    service = ClinicalQueryService(llm=make_llm(*pipeline_responses), mode="flow")
    updated = service.process_query(query["id"], include_full_analysis=True)

    assert updated["answer"] == "The presentation is compatible with generalised anxiety."
    assert updated["confidence_score"] == 0.8
    assert "fullAnalysis" in updated["response_json"]
    assert db.get_query(query["id"])["references"][0]["source"] == "DSM-5"


def test_process_query_unknown_query(db, make_llm):
    assert ClinicalQueryService(llm=make_llm("unused")).process_query(999) is None


def test_process_query_async_stores_answer(db, patient, make_llm):
    query = db.create_query("PS100", "Question")
    service = ClinicalQueryService(
        llm=make_llm('{"mainAnswer": "Done", "reasoning": "Because", "confidenceScore": 0.6}'),
        mode="direct",
    )
    service.process_query_async(query["id"])
    assert db.get_query(query["id"])["answer"] == "Done"


def test_process_query_async_records_failure(db, patient, make_llm, monkeypatch):
    query = db.create_query("PS100", "Question")
    service = ClinicalQueryService(llm=make_llm("unused"))
    seen = []

    def failing(query_id, **kwargs):
        seen.append(db.get_query(query_id)["answer"])
        return None

    monkeypatch.setattr(service, "process_query", failing)
    service.process_query_async(query["id"])

    stored = db.get_query(query["id"])
    assert seen == [PROCESSING_ANSWER]
    assert stored["answer"].startswith("Error processing the query")
    assert stored["confidence_score"] == 0


def test_send_to_ai_streams_through_manager(make_llm):
    manager = ResponseStreamManager()
    tokens = []
    manager.on_chunk(tokens.append)
    answer = '{"mainAnswer": "Answer", "reasoning": "Because", "confidenceScore": 0.9}'

    response = ClinicalQueryService(llm=make_llm(answer)).send_to_ai("Question", "Context", stream_manager=manager)

    assert response["mainAnswer"] == "Answer"
    assert "".join(tokens) == answer
    assert [(e.step, e.progress) for e in manager.events] == [("direct_answer", 50)]
