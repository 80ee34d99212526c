import json

import pytest

from hopeai.llm import LLMServiceError
from hopeai.streaming import ResponseStreamManager, sse_event
from hopeai.utils import ResponseParseError


def test_generate_returns_text(make_llm):
    assert make_llm("Plain answer").generate("Question") == "Plain answer"


def test_stream_yields_chunks(make_llm):
    chunks = list(make_llm("abc").stream("Question"))
    assert chunks == ["a", "b", "c"]


def test_generate_structured_parses_json(make_llm):
    llm = make_llm('Sure: {"mainAnswer": "ok", "confidenceScore": 0.9}')
    assert llm.generate_structured("Question") == {"mainAnswer": "ok", "confidenceScore": 0.9}


def test_generate_structured_rejects_prose(make_llm):
    with pytest.raises(ResponseParseError):
        make_llm("No JSON here").generate_structured("Question")


def test_service_failures_are_wrapped(broken_llm):
    with pytest.raises(LLMServiceError):
        broken_llm.generate("Question")
    with pytest.raises(LLMServiceError):
        list(broken_llm.stream("Question"))


def test_stream_manager_collects_and_relays():
    manager = ResponseStreamManager()
    seen, events = [], []
    manager.on_chunk(seen.append)
    manager.on_progress(events.append)

    manager.add_progress("patient_data_analysis", 10, "Analysing patient data")
    manager.add_chunk("Hello ")
    manager.add_chunk("world")

    assert seen == ["Hello ", "world"]
    assert manager.get_full_response() == "Hello world"
    assert events[0].progress == 10

    manager.reset(keep_listeners=True)
    manager.add_chunk("again")
    assert manager.get_full_response() == "again"
    assert seen[-1] == "again"

    manager.reset()
    manager.add_chunk("silent")
    assert seen[-1] == "again"


def test_sse_event_format():
    frame = sse_event("token", {"token": "ñ"})
    assert frame.startswith("event: token\ndata: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1]) == {"token": "ñ"}
