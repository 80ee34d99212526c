import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from hopeai import database
from hopeai.llm import ClinicalLLM
from samples import DIAGNOSTIC_ANALYSIS, INTEGRATED_RESPONSE, PATIENT_ANALYSIS, TREATMENT_RECOMMENDATIONS


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", str(tmp_path / "hopeai-test.db"))
    database.init_db()
    return database


@pytest.fixture
def patient(db):
    created = db.create_patient(
        "Laura Fernández",
        patient_id="PS100",
        age=32,
        gender="Female",
        occupation="Teacher",
        consult_reason="Anxiety and sleep problems",
        clinical_history="No previous psychological treatment",
        medications=["Melatonin 1mg"],
        previous_diagnosis=["None"],
        evaluation_draft="Initial interview completed.",
    )
    db.add_test_result(
        "PS100",
        "Beck Anxiety Inventory (BAI)",
        score=25,
        test_date="2024-03-12T10:30:00",
        interpretation="Moderate anxiety",
    )
    return created


@pytest.fixture
def make_llm():
    """Build a ClinicalLLM answering with the given responses, in order."""
    def _make(*responses):
        return ClinicalLLM(model=FakeListChatModel(responses=list(responses)))
    return _make


@pytest.fixture
def pipeline_responses():
    return [
        json.dumps(PATIENT_ANALYSIS),
        json.dumps(DIAGNOSTIC_ANALYSIS),
        "```json\n" + json.dumps(TREATMENT_RECOMMENDATIONS) + "\n```",
        json.dumps(INTEGRATED_RESPONSE),
    ]


class BrokenModel:
    """Chat model double whose service is down."""

    def invoke(self, messages):
        raise ConnectionError("service unavailable")

    def stream(self, messages):
        raise ConnectionError("service unavailable")


@pytest.fixture
def broken_llm():
    return ClinicalLLM(model=BrokenModel())
