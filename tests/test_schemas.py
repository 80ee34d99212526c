import pytest
from pydantic import ValidationError

from hopeai.schemas import ClinicalResponse, DiagnosticConsideration, PatientUpdate


@pytest.mark.parametrize("score, expected", [
    (0.8, 0.8),
    (1, 1.0),
    (1.5, 1.0),
    (2, 1.0),
    (70, 0.7),
    (100, 1.0),
    (250, 1.0),
    (-0.2, 0.0),
    ("high", 0.5),
])
def test_confidence_score_scale(score, expected):
    response = ClinicalResponse(main_answer="Answer", reasoning="Because", confidence_score=score)
    assert response.confidence_score == pytest.approx(expected)


@pytest.mark.parametrize("confidence, expected", [
    ("80%", 80),
    (" 65 % ", 65),
    ("72.5", 72.5),
    (120, 100),
    (-5, 0),
    ("high", 0),
    (None, 0),
])
def test_diagnostic_confidence_is_lenient(confidence, expected):
    consideration = DiagnosticConsideration.model_validate({"diagnosis": "GAD", "confidence": confidence})
    assert consideration.confidence == expected


def test_patient_update_rejects_null_required_columns():
    with pytest.raises(ValidationError):
        PatientUpdate.model_validate({"name": None})
    with pytest.raises(ValidationError):
        PatientUpdate.model_validate({"status": None})
    assert PatientUpdate.model_validate({"gender": None}).model_dump(exclude_unset=True) == {"gender": None}
