"""
Data models for the clinical assistant.

JSON travels in camelCase (the frontend and the LLM prompts use it), Python code
works with snake_case attributes. Every model accepts both spellings.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PERCENT_SCALE_MIN = 10  # A confidenceScore from here up to 100 is read as a percentage


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Pipeline step outputs
# ---------------------------------------------------------------------------
class PatientAnalysis(CamelModel):
    key_clinical_observations: List[str] = Field(default_factory=list)
    potential_clinical_patterns: List[str] = Field(default_factory=list)
    missing_information: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)
    protective_factors: List[str] = Field(default_factory=list)


class DiagnosticConsideration(CamelModel):
    diagnosis: str
    code: Optional[str] = None
    confidence: float = Field(
        default=0,
        ge=0,
        le=100,
        validation_alias=AliasChoices("confidence", "confidenceLevel", "confidence_level"),
        description="Approximate confidence, 0-100",
    )
    criteria_present: List[str] = Field(default_factory=list)
    criteria_missing: List[str] = Field(default_factory=list)
    supporting_evidence: List[str] = Field(default_factory=list)
    differential_diagnoses: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
    reference: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value):
        # Accepts 80, "80" and "80%"; anything unreadable counts as no confidence
        if isinstance(value, str):
            value = value.strip().rstrip("%").strip()
            try:
                value = float(value)
            except ValueError:
                return 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return min(max(value, 0), 100)


class DiagnosticAnalysis(CamelModel):
    diagnostic_considerations: List[DiagnosticConsideration] = Field(default_factory=list)
    differential_diagnosis: List[str] = Field(default_factory=list)


class TreatmentApproach(CamelModel):
    approach: str
    evidence_level: str = "C"
    description: str = ""
    expected_benefits: List[str] = Field(default_factory=list)
    reference: str = ""


class MedicationConsideration(CamelModel):
    category: str
    considerations: str = ""
    referral_recommendation: str = ""


class TreatmentRecommendations(CamelModel):
    treatment_approaches: List[TreatmentApproach] = Field(default_factory=list)
    medication_considerations: List[MedicationConsideration] = Field(default_factory=list)
    psychoeducation: List[str] = Field(default_factory=list)
    follow_up_recommendations: str = ""


class FullAnalysis(CamelModel):
    patient_analysis: PatientAnalysis
    diagnostic_analysis: DiagnosticAnalysis
    treatment_recommendations: TreatmentRecommendations


class ClinicalReference(CamelModel):
    source: str = ""
    citation: str = ""
    link: Optional[str] = Field(default=None, validation_alias=AliasChoices("link", "url"))


class ClinicalResponse(CamelModel):
    main_answer: str
    reasoning: str
    confidence_score: float = 0.5
    references: List[ClinicalReference] = Field(default_factory=list)
    suggested_questions: List[str] = Field(default_factory=list)
    diagnostic_considerations: List[str] = Field(default_factory=list)
    treatment_suggestions: List[str] = Field(default_factory=list)
    full_analysis: Optional[FullAnalysis] = None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        # Models sometimes answer 0-100 instead of 0-1; small overshoots stay on the 0-1 scale
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.5
        if PERCENT_SCALE_MIN <= value <= 100:
            value = value / 100
        return min(max(float(value), 0.0), 1.0)

    @field_validator("references", mode="before")
    @classmethod
    def _default_references(cls, value):
        return value if isinstance(value, list) else []

    @field_validator("diagnostic_considerations", "treatment_suggestions", "suggested_questions", mode="before")
    @classmethod
    def _flatten_items(cls, value):
        if not isinstance(value, list):
            return []
        items = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("diagnosis") or item.get("approach") or item.get("text") or str(item)
            items.append(str(item))
        return items


class SymptomAnalysis(CamelModel):
    patient_info: str = ""
    symptoms: List[str] = Field(default_factory=list)
    dsm_analysis: List[str] = Field(default_factory=list)
    possible_diagnoses: List[str] = Field(default_factory=list)
    treatment_suggestions: List[str] = Field(default_factory=list)
    current_thinking: str = ""


class AnalysisStepResult(CamelModel):
    success: bool
    step: str
    data: Optional[Any] = None
    error: Optional[str] = None


class ProgressEvent(CamelModel):
    step: str
    progress: int = Field(ge=0, le=100)
    message: str


# ---------------------------------------------------------------------------
# Patient context
# ---------------------------------------------------------------------------
class Demographics(CamelModel):
    name: Optional[str] = None
    age: Optional[Union[int, str]] = None
    gender: Optional[str] = None
    occupation: Optional[str] = None


class ClinicalInfo(CamelModel):
    consult_reason: Optional[str] = None
    relevant_history: Optional[str] = None
    medications: List[str] = Field(default_factory=list)
    previous_diagnosis: List[str] = Field(default_factory=list)


class TestResultSummary(CamelModel):
    name: str
    score: Optional[Union[str, int, float]] = None
    date: Optional[str] = None
    interpretation: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class PreviousQuery(CamelModel):
    question: str
    answer: str
    date: str
    confidence_score: Optional[float] = None


class StructuredPatientData(CamelModel):
    demographics: Demographics = Field(default_factory=Demographics)
    clinical_info: ClinicalInfo = Field(default_factory=ClinicalInfo)
    test_results: List[TestResultSummary] = Field(default_factory=list)
    evaluation_notes: Optional[str] = None
    previous_queries: List[PreviousQuery] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------
class PatientCreate(CamelModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    gender: Optional[str] = None
    occupation: Optional[str] = None
    status: Optional[str] = None
    evaluation_date: Optional[str] = None
    psychologist: Optional[str] = None
    consult_reason: Optional[str] = None
    clinical_history: Optional[str] = None
    medications: Optional[List[str]] = None
    previous_diagnosis: Optional[List[str]] = None
    evaluation_draft: Optional[str] = None


class PatientUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    gender: Optional[str] = None
    occupation: Optional[str] = None
    status: Optional[str] = None
    evaluation_date: Optional[str] = None
    psychologist: Optional[str] = None
    consult_reason: Optional[str] = None
    clinical_history: Optional[str] = None
    medications: Optional[List[str]] = None
    previous_diagnosis: Optional[List[str]] = None
    evaluation_draft: Optional[str] = None

    @field_validator("name", "status")
    @classmethod
    def _not_null(cls, value):
        # Both columns are NOT NULL; omit the field to leave it unchanged
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class EvaluationDraftUpdate(CamelModel):
    draft: str


class TestResultCreate(CamelModel):
    name: str = Field(min_length=1)
    score: Optional[Union[str, int, float]] = None
    test_date: Optional[str] = None
    interpretation: Optional[str] = None
    result_details: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None


class TestResultOut(CamelModel):
    id: int
    patient_id: str
    name: str
    score: Optional[str] = None
    test_date: Optional[str] = None
    interpretation: Optional[str] = None
    result_details: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: str
    updated_at: str


class PatientOut(CamelModel):
    id: str
    name: str
    age: Optional[int] = None
    gender: Optional[str] = None
    occupation: Optional[str] = None
    status: str
    evaluation_date: Optional[str] = None
    psychologist: Optional[str] = None
    consult_reason: Optional[str] = None
    clinical_history: Optional[str] = None
    medications: List[str] = Field(default_factory=list)
    previous_diagnosis: List[str] = Field(default_factory=list)
    evaluation_draft: Optional[str] = None
    created_at: str
    updated_at: str
    test_results: Optional[List[TestResultOut]] = None


class ClinicalQueryCreate(CamelModel):
    patient_id: str
    question: str = Field(min_length=1)
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None


class ClinicalQueryUpdate(CamelModel):
    answer: Optional[str] = None
    response_json: Optional[Dict[str, Any]] = None
    confidence_score: Optional[float] = Field(default=None, ge=0, le=1)
    references: Optional[List[ClinicalReference]] = None
    is_favorite: Optional[bool] = None
    tags: Optional[List[str]] = None


class ClinicalQueryOut(CamelModel):
    id: int
    patient_id: str
    question: str
    answer: Optional[str] = None
    response_json: Optional[Dict[str, Any]] = None
    confidence_score: Optional[float] = None
    references: Optional[List[Dict[str, Any]]] = None
    is_favorite: bool = False
    tags: List[str] = Field(default_factory=list)
    feedback_rating: Optional[int] = None
    feedback_comment: Optional[str] = None
    feedback_tags: List[str] = Field(default_factory=list)
    has_feedback: bool = False
    created_by: Optional[str] = None
    created_at: str
    updated_at: str


class FeedbackRequest(CamelModel):
    rating: int = Field(ge=1, le=5)
    feedback: Optional[str] = None
    helpful: bool = False
    accurate: bool = False
    detailed: bool = False


class AnalyzeRequest(CamelModel):
    patient_data: Optional[str] = None


class QuestionRequest(CamelModel):
    question: Optional[str] = None
    analysis_state: Optional[Dict[str, Any]] = None
