from typing import Optional

from hopeai import database
from hopeai.config import ANSWER_PREVIEW_CHARS, PREVIOUS_QUERIES_LIMIT, logger
from hopeai.schemas import (
    ClinicalInfo,
    Demographics,
    PreviousQuery,
    StructuredPatientData,
    TestResultSummary,
)

# Answer stored while a query is waiting for the AI
PROCESSING_ANSWER = "Processing clinical query..."


class PatientNotFoundError(LookupError):
    pass


def _date_only(value: Optional[str]) -> Optional[str]:
    return value[:10] if value else None


def build_enriched_patient_context(patient_id: str, exclude_query_id: Optional[int] = None) -> StructuredPatientData:
    """
    Build the structured snapshot of a patient used by the clinical prompts.

    Args:
        patient_id: The patient to describe
        exclude_query_id: Query being answered, left out of the previous queries

    Returns:
        The structured context; an empty one when the patient cannot be loaded
    """
    try:
        patient = database.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")

        context = StructuredPatientData(
            demographics=Demographics(
                name=patient.get("name"),
                age=patient.get("age"),
                gender=patient.get("gender"),
                occupation=patient.get("occupation"),
            ),
            clinical_info=ClinicalInfo(
                consult_reason=patient.get("consult_reason"),
                relevant_history=patient.get("clinical_history"),
                medications=patient.get("medications") or [],
                previous_diagnosis=patient.get("previous_diagnosis") or [],
            ),
            evaluation_notes=patient.get("evaluation_draft") or None,
        )

        for test in database.list_test_results(patient_id):
            context.test_results.append(TestResultSummary(
                name=test["name"],
                score=test.get("score"),
                date=_date_only(test.get("test_date")),
                interpretation=test.get("interpretation"),
                details=test.get("result_details") or {},
            ))

        previous = database.list_answered_queries(
            patient_id,
            limit=PREVIOUS_QUERIES_LIMIT,
            exclude_id=exclude_query_id,
            exclude_answers=(PROCESSING_ANSWER,),
        )
        for query in previous:
            context.previous_queries.append(PreviousQuery(
                question=query["question"],
                answer=query["answer"],
                date=_date_only(query["created_at"]),
                confidence_score=query.get("confidence_score"),
            ))

        return context

    except Exception as e:
        logger.error(f"Error building enriched patient context: {e}")
        # Minimal context so the pipeline can still answer
        return StructuredPatientData()


def context_to_text(context: StructuredPatientData) -> str:
    """Render the structured context as the plain-text block used in prompts."""
    demographics = context.demographics
    clinical = context.clinical_info
    lines = ["### DEMOGRAPHICS ###"]
    if demographics.name:
        lines.append(f"Name: {demographics.name}")
    if demographics.age:
        lines.append(f"Age: {demographics.age}")
    if demographics.gender:
        lines.append(f"Gender: {demographics.gender}")
    if demographics.occupation:
        lines.append(f"Occupation: {demographics.occupation}")

    lines += ["", "### CLINICAL INFORMATION ###"]
    if clinical.consult_reason:
        lines.append(f"Reason for consultation: {clinical.consult_reason}")
    if clinical.relevant_history:
        lines.append(f"Relevant history: {clinical.relevant_history}")
    if clinical.medications:
        lines.append("Current medication:")
        lines += [f"- {med}" for med in clinical.medications]
    if clinical.previous_diagnosis:
        lines.append("Previous diagnoses:")
        lines += [f"- {diagnosis}" for diagnosis in clinical.previous_diagnosis]

    if context.test_results:
        lines += ["", "### TEST RESULTS ###"]
        for test in context.test_results:
            lines.append(f"Test: {test.name}")
            if test.score is not None:
                lines.append(f"Score: {test.score}")
            if test.date:
                lines.append(f"Date: {test.date}")
            if test.interpretation:
                lines.append(f"Interpretation: {test.interpretation}")
            lines.append("")

    if context.evaluation_notes:
        lines += ["", "### EVALUATION NOTES ###", context.evaluation_notes]

    if context.previous_queries:
        lines += ["", "### PREVIOUS CLINICAL QUERIES ###"]
        for query in context.previous_queries:
            lines.append(f"Date: {query.date}")
            lines.append(f"Question: {query.question}")
            lines.append(f"Answer: {query.answer[:ANSWER_PREVIEW_CHARS]}...")
            lines.append("")

    return "\n".join(lines) + "\n"
