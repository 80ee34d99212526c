from typing import Any, Dict, Optional

from pydantic import ValidationError

from hopeai import database
from hopeai.config import QUERY_MODE, logger
from hopeai.context_builder import (
    PROCESSING_ANSWER,
    PatientNotFoundError,
    build_enriched_patient_context,
    context_to_text,
)
from hopeai.flows import ClinicalReasoningFlow
from hopeai.llm import ClinicalLLM, get_clinical_llm
from hopeai.prompts import DIRECT_QUERY_PROMPT, fill_template
from hopeai.schemas import ClinicalReference, ClinicalResponse
from hopeai.streaming import ResponseStreamManager
from hopeai.utils import ResponseParseError, parse_json_response

RAW_PREVIEW_CHARS = 500
DIRECT_STEP = "direct_answer"
DIRECT_STEP_PROGRESS = 50

SERVICE_ERROR_RESPONSE = ClinicalResponse(
    main_answer="Sorry, there was an error processing this query. Please try again later.",
    reasoning="Error communicating with the AI system.",
    confidence_score=0,
    references=[ClinicalReference(source="System error", citation="No response could be obtained from the AI system.")],
)


class QueryNotFoundError(LookupError):
    pass


def _unstructured_response(content: str) -> Dict[str, Any]:
    return ClinicalResponse(
        main_answer="The response could not be processed in structured form. The original response was: "
                    + content[:RAW_PREVIEW_CHARS],
        reasoning="Error processing the reasoning.",
        confidence_score=0.3,
        references=[ClinicalReference(source="Error", citation="No references could be extracted.")],
    ).model_dump(by_alias=True, exclude_none=True)


class ClinicalQueryService:
    """Answers stored clinical queries and writes the answer back."""

    def __init__(self, llm: Optional[ClinicalLLM] = None, mode: str = QUERY_MODE):
        self.llm = llm or get_clinical_llm()
        self.mode = mode

    def process_query(self, query_id: int, stream_manager: Optional[ResponseStreamManager] = None,
                      include_full_analysis: bool = False) -> Optional[Dict[str, Any]]:
        """
        Answer a stored query and persist the result.

        Returns:
            The updated query, or None when it could not be processed
        """
        try:
            query = database.get_query(query_id)
            if query is None:
                raise QueryNotFoundError(f"Query {query_id} not found")
            patient_id = query["patient_id"]
            if not database.patient_exists(patient_id):
                raise PatientNotFoundError(f"Patient not found for query {query_id}")

            if self.mode == "direct":
                context = build_enriched_patient_context(patient_id, exclude_query_id=query_id)
                response = self.send_to_ai(query["question"], context_to_text(context),
                                           stream_manager=stream_manager)
            else:
                response = ClinicalReasoningFlow(
                    patient_id,
                    query["question"],
                    include_full_analysis=include_full_analysis,
                    llm=self.llm,
                    stream_manager=stream_manager,
                    exclude_query_id=query_id,
                ).execute()

            return database.update_query(
                query_id,
                answer=response["mainAnswer"],
                response_json=response,
                confidence_score=response["confidenceScore"],
                references=response.get("references", []),
            )
        except Exception as e:
            logger.error(f"Error processing clinical query {query_id}: {e}")
            return None

    def send_to_ai(self, question: str, patient_context: str,
                   stream_manager: Optional[ResponseStreamManager] = None) -> Dict[str, Any]:
        """Answer a question with a single structured call, without the reasoning flow."""
        prompt = fill_template(DIRECT_QUERY_PROMPT, patientContext=patient_context, query=question)
        try:
            if stream_manager is None:
                content = self.llm.generate(prompt)
            else:
                stream_manager.add_progress(DIRECT_STEP, DIRECT_STEP_PROGRESS, "Generating the clinical answer...")
                content = ""
                for chunk in self.llm.stream(prompt):
                    content += chunk
                    stream_manager.add_chunk(chunk)
        except Exception as e:
            logger.error(f"Error communicating with the AI service: {e}")
            return SERVICE_ERROR_RESPONSE.model_dump(by_alias=True, exclude_none=True)

        try:
            parsed = parse_json_response(content)
            if not parsed.get("mainAnswer") or not parsed.get("reasoning"):
                raise ResponseParseError("Incomplete response")
            return ClinicalResponse.model_validate(parsed).model_dump(by_alias=True, exclude_none=True)
        except (ResponseParseError, ValidationError) as e:
            logger.error(f"Error parsing the AI response: {e}")
            return _unstructured_response(content)

    def process_query_async(self, query_id: int) -> None:
        """Background entry point: mark the query as processing, then answer it."""
        try:
            database.update_query(query_id, answer=PROCESSING_ANSWER)
            if self.process_query(query_id) is None:
                raise RuntimeError("The query could not be processed")
        except Exception as e:
            logger.error(f"Error in background processing of query {query_id}: {e}")
            database.update_query(
                query_id,
                answer=f"Error processing the query: {e}",
                confidence_score=0,
            )
