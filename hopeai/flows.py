import json
from typing import List, Optional, TypedDict, Union

# LangChain imports
from langsmith import traceable
from langchain_core.runnables import RunnableConfig

# LangGraph imports
from langgraph.graph import StateGraph, END

# Local imports
from hopeai.config import DEFAULT_TEMPERATURE, logger
from hopeai.context_builder import build_enriched_patient_context, context_to_text
from hopeai.llm import ClinicalLLM, get_clinical_llm
from hopeai.prompts import (
    ANALYZE_PATIENT_DATA_PROMPT,
    DIAGNOSTIC_CONSIDERATIONS_PROMPT,
    INTEGRATED_RESPONSE_PROMPT,
    TREATMENT_RECOMMENDATIONS_PROMPT,
    fill_template,
)
from hopeai.schemas import (
    AnalysisStepResult,
    ClinicalReference,
    ClinicalResponse,
    DiagnosticAnalysis,
    DiagnosticConsideration,
    FullAnalysis,
    PatientAnalysis,
    StructuredPatientData,
    TreatmentApproach,
    TreatmentRecommendations,
)
from hopeai.streaming import ResponseStreamManager, response_stream_manager
from hopeai.utils import parse_json_response

CONTEXT_ERROR_TEXT = "Error loading patient information."

PATIENT_ANALYSIS_FALLBACK = PatientAnalysis(
    key_clinical_observations=["Error analysing patient data"],
    missing_information=["The available information could not be analysed"],
)
DIAGNOSTIC_ANALYSIS_FALLBACK = DiagnosticAnalysis(
    diagnostic_considerations=[DiagnosticConsideration(
        diagnosis="Error in diagnostic analysis",
        code="N/A",
        confidence=0,
        supporting_evidence=["The analysis could not be completed"],
    )],
)
TREATMENT_RECOMMENDATIONS_FALLBACK = TreatmentRecommendations(
    treatment_approaches=[TreatmentApproach(
        approach="Error in treatment analysis",
        evidence_level="N/A",
        description="Recommendations could not be generated",
        reference="N/A",
    )],
    follow_up_recommendations="Follow-up recommendations could not be generated",
)
INTEGRATED_RESPONSE_FALLBACK = ClinicalResponse(
    main_answer="A complete answer to your query could not be generated due to a processing error.",
    reasoning="Error integrating the clinical analysis.",
    confidence_score=0.3,
    references=[ClinicalReference(source="System error", citation="The analysis could not be completed")],
)
FLOW_ERROR_RESPONSE = ClinicalResponse(
    main_answer="Sorry, there was an error processing this clinical query. Please try again later.",
    reasoning="Error in the clinical reasoning flow.",
    confidence_score=0,
    references=[ClinicalReference(
        source="System error",
        citation="The clinical analysis could not be completed due to an internal error.",
    )],
)


def create_error_response(error_message: str) -> dict:
    return ClinicalResponse(
        main_answer=f"Sorry, the analysis could not be completed due to an error: {error_message}",
        reasoning="An error occurred while processing the query.",
        confidence_score=0.1,
        references=[ClinicalReference(source="System error", citation=error_message)],
    ).model_dump(by_alias=True, exclude_none=True)


##################### Graph Compiling Script #####################
# This script compiles the LangGraph graph for the clinical reasoning pipeline.
class ReasoningState(TypedDict):
    patient_id: Optional[str]
    exclude_query_id: Optional[int]
    question: str
    patient_context: Optional[str]  # Plain-text snapshot injected in every prompt
    patient_analysis: Optional[dict]
    diagnostic_analysis: Optional[dict]
    treatment_recommendations: Optional[dict]
    integrated_response: Optional[dict]
    step_results: List[dict]
    next_node: str
    fail_fast: bool  # Stop at the first failed step instead of using its fallback
    error: Optional[str]


def _runtime(config: RunnableConfig):
    configurable = (config or {}).get("configurable", {})
    return configurable.get("llm") or get_clinical_llm(), configurable.get("stream_manager")


def _call_llm(llm: ClinicalLLM, prompt: str, stream_manager: Optional[ResponseStreamManager]) -> str:
    if stream_manager is None:
        return llm.generate(prompt)
    chunks = []
    for chunk in llm.stream(prompt):
        chunks.append(chunk)
        stream_manager.add_chunk(chunk)
    return "".join(chunks)


def _run_step(state: ReasoningState, config: RunnableConfig, step: str, progress: int, message: str,
              prompt: str, schema, fallback) -> dict:
    # One LLM stage: call, parse, validate; the fallback replaces the output on any failure
    llm, stream_manager = _runtime(config)
    if stream_manager is not None:
        stream_manager.add_progress(step, progress, message)
    try:
        content = _call_llm(llm, prompt, stream_manager)
        data = schema.model_validate(parse_json_response(content)).model_dump(by_alias=True)
        state["step_results"].append(AnalysisStepResult(success=True, step=step).model_dump(by_alias=True))
        return data
    except Exception as e:
        logger.error(f"Error in step {step}: {e}")
        state["step_results"].append(
            AnalysisStepResult(success=False, step=step, error=str(e)).model_dump(by_alias=True)
        )
        state["error"] = state["error"] or f"{step}: {e}"
        return fallback.model_dump(by_alias=True)


def prepare_context(state: ReasoningState) -> ReasoningState:
    # Load the patient snapshot unless the caller supplied one
    if not state["patient_context"]:
        try:
            context = build_enriched_patient_context(state["patient_id"], state["exclude_query_id"])
            state["patient_context"] = context_to_text(context)
        except Exception as e:
            logger.error(f"Error preparing patient context: {e}")
            state["patient_context"] = CONTEXT_ERROR_TEXT
    state["next_node"] = "analyze_patient"
    return state


@traceable(run_type="llm")
def analyze_patient(state: ReasoningState, config: RunnableConfig) -> ReasoningState:
    prompt = fill_template(
        ANALYZE_PATIENT_DATA_PROMPT,
        patientContext=state["patient_context"],
        query=state["question"],
    )
    state["patient_analysis"] = _run_step(
        state, config, "patient_data_analysis", 10, "Analysing patient data",
        prompt, PatientAnalysis, PATIENT_ANALYSIS_FALLBACK,
    )
    logger.info("Patient data analysis completed")
    state["next_node"] = "evaluate_diagnoses"
    return state


@traceable(run_type="llm")
def evaluate_diagnoses(state: ReasoningState, config: RunnableConfig) -> ReasoningState:
    prompt = fill_template(
        DIAGNOSTIC_CONSIDERATIONS_PROMPT,
        patientContext=state["patient_context"],
        previousAnalysis=json.dumps(state["patient_analysis"], ensure_ascii=False),
        query=state["question"],
    )
    state["diagnostic_analysis"] = _run_step(
        state, config, "diagnostic_considerations", 35, "Evaluating diagnostic considerations",
        prompt, DiagnosticAnalysis, DIAGNOSTIC_ANALYSIS_FALLBACK,
    )
    logger.info("Diagnostic considerations generated")
    state["next_node"] = "recommend_treatments"
    return state


@traceable(run_type="llm")
def recommend_treatments(state: ReasoningState, config: RunnableConfig) -> ReasoningState:
    prompt = fill_template(
        TREATMENT_RECOMMENDATIONS_PROMPT,
        patientContext=state["patient_context"],
        previousAnalysis=json.dumps(state["patient_analysis"], ensure_ascii=False),
        diagnosticAnalysis=json.dumps(state["diagnostic_analysis"], ensure_ascii=False),
        query=state["question"],
    )
    state["treatment_recommendations"] = _run_step(
        state, config, "treatment_recommendations", 60, "Generating treatment recommendations",
        prompt, TreatmentRecommendations, TREATMENT_RECOMMENDATIONS_FALLBACK,
    )
    logger.info("Treatment recommendations generated")
    state["next_node"] = "integrate_response"
    return state


@traceable(run_type="llm")
def integrate_response(state: ReasoningState, config: RunnableConfig) -> ReasoningState:
    prompt = fill_template(
        INTEGRATED_RESPONSE_PROMPT,
        query=state["question"],
        clinicalAnalysis=json.dumps(state["patient_analysis"], ensure_ascii=False),
        diagnosticAnalysis=json.dumps(state["diagnostic_analysis"], ensure_ascii=False),
        treatmentRecommendations=json.dumps(state["treatment_recommendations"], ensure_ascii=False),
    )
    state["integrated_response"] = _run_step(
        state, config, "integrated_response", 85, "Writing the integrated response",
        prompt, ClinicalResponse, INTEGRATED_RESPONSE_FALLBACK,
    )
    logger.info("Integrated response generated")
    state["next_node"] = END
    return state


def router(state: ReasoningState):
    if state["fail_fast"] and state["error"]:
        return END
    return state["next_node"]


workflow = StateGraph(ReasoningState)

# Add nodes
workflow.add_node("prepare_context", prepare_context)
workflow.add_node("analyze_patient", analyze_patient)
workflow.add_node("evaluate_diagnoses", evaluate_diagnoses)
workflow.add_node("recommend_treatments", recommend_treatments)
workflow.add_node("integrate_response", integrate_response)

# Create edges
workflow.add_edge("prepare_context", "analyze_patient")
workflow.add_conditional_edges("analyze_patient", router)
workflow.add_conditional_edges("evaluate_diagnoses", router)
workflow.add_conditional_edges("recommend_treatments", router)
workflow.add_edge("integrate_response", END)

# Set the entry point
workflow.set_entry_point("prepare_context")

# Compile the graph
ClinicalReasoningGraph = workflow.compile()


def _initial_state(question: str, patient_id: Optional[str] = None, patient_context: Optional[str] = None,
                   exclude_query_id: Optional[int] = None, fail_fast: bool = False) -> ReasoningState:
    return {
        "patient_id": patient_id,
        "exclude_query_id": exclude_query_id,
        "question": question,
        "patient_context": patient_context,
        "patient_analysis": None,
        "diagnostic_analysis": None,
        "treatment_recommendations": None,
        "integrated_response": None,
        "step_results": [],
        "next_node": "analyze_patient",
        "fail_fast": fail_fast,
        "error": None,
    }


def _full_analysis(state: ReasoningState) -> dict:
    return FullAnalysis(
        patient_analysis=state["patient_analysis"],
        diagnostic_analysis=state["diagnostic_analysis"],
        treatment_recommendations=state["treatment_recommendations"],
    ).model_dump(by_alias=True)


class ClinicalReasoningFlow:
    """
    Runs the four-step clinical reasoning pipeline for one patient question.

    Every step has its own fallback, so a failing step degrades the answer
    instead of aborting it.
    """

    def __init__(self, patient_id: str, question: str, include_full_analysis: bool = False,
                 temperature: float = DEFAULT_TEMPERATURE, llm: Optional[ClinicalLLM] = None,
                 stream_manager: Optional[ResponseStreamManager] = None,
                 exclude_query_id: Optional[int] = None):
        self.patient_id = patient_id
        self.question = question
        self.include_full_analysis = include_full_analysis
        self.temperature = temperature
        if llm is None:
            llm = get_clinical_llm() if temperature == DEFAULT_TEMPERATURE else ClinicalLLM(temperature=temperature)
        self.llm = llm
        self.stream_manager = stream_manager
        self.exclude_query_id = exclude_query_id
        self.state: Optional[ReasoningState] = None

    def execute(self) -> dict:
        try:
            self.state = ClinicalReasoningGraph.invoke(
                _initial_state(self.question, patient_id=self.patient_id, exclude_query_id=self.exclude_query_id),
                {"configurable": {"llm": self.llm, "stream_manager": self.stream_manager}},
            )
            response = dict(self.state["integrated_response"])
            if self.include_full_analysis:
                response["fullAnalysis"] = _full_analysis(self.state)
            else:
                response.pop("fullAnalysis", None)
            return response
        except Exception as e:
            logger.error(f"Error in the clinical reasoning flow: {e}")
            return FLOW_ERROR_RESPONSE.model_dump(by_alias=True, exclude_none=True)


def run_clinical_analysis_flow(patient_context: Union[StructuredPatientData, dict, str], question: str,
                               use_streaming: bool = False, llm: Optional[ClinicalLLM] = None,
                               stream_manager: Optional[ResponseStreamManager] = None,
                               include_full_analysis: bool = False) -> dict:
    """
    Run the pipeline on a context supplied by the caller, stopping at the first failed step.

    Args:
        patient_context: Structured context, its JSON form, or ready-made prompt text
        question: The professional's question
        use_streaming: Relay tokens to a stream manager (the shared one unless given)
        llm: Client to use instead of the configured default
        stream_manager: Manager receiving chunks and progress events
        include_full_analysis: Attach the intermediate step outputs

    Returns:
        The integrated response, or an error response naming the failed step
    """
    manager = None
    if use_streaming:
        manager = stream_manager or response_stream_manager
        manager.reset(keep_listeners=True)

    try:
        if isinstance(patient_context, str):
            context_text = patient_context
        else:
            context_text = context_to_text(StructuredPatientData.model_validate(patient_context))

        state = ClinicalReasoningGraph.invoke(
            _initial_state(question, patient_context=context_text, fail_fast=True),
            {"configurable": {"llm": llm or get_clinical_llm(), "stream_manager": manager}},
        )
        if state["error"]:
            return create_error_response(state["error"])

        response = dict(state["integrated_response"])
        response.pop("fullAnalysis", None)
        if include_full_analysis:
            response["fullAnalysis"] = _full_analysis(state)
        return response
    except Exception as e:
        logger.error(f"Error in the clinical analysis flow: {e}")
        return create_error_response(str(e))
