from typing import List, Optional, TypedDict, Union

# LangChain imports
from langsmith import traceable
from langchain_core.runnables import RunnableConfig

# LangGraph imports
from langgraph.graph import StateGraph, START, END

# Local imports
from hopeai.config import logger
from hopeai.llm import ClinicalLLM, get_clinical_llm
from hopeai.prompts import (
    diagnoses_prompt,
    diagnoses_request,
    dsm_analysis_prompt,
    dsm_analysis_request,
    extract_symptoms_prompt,
    extract_symptoms_request,
    fill_template,
    question_prompt,
    question_request,
    treatments_prompt,
    treatments_request,
)
from hopeai.schemas import SymptomAnalysis
from hopeai.utils import split_lines


##################### Graph Compiling Script #####################
# This script compiles the LangGraph graph for the free-text symptom analysis.
class SymptomAnalysisState(TypedDict):
    patient_info: str
    symptoms: List[str]
    dsm_analysis: List[str]
    possible_diagnoses: List[str]
    treatment_suggestions: List[str]
    current_thinking: str


def _llm(config: RunnableConfig) -> ClinicalLLM:
    return (config or {}).get("configurable", {}).get("llm") or get_clinical_llm()


def router(state: SymptomAnalysisState):
    # Resume from the first stage without output
    if not state["symptoms"]:
        return "extract_symptoms"
    elif not state["dsm_analysis"]:
        return "analyze_dsm"
    elif not state["possible_diagnoses"]:
        return "generate_diagnoses"
    elif not state["treatment_suggestions"]:
        return "suggest_treatments"
    else:
        return END


@traceable(run_type="llm")
def extract_symptoms(state: SymptomAnalysisState, config: RunnableConfig) -> SymptomAnalysisState:
    prompt = fill_template(extract_symptoms_request, patientInfo=state["patient_info"])
    state["symptoms"] = split_lines(_llm(config).generate(prompt, system_prompt=extract_symptoms_prompt))
    state["current_thinking"] = "Identifying the patient's symptoms"
    return state


@traceable(run_type="llm")
def analyze_dsm(state: SymptomAnalysisState, config: RunnableConfig) -> SymptomAnalysisState:
    prompt = fill_template(dsm_analysis_request, symptoms="\n".join(state["symptoms"]))
    state["dsm_analysis"] = split_lines(_llm(config).generate(prompt, system_prompt=dsm_analysis_prompt))
    state["current_thinking"] = "Comparing symptoms with DSM-5 criteria"
    return state


@traceable(run_type="llm")
def generate_diagnoses(state: SymptomAnalysisState, config: RunnableConfig) -> SymptomAnalysisState:
    prompt = fill_template(
        diagnoses_request,
        symptoms="\n".join(state["symptoms"]),
        dsmAnalysis="\n".join(state["dsm_analysis"]),
    )
    state["possible_diagnoses"] = split_lines(_llm(config).generate(prompt, system_prompt=diagnoses_prompt))
    state["current_thinking"] = "Formulating possible diagnoses"
    return state


@traceable(run_type="llm")
def suggest_treatments(state: SymptomAnalysisState, config: RunnableConfig) -> SymptomAnalysisState:
    prompt = fill_template(treatments_request, diagnoses="\n".join(state["possible_diagnoses"]))
    state["treatment_suggestions"] = split_lines(_llm(config).generate(prompt, system_prompt=treatments_prompt))
    state["current_thinking"] = "Suggesting treatment options"
    return state


workflow = StateGraph(SymptomAnalysisState)

# Add nodes
workflow.add_node("extract_symptoms", extract_symptoms)
workflow.add_node("analyze_dsm", analyze_dsm)
workflow.add_node("generate_diagnoses", generate_diagnoses)
workflow.add_node("suggest_treatments", suggest_treatments)

# Create edges
workflow.add_conditional_edges(START, router)
workflow.add_edge("extract_symptoms", "analyze_dsm")
workflow.add_edge("analyze_dsm", "generate_diagnoses")
workflow.add_edge("generate_diagnoses", "suggest_treatments")
workflow.add_edge("suggest_treatments", END)

# Compile the graph
SymptomAnalysisGraph = workflow.compile()


def run_clinical_analysis(patient_info: Union[str, SymptomAnalysis, dict],
                          llm: Optional[ClinicalLLM] = None) -> SymptomAnalysis:
    """
    Run the symptom analysis on a free-text patient description.

    A partially filled analysis can be passed instead of text; stages that
    already have output are not run again.
    """
    if isinstance(patient_info, str):
        initial = SymptomAnalysis(patient_info=patient_info)
    else:
        initial = SymptomAnalysis.model_validate(patient_info)

    logger.info(f"Running symptom analysis on {len(initial.patient_info)} characters of patient data")
    try:
        result = SymptomAnalysisGraph.invoke(initial.model_dump(), {"configurable": {"llm": llm}})
    except Exception as e:
        logger.error(f"Error running the symptom analysis graph: {e}")
        raise
    return SymptomAnalysis.model_validate(result)


def answer_clinical_question(state: Union[SymptomAnalysis, dict], question: str,
                             llm: Optional[ClinicalLLM] = None) -> str:
    """Answer a question using the output of a previous symptom analysis."""
    analysis = SymptomAnalysis.model_validate(state)
    prompt = fill_template(
        question_request,
        symptoms="\n".join(analysis.symptoms),
        dsmAnalysis="\n".join(analysis.dsm_analysis),
        diagnoses="\n".join(analysis.possible_diagnoses),
        treatments="\n".join(analysis.treatment_suggestions),
        query=question,
    )
    try:
        return (llm or get_clinical_llm()).generate(prompt, system_prompt=question_prompt)
    except Exception as e:
        logger.error(f"Error answering clinical question: {e}")
        raise
