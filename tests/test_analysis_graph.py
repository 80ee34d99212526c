from hopeai.analysis_graph import answer_clinical_question, run_clinical_analysis
from hopeai.schemas import SymptomAnalysis


def test_run_clinical_analysis_fills_every_stage(make_llm):
    llm = make_llm(
        "- Insomnia\n- Persistent worry",
        "Criterion A met for generalised anxiety disorder",
        "1. F41.1 Generalised anxiety disorder\n2. F51.0 Insomnia",
        "- Cognitive behavioural therapy\n- Sleep hygiene",
    )
    result = run_clinical_analysis("Patient reports worry and insomnia for three months.", llm=llm)

    assert result.symptoms == ["Insomnia", "Persistent worry"]
    assert result.dsm_analysis == ["Criterion A met for generalised anxiety disorder"]
    assert result.possible_diagnoses == ["F41.1 Generalised anxiety disorder", "F51.0 Insomnia"]
    assert result.treatment_suggestions == ["Cognitive behavioural therapy", "Sleep hygiene"]
    assert result.current_thinking == "Suggesting treatment options"


def test_run_clinical_analysis_resumes_from_missing_stage(make_llm):
    partial = SymptomAnalysis(
        patient_info="Patient reports worry.",
        symptoms=["Worry"],
        dsm_analysis=["Criterion A met"],
    )
    llm = make_llm("F41.1 Generalised anxiety disorder", "Cognitive behavioural therapy")
    result = run_clinical_analysis(partial, llm=llm)

    assert result.symptoms == ["Worry"]
    assert result.possible_diagnoses == ["F41.1 Generalised anxiety disorder"]
    assert result.treatment_suggestions == ["Cognitive behavioural therapy"]


def test_run_clinical_analysis_with_complete_state_calls_nothing(broken_llm):
    complete = {
        "patientInfo": "text",
        "symptoms": ["Worry"],
        "dsmAnalysis": ["Criterion A"],
        "possibleDiagnoses": ["F41.1"],
        "treatmentSuggestions": ["CBT"],
    }
    result = run_clinical_analysis(complete, llm=broken_llm)
    assert result.treatment_suggestions == ["CBT"]


def test_answer_clinical_question(make_llm):
    state = {"symptoms": ["Worry"], "possibleDiagnoses": ["F41.1"]}
    answer = answer_clinical_question(state, "Which therapy first?", llm=make_llm("Start with CBT."))
    assert answer == "Start with CBT."
