"""
HTML fragments for displaying clinical responses.

Rendered with Jinja2 templates from ``hopeai/templates`` with autoescaping on,
so model output can never inject markup into the page.
"""

from pathlib import Path
from typing import Iterable, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from hopeai.schemas import ClinicalReference, ClinicalResponse, DiagnosticAnalysis, TreatmentRecommendations

TEMPLATES_DIR = Path(__file__).parent / "templates"

env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

NO_RESPONSE_HTML = '<div class="error-message">A valid response could not be obtained.</div>'


def _render(template_name: str, **context) -> str:
    return env.get_template(template_name).render(**context).strip()


def format_references(references: Optional[Iterable[Union[ClinicalReference, dict]]]) -> str:
    items = [ClinicalReference.model_validate(ref) for ref in references or []]
    return _render("references.html", references=items)


def format_diagnostic_considerations(diagnostic_analysis: Optional[Union[DiagnosticAnalysis, dict]]) -> str:
    analysis = DiagnosticAnalysis.model_validate(diagnostic_analysis or {})
    return _render("diagnostic_considerations.html", considerations=analysis.diagnostic_considerations)


def format_treatment_recommendations(recommendations: Optional[Union[TreatmentRecommendations, dict]]) -> str:
    return _render(
        "treatment_recommendations.html",
        recommendations=TreatmentRecommendations.model_validate(recommendations or {}),
    )


def format_clinical_response(response: Optional[Union[ClinicalResponse, dict]]) -> str:
    """Render a full clinical response, disclaimer first."""
    if not response:
        return NO_RESPONSE_HTML
    response = ClinicalResponse.model_validate(response)
    return _render("clinical_response.html", response=response, references=response.references)
