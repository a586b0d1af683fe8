"""Prompt composer for the vision model's scan analysis.

The vision model answers in the markdown layout of ``DIAGNOSIS_ANSWER_TEMPLATE``.
That prose is turned into JSON by a second call (see ``diagnosis_parsing``).
"""

from __future__ import annotations

from hepnovate.models import Diagnosis, LabResult, MedicalHistory, Vitals

DIAGNOSIS_SYSTEM = """\
You are a medical AI assistant supporting a physician. You analyze medical scan \
images together with the patient's symptoms, vitals, laboratory results and \
history, and you answer in the exact section layout you are given."""

DIAGNOSIS_ANSWER_TEMPLATE = """\
Provide a detailed analysis in the following format:

## Medical Scan Image Analysis
- [Describe 3-5 key findings visible in the scan]
- [Note any abnormalities or areas of concern]

## Primary Diagnosis
[State the most specific and likely diagnosis based on imaging and symptoms]

## Reasoning
- [List 2-4 specific pieces of evidence supporting the diagnosis]
- [Explain how symptoms and imaging findings correlate]

## Treatment Plan
- [Recommend 2-4 specific treatments or interventions]
- [Include necessary medications or procedures with details]

## Differential Diagnoses
- [List 2-3 other possible conditions to consider]

## Severity and Prognosis
Severity: [Choose exactly one: Mild, Moderate, or Severe]
Expected recovery rate: [Provide a specific percentage between 0-100]%"""


def _vitals_section(vitals: Vitals | None) -> str:
    if vitals is None:
        return ""
    entries = [
        f"{key}: {value}"
        for key, value in vitals.model_dump(by_alias=True, exclude_none=True).items()
        if value
    ]
    return f"Patient vitals: {', '.join(entries)}" if entries else ""


def _labs_section(lab_results: list[LabResult] | None) -> str:
    entries = [
        f"{lab.name}: {lab.value}{' ' + lab.unit if lab.unit else ''}"
        for lab in lab_results or []
    ]
    return f"Lab results: {', '.join(entries)}" if entries else ""


def _history_section(history: MedicalHistory | None) -> str:
    if history is None:
        return ""
    parts: list[str] = []
    if history.active_conditions:
        conditions = ", ".join(
            f"{c.condition} (diagnosed: {c.date})" for c in history.active_conditions
        )
        parts.append(f"Active conditions: {conditions}.")
    if history.current_medication:
        medications = ", ".join(
            f"{m.name} {m.dosage}".strip() for m in history.current_medication
        )
        parts.append(f"Current medications: {medications}.")
    return f"Medical history: {' '.join(parts)}" if parts else ""


def compose_diagnosis_prompt(
    symptoms: list[str],
    vitals: Vitals | None = None,
    lab_results: list[LabResult] | None = None,
    medical_history: MedicalHistory | None = None,
    feedback: str | None = None,
    previous_diagnosis: Diagnosis | None = None,
) -> str:
    """Build the user prompt for the scan analysis call.

    Context sections are appended only when their input is non-empty, in a
    fixed order, so equal inputs always give the same prompt.
    """
    symptom_text = ", ".join(s for s in symptoms if s.strip()) or "none reported"
    sections = [
        "Analyze this medical scan image along with the following patient "
        f"symptoms: {symptom_text}."
    ]
    sections.append(_vitals_section(vitals))
    sections.append(_labs_section(lab_results))
    sections.append(_history_section(medical_history))

    feedback = (feedback or "").strip()
    if feedback:
        sections.append(
            "IMPORTANT: A physician reviewed a previous analysis and provided this "
            f'feedback: "{feedback}"'
        )
    if previous_diagnosis is not None:
        sections.append(
            f"The previous diagnosis was {previous_diagnosis.name} with "
            f"{previous_diagnosis.confidence}% confidence and "
            f"{previous_diagnosis.severity.value.lower()} severity. "
            "Please reconsider based on the feedback."
        )

    closing = (
        "Address the physician's feedback directly."
        if feedback
        else "Avoid vague statements or placeholders."
    )
    sections.append(DIAGNOSIS_ANSWER_TEMPLATE)
    sections.append(f"Be specific, detailed, and clear in your analysis. {closing}")
    return "\n\n".join(section for section in sections if section)
