"""Prompt templates for the History and Physical write-up."""

from __future__ import annotations

import json

from hepnovate.models import WriteUpRequest

WRITEUP_SYSTEM = """\
You are a medical documentation specialist. Create a formal medical write-up \
(History and Physical) from the diagnosis information you are given. Follow \
proper medical documentation format and use proper medical terminology."""

WRITEUP_SECTIONS = """\
Create a complete medical write-up with the following sections:
1. Chief Concern (CC): A brief statement of why the patient is seeking care
2. History of Present Illness (HPI): Detailed narrative of the symptoms and their progression
3. Past Medical History (PMH): If available
4. Past Surgical History (PSH): If available
5. Medications: If available
6. Allergies: If available
7. Social History: If available
8. Family History: If available
9. Review of Systems (ROS): Brief, focused on relevant systems
10. Physical Examination: Create plausible findings consistent with the diagnosis
11. Lab Results/Studies: Include any provided lab values
12. Assessment: Summarize findings and state primary diagnosis with confidence
13. Plan: Detailed treatment approach based on the provided plan

Focus on making this document professionally formatted and medically sound. \
Make reasonable assumptions for any missing information based on the diagnosis."""


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def compose_writeup_prompt(request: WriteUpRequest) -> str:
    """Build the write-up prompt around the primary (first) diagnosis."""
    primary = request.diagnoses[0]
    lines = [
        "DIAGNOSIS INFORMATION:",
        f"Primary Diagnosis: {primary.name}",
        f"Severity: {primary.severity.value}",
        f"Confidence: {primary.confidence}%",
        f"Clinical Findings: {', '.join(primary.findings)}",
        f"Differential Diagnoses: {', '.join(primary.differential)}",
        f"Treatment Plan: {', '.join(primary.plan)}",
        "",
    ]
    if request.symptoms:
        lines.append(f"Patient Symptoms: {', '.join(request.symptoms)}")
    if request.vitals is not None:
        lines.append(f"Vitals: {_dump(request.vitals.model_dump(by_alias=True, exclude_none=True))}")
    if request.lab_results:
        labs = [lab.model_dump(by_alias=True, exclude_none=True) for lab in request.lab_results]
        lines.append(f"Lab Results: {_dump(labs)}")
    if request.medical_history is not None:
        history = request.medical_history.model_dump(by_alias=True, exclude_none=True)
        lines.append(f"Medical History: {_dump(history)}")
    if request.physician_assessment:
        lines.append(f"Physician Assessment: {request.physician_assessment}")
    lines.append("")
    lines.append(WRITEUP_SECTIONS)
    return "\n".join(lines)
