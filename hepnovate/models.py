from __future__ import annotations

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


# --- Diagnosis ---

class Severity(str, Enum):
    MILD = "Mild"
    MODERATE = "Moderate"
    SEVERE = "Severe"


DEFAULT_DIAGNOSIS_NAME = "Unspecified Condition"
DEFAULT_CONFIDENCE = 75


class Diagnosis(_WireModel):
    name: str = DEFAULT_DIAGNOSIS_NAME
    confidence: int = Field(default=DEFAULT_CONFIDENCE, ge=0, le=100)
    findings: list[str] = Field(default_factory=list)
    differential: list[str] = Field(default_factory=list)
    plan: list[str] = Field(default_factory=list)
    severity: Severity = Severity.MODERATE


class DiagnosisResponse(_WireModel):
    diagnoses: list[Diagnosis] = Field(default_factory=list)


# --- Patient context ---

class Vitals(_WireModel):
    model_config = ConfigDict(extra="allow")

    temperature: str | None = None
    blood_pressure: str | None = None
    pulse: str | None = None


class LabResult(_WireModel):
    name: str
    value: str
    unit: str = ""
    flag: str | None = None


class MedicalCondition(_WireModel):
    condition: str
    date: str = ""


class Medication(_WireModel):
    name: str
    dosage: str = ""


class Surgery(_WireModel):
    surgery: str
    date: str = ""


class Allergy(_WireModel):
    allergen: str
    reaction: str = ""


class Immunization(_WireModel):
    immunization: str
    date: str = ""


class MedicalHistory(_WireModel):
    active_conditions: list[MedicalCondition] = Field(default_factory=list)
    current_medication: list[Medication] = Field(default_factory=list)
    past_surgeries: list[Surgery] = Field(default_factory=list)
    allergies: list[Allergy] = Field(default_factory=list)
    social_history: str | None = None
    family_history: str | None = None
    immunizations: list[Immunization] = Field(default_factory=list)


class DiagnosisResult(_WireModel):
    diagnoses: list[Diagnosis] = Field(default_factory=list)
    image_data: str | None = None
    symptoms: list[str] = Field(default_factory=list)
    vitals: Vitals | None = None
    lab_results: list[LabResult] | None = None
    lab_test_date: str | None = None
    medical_history: MedicalHistory | None = None
    timestamp: str | None = None
    raw_diagnosis_text: str | None = None


# --- HTTP payloads ---

class DetectSymptomsRequest(_WireModel):
    transcript: str | None = None


class ExtractionResult(_WireModel):
    symptoms: list[str] = Field(default_factory=list)
    vitals: Vitals = Field(default_factory=Vitals)


class DiagnoseRequest(_WireModel):
    image_base64: str | None = None
    symptoms: list[str] = Field(default_factory=list)
    feedback: str | None = ""
    previous_diagnosis: Diagnosis | None = None
    vitals: Vitals | None = None
    lab_results: list[LabResult] | None = None
    medical_history: MedicalHistory | None = None


class WriteUpRequest(_WireModel):
    diagnoses: list[Diagnosis] = Field(default_factory=list)
    symptoms: list[str] = Field(default_factory=list)
    vitals: Vitals | None = None
    lab_results: list[LabResult] | None = None
    medical_history: MedicalHistory | None = None
    physician_assessment: str | None = None
    image_data: str | None = None


class WriteUpResponse(_WireModel):
    write_up: str
