"""Centralized prompt templates for all model calls.

Import any prompt constant or composer directly:
    from hepnovate.prompts import DIAGNOSIS_SYSTEM, compose_diagnosis_prompt
"""

from hepnovate.prompts.diagnosis import (
    DIAGNOSIS_ANSWER_TEMPLATE,
    DIAGNOSIS_SYSTEM,
    compose_diagnosis_prompt,
)
from hepnovate.prompts.diagnosis_parsing import (
    DIAGNOSIS_PARSING_SYSTEM,
    DIAGNOSIS_PARSING_USER,
)
from hepnovate.prompts.symptom_detection import (
    SYMPTOM_DETECTION_SYSTEM,
    SYMPTOM_DETECTION_USER,
)
from hepnovate.prompts.writeup import WRITEUP_SYSTEM, compose_writeup_prompt

__all__ = [
    "DIAGNOSIS_ANSWER_TEMPLATE",
    "DIAGNOSIS_SYSTEM",
    "compose_diagnosis_prompt",
    "DIAGNOSIS_PARSING_SYSTEM",
    "DIAGNOSIS_PARSING_USER",
    "SYMPTOM_DETECTION_SYSTEM",
    "SYMPTOM_DETECTION_USER",
    "WRITEUP_SYSTEM",
    "compose_writeup_prompt",
]
