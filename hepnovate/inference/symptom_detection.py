"""Symptom and vitals detection: model hint followed by rule extraction."""

import logging

from hepnovate.config import settings
from hepnovate.errors import InvalidInputError, RemoteModelError
from hepnovate.extraction.rules import extract_vitals_and_symptoms
from hepnovate.inference.client import chat_completion
from hepnovate.models import ExtractionResult
from hepnovate.prompts import SYMPTOM_DETECTION_SYSTEM, SYMPTOM_DETECTION_USER

logger = logging.getLogger(__name__)


async def detect_symptoms(transcript: str | None) -> ExtractionResult:
    """Detect symptoms and vitals in a transcript.

    The model's answer only feeds the rule engine; the rules decide what is kept.
    """
    if not transcript or not transcript.strip():
        raise InvalidInputError("Missing transcript")

    try:
        raw = await chat_completion(
            system_prompt=SYMPTOM_DETECTION_SYSTEM,
            user_prompt=SYMPTOM_DETECTION_USER.format(transcript=transcript),
            model=settings.resolved_symptom_model,
            max_tokens=settings.symptom_max_tokens,
            temperature=settings.symptom_temperature,
            call_type="symptom_detection",
        )
    except Exception as e:
        logger.error("Symptom detection model call failed: %s", e, exc_info=True)
        raise RemoteModelError("Failed to process medical information") from e

    result = extract_vitals_and_symptoms(transcript, raw)
    logger.info(
        "Detected %s symptoms, vitals=%s",
        len(result.symptoms),
        result.vitals.model_dump(by_alias=True, exclude_none=True),
    )
    return result
