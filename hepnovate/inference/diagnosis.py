"""Scan diagnosis: vision analysis, JSON structuring call, tolerant repair."""

import base64
import binascii
from datetime import datetime, timezone
import logging
import re

from hepnovate.config import settings
from hepnovate.errors import InvalidInputError, RemoteModelError
from hepnovate.inference.client import chat_completion
from hepnovate.inference.json_repair import default_diagnosis_response, repair_diagnosis_response
from hepnovate.models import DiagnoseRequest, DiagnosisResponse, DiagnosisResult
from hepnovate.prompts import (
    DIAGNOSIS_PARSING_SYSTEM,
    DIAGNOSIS_PARSING_USER,
    DIAGNOSIS_SYSTEM,
    compose_diagnosis_prompt,
)

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


def validate_image_base64(image_base64: str | None) -> str:
    """Return the image as sent, after checking it decodes as base64."""
    if not image_base64 or not image_base64.strip():
        raise InvalidInputError("Missing image data")
    image = image_base64.strip()
    payload = "".join(_DATA_URL_PREFIX.sub("", image).split())
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError("Invalid Base64 image") from e
    if not decoded:
        raise InvalidInputError("Invalid Base64 image")
    return image


async def structure_analysis(analysis: str) -> DiagnosisResponse:
    """Ask the text model for diagnosis JSON and repair whatever comes back."""
    try:
        raw = await chat_completion(
            system_prompt=DIAGNOSIS_PARSING_SYSTEM,
            user_prompt=DIAGNOSIS_PARSING_USER.format(analysis=analysis),
            model=settings.text_model,
            max_tokens=settings.parsing_max_tokens,
            temperature=settings.parsing_temperature,
            call_type="diagnosis_parsing",
        )
    except Exception as e:
        logger.warning("Diagnosis parsing call failed, using default diagnosis: %s", e)
        return default_diagnosis_response()
    return repair_diagnosis_response(raw)


async def diagnose(request: DiagnoseRequest) -> DiagnosisResult:
    """Run the full diagnosis flow for one scan and its patient context."""
    image = validate_image_base64(request.image_base64)
    prompt = compose_diagnosis_prompt(
        symptoms=request.symptoms,
        vitals=request.vitals,
        lab_results=request.lab_results,
        medical_history=request.medical_history,
        feedback=request.feedback,
        previous_diagnosis=request.previous_diagnosis,
    )

    try:
        analysis = await chat_completion(
            system_prompt=DIAGNOSIS_SYSTEM,
            user_prompt=prompt,
            model=settings.vision_model,
            max_tokens=settings.diagnosis_max_tokens,
            temperature=settings.diagnosis_temperature,
            image_base64=image,
            call_type="diagnosis_vision",
        )
    except Exception as e:
        logger.error("Vision model call failed: %s", e, exc_info=True)
        raise RemoteModelError("Vision model API request failed") from e

    if not analysis.strip():
        logger.error("Vision model returned no text.")
        raise RemoteModelError("No generated text in response")

    structured = await structure_analysis(analysis)
    if not structured.diagnoses:
        raise RemoteModelError("Failed to parse diagnosis response")

    logger.info(
        "Diagnosis ready: %s (%s%%, %s)",
        structured.diagnoses[0].name,
        structured.diagnoses[0].confidence,
        structured.diagnoses[0].severity.value,
    )
    return DiagnosisResult(
        diagnoses=structured.diagnoses,
        image_data=image,
        symptoms=request.symptoms,
        vitals=request.vitals,
        lab_results=request.lab_results,
        medical_history=request.medical_history,
        timestamp=datetime.now(timezone.utc).isoformat(),
        raw_diagnosis_text=analysis,
    )
