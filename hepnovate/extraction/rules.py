"""Rule-based vitals and symptom extraction from transcripts and model text."""

from __future__ import annotations

import logging
import re

from hepnovate.extraction.symptom_vocabulary import (
    canonical_symptom,
    scan_transcript,
    substring_scan,
)
from hepnovate.models import ExtractionResult, Vitals

logger = logging.getLogger(__name__)

_LEAD_IN = r"[\s:=]*(?:(?:is|of|was|at|about|around)\s+)*"

_TEMPERATURE_DIGITS = re.compile(
    r"\btemperature\b" + _LEAD_IN + r"(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_TEMPERATURE_SPOKEN = re.compile(
    r"\btemperature\b"
    + _LEAD_IN
    + r"((?:(?:zero|one|two|three|four|five|six|seven|eight|nine|point|\d+)\b[\s,-]*)+"
    r"(?:(?:degrees?|fahrenheit|f)\b)?)",
    re.IGNORECASE,
)
_BLOOD_PRESSURE = re.compile(
    r"\bblood\s+pressure\b" + _LEAD_IN + r"(\d{2,3})\s*(?:/|\bover\b)\s*(\d{2,3})",
    re.IGNORECASE,
)
_PULSE = re.compile(
    r"\b(?:pulse(?:\s+rate)?|heart\s+rate)\b" + _LEAD_IN + r"(\d{2,3})\b",
    re.IGNORECASE,
)
_SYMPTOMS_LINE = re.compile(r"\bsymptoms\s*:\s*([^\n]+)", re.IGNORECASE)
_FEVER_WORD = re.compile(r"\bfever\b", re.IGNORECASE)

_VALID_TEMPERATURE = re.compile(r"^\d+(\.\d+)?°F$")
_VALID_BLOOD_PRESSURE = re.compile(r"^\d+/\d+ mmHg$")
_VALID_PULSE = re.compile(r"^\d+ bpm$")

_DIGIT_WORDS = {
    "zero": "0",
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
    "seven": "7",
    "eight": "8",
    "nine": "9",
    "point": ".",
}
_UNIT_WORDS = {"degree", "degrees", "fahrenheit", "f"}
_PLACEHOLDER_TOKENS = {"none", "not mentioned", "etc", "n/a", "unknown", "symptoms"}
_FEVER_THRESHOLD_F = 99.0


def _first_match(pattern: re.Pattern[str], *sources: str) -> re.Match[str] | None:
    for source in sources:
        if not source:
            continue
        match = pattern.search(source)
        if match:
            return match
    return None


def _spoken_digits_to_numeral(phrase: str) -> str:
    """Transliterate "one zero two fahrenheit" into "102"."""
    digits: list[str] = []
    for token in re.findall(r"[a-z]+|\d+", phrase.lower()):
        if token in _UNIT_WORDS:
            continue
        if token.isdigit():
            digits.append(token)
        elif token in _DIGIT_WORDS:
            digits.append(_DIGIT_WORDS[token])
    return "".join(digits)


def extract_temperature(transcript: str, model_response: str = "") -> str | None:
    match = _first_match(_TEMPERATURE_DIGITS, model_response, transcript)
    if match:
        candidate = f"{match.group(1)}°F"
    else:
        spoken = _first_match(_TEMPERATURE_SPOKEN, transcript)
        if spoken is None:
            return None
        candidate = f"{_spoken_digits_to_numeral(spoken.group(1))}°F"
    return candidate if _VALID_TEMPERATURE.match(candidate) else None


def extract_blood_pressure(transcript: str, model_response: str = "") -> str | None:
    match = _first_match(_BLOOD_PRESSURE, model_response, transcript)
    if match is None:
        return None
    candidate = f"{match.group(1)}/{match.group(2)} mmHg"
    return candidate if _VALID_BLOOD_PRESSURE.match(candidate) else None


def extract_pulse(transcript: str, model_response: str = "") -> str | None:
    match = _first_match(_PULSE, model_response, transcript)
    if match is None:
        return None
    candidate = f"{match.group(1)} bpm"
    return candidate if _VALID_PULSE.match(candidate) else None


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]


def _is_placeholder(token: str) -> bool:
    return "{" in token or "}" in token or token.lower().rstrip(".") in _PLACEHOLDER_TOKENS


def parse_symptoms_line(model_response: str) -> list[str]:
    """Split a ``Symptoms: a, b, c`` line from model output into clean names."""
    match = _SYMPTOMS_LINE.search(model_response or "")
    if match is None:
        return []
    symptoms: list[str] = []
    for raw in match.group(1).split(","):
        token = raw.strip().rstrip(".").strip()
        if not token or _is_placeholder(token):
            continue
        symptoms.append(_capitalize(canonical_symptom(token)))
    return symptoms


def dedup_symptoms(symptoms: list[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping first-seen order, and capitalize."""
    seen: set[str] = set()
    result: list[str] = []
    for symptom in symptoms:
        cleaned = " ".join(symptom.split())
        key = cleaned.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(_capitalize(cleaned))
    return result


def _temperature_value(temperature: str | None) -> float | None:
    if not temperature or not _VALID_TEMPERATURE.match(temperature):
        return None
    return float(temperature[: -len("°F")])


def ensure_fever(symptoms: list[str], vitals: Vitals, transcript: str = "") -> list[str]:
    """Add "Fever" when the temperature is above 99°F or the transcript says fever."""
    temperature = _temperature_value(vitals.temperature)
    febrile = temperature is not None and temperature > _FEVER_THRESHOLD_F
    if febrile or _FEVER_WORD.search(transcript or ""):
        symptoms = list(symptoms) + ["Fever"]
    return dedup_symptoms(symptoms)


def _fallback(transcript: object) -> ExtractionResult:
    text = transcript if isinstance(transcript, str) else ""
    return ExtractionResult(symptoms=dedup_symptoms(substring_scan(text)), vitals=Vitals())


def extract_vitals_and_symptoms(transcript: str, model_response: str = "") -> ExtractionResult:
    """Extract vitals and symptoms; never raises.

    ``model_response`` is the free-text answer of the symptom-detection model, if
    any. Vitals are searched for in the model response before the transcript.
    Symptoms are the union of the model's ``Symptoms:`` line and vocabulary hits
    in the transcript. Any unexpected failure degrades to a plain substring scan
    of the transcript.
    """
    try:
        vitals = Vitals(
            temperature=extract_temperature(transcript, model_response),
            blood_pressure=extract_blood_pressure(transcript, model_response),
            pulse=extract_pulse(transcript, model_response),
        )
        symptoms = parse_symptoms_line(model_response)
        symptoms.extend(scan_transcript(transcript))
        symptoms = ensure_fever(symptoms, vitals, transcript)
        return ExtractionResult(symptoms=symptoms, vitals=vitals)
    except Exception:
        logger.exception("Rule extraction failed; falling back to vocabulary scan.")
        return _fallback(transcript)
