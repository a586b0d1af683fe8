"""Recover a validated diagnosis list from unreliable model JSON.

The parser is tiered. Each tier runs only when the previous one failed:

1. direct: strip fences, isolate the ``{"diagnoses": [...]}`` object, fix
   common syntax defects and parse.
2. nested_quotes: additionally rewrite unescaped quotes inside string values.
3. partial: parse only the ``"diagnoses": [...]`` array.
4. scraped: regex the scalar fields and scan the list fields one by one.
5. fallback: a single default diagnosis.

Whatever tier succeeds, every entry goes through ``normalize_diagnosis``.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from hepnovate.inference.list_scanner import find_string_list
from hepnovate.models import (
    DEFAULT_CONFIDENCE,
    DEFAULT_DIAGNOSIS_NAME,
    Diagnosis,
    DiagnosisResponse,
    Severity,
)

logger = logging.getLogger(__name__)

STAGE_DIRECT = "direct"
STAGE_NESTED_QUOTES = "nested_quotes"
STAGE_PARTIAL = "partial"
STAGE_SCRAPED = "scraped"
STAGE_FALLBACK = "fallback"

_FENCE_JSON = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCE_ANY = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)
_OBJECT_START = re.compile(r"\{\s*[\"']?diagnoses[\"']?\s*:")
_ARRAY_START = re.compile(r"[\"']?diagnoses[\"']?\s*:\s*\[")
_STRING_LITERAL = re.compile(r'("(?:[^"\\]|\\.)*")')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_SINGLE_QUOTED_KEY = re.compile(r"([{,]\s*)'([^'\n]+)'\s*:")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_PAREN_KEY = re.compile(r'\(\s*"([^"()]+)"\s*:\s*([^()]*)\)')

_NAME_FIELD = re.compile(r"[\"']?name[\"']?\s*:\s*\"((?:[^\"\\]|\\.)*)\"")
_CONFIDENCE_FIELD = re.compile(r"[\"']?confidence[\"']?\s*:\s*(-?\d+(?:\.\d+)?)")
_SEVERITY_FIELD = re.compile(r"[\"']?severity[\"']?\s*:\s*\"?([A-Za-z]+)")
# A "\n" escape preceded by an even run of backslashes (so not "\\n").
_NEWLINE_ESCAPE = re.compile(r"(?<!\\)((?:\\\\)*)\\n")

_LIST_FIELDS = ("findings", "differential", "plan")


class RepairError(ValueError):
    """Raised internally when a tier cannot produce diagnosis entries."""


# --- text cleanup ---

def strip_code_fences(text: str) -> str:
    """Return the body of a ```json (or generic) fence, else the trimmed text."""
    cleaned = text.strip()
    match = _FENCE_JSON.search(cleaned) or _FENCE_ANY.search(cleaned)
    if match:
        return match.group(1).strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1 :]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _matching_bracket(text: str, start: int) -> int | None:
    """Index of the bracket closing ``text[start]``, honoring string literals."""
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def _isolate(text: str, pattern: re.Pattern[str], opener: str, closer: str) -> str | None:
    match = pattern.search(text)
    if match is None:
        return None
    start = text.find(opener, match.start())
    end = _matching_bracket(text, start)
    if end is None:
        # Unbalanced (often truncated) output: take everything up to the last closer.
        last = text.rfind(closer)
        return text[start : last + 1] if last > start else text[start:]
    return text[start : end + 1]


def locate_diagnoses_object(text: str) -> str | None:
    return _isolate(text, _OBJECT_START, "{", "}")


def locate_diagnoses_array(text: str) -> str | None:
    return _isolate(text, _ARRAY_START, "[", "]")


def _clean_text(text: str) -> str:
    if '\\"diagnoses\\"' in text:
        text = text.replace('\\"', '"')
    text = _NEWLINE_ESCAPE.sub(r"\1 ", text)
    return _CONTROL_CHARS.sub(" ", text)


def _fix_structure(segment: str) -> str:
    segment = _SINGLE_QUOTED_KEY.sub(r'\1"\2":', segment)
    segment = _BARE_KEY.sub(r'\1"\2":', segment)
    return _TRAILING_COMMA.sub(r"\1", segment)


def normalize_json_text(text: str) -> str:
    """Fix formatting defects without touching the inside of string literals."""
    parts = _STRING_LITERAL.split(_clean_text(text))
    # re.split with one capture group alternates: outside, literal, outside, ...
    for index in range(0, len(parts), 2):
        parts[index] = _fix_structure(parts[index])
    return "".join(parts)


def _closes_string(text: str, quote_index: int) -> bool:
    for ch in text[quote_index + 1 :]:
        if ch.isspace():
            continue
        return ch in ",:}]"
    return True


def _neutralize_inner_quotes(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    for index, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                if _closes_string(text, index):
                    in_string = False
                else:
                    ch = "'"
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def repair_nested_quotes(text: str) -> str:
    """Turn ``"sign ("abbr": detail)"`` into ``"sign (abbr: detail)"`` and
    neutralize any other quote that cannot close its string."""
    text = _PAREN_KEY.sub(lambda m: f"({m.group(1)}: {m.group(2).strip()})", text)
    return _neutralize_inner_quotes(text)


# --- tiers ---

def _entries_from(data: Any) -> list[dict]:
    if isinstance(data, dict):
        data = data.get("diagnoses")
    if not isinstance(data, list):
        raise RepairError("diagnoses array missing")
    entries = [item for item in data if isinstance(item, dict)]
    if not entries:
        raise RepairError("diagnoses array has no entries")
    return entries


def _parse_direct(candidate: str, normalized: str) -> list[dict]:
    """Parse the isolated object as is, then with syntax fixes applied."""
    try:
        return _entries_from(json.loads(candidate))
    except (json.JSONDecodeError, RepairError):
        return _entries_from(json.loads(normalized))


def _parse_nested_quotes(normalized: str) -> list[dict]:
    return _entries_from(json.loads(repair_nested_quotes(normalized)))


def _parse_partial(text: str) -> list[dict]:
    array_text = locate_diagnoses_array(text)
    if array_text is None:
        raise RepairError("no diagnoses array found")
    normalized = normalize_json_text(array_text)
    try:
        data = json.loads(normalized)
    except json.JSONDecodeError:
        data = json.loads(repair_nested_quotes(normalized))
    return _entries_from({"diagnoses": data})


def _parse_scraped(text: str) -> list[dict]:
    entry: dict[str, Any] = {}
    name = _NAME_FIELD.search(text)
    if name:
        entry["name"] = name.group(1).replace('\\"', '"')
    confidence = _CONFIDENCE_FIELD.search(text)
    if confidence:
        entry["confidence"] = float(confidence.group(1))
    severity = _SEVERITY_FIELD.search(text)
    if severity:
        entry["severity"] = severity.group(1)
    for field in _LIST_FIELDS:
        items = find_string_list(text, field)
        if items is not None:
            entry[field] = items
    if not entry:
        raise RepairError("no diagnosis fields found")
    return [entry]


def parse_diagnosis_payload(raw_text: str) -> tuple[str, list[dict]]:
    """Run the tiers and return ``(stage, raw entries)``.

    The fallback stage returns an empty entry list.
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return STAGE_FALLBACK, []

    text = strip_code_fences(raw_text)
    candidate = locate_diagnoses_object(text) or text
    normalized = normalize_json_text(candidate)

    tiers = (
        (STAGE_DIRECT, lambda: _parse_direct(candidate, normalized)),
        (STAGE_NESTED_QUOTES, lambda: _parse_nested_quotes(normalized)),
        (STAGE_PARTIAL, lambda: _parse_partial(text)),
        (STAGE_SCRAPED, lambda: _parse_scraped(_clean_text(text))),
    )
    for stage, attempt in tiers:
        try:
            entries = attempt()
        except (json.JSONDecodeError, RepairError, ValueError, TypeError) as e:
            logger.debug("Diagnosis %s parse failed: %s", stage, e)
            continue
        if stage != STAGE_DIRECT:
            logger.warning("Diagnosis JSON recovered by %s repair.", stage)
        return stage, entries

    logger.error("Diagnosis JSON unrecoverable; using default diagnosis.")
    return STAGE_FALLBACK, []


# --- validation ---

def _coerce_confidence(value: Any) -> int:
    """Only JSON numbers count; strings such as "85" or "90%" get the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return int(round(min(max(value, 0), 100)))


def _coerce_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = " ".join(str(item).split())
        if text:
            items.append(text)
    return items


def _coerce_severity(value: Any) -> Severity:
    if isinstance(value, str):
        for severity in Severity:
            if severity.value == value:
                return severity
    return Severity.MODERATE


def normalize_diagnosis(entry: Any) -> Diagnosis:
    """Coerce one raw entry into a valid Diagnosis; never raises."""
    if not isinstance(entry, dict):
        entry = {}
    name = entry.get("name")
    return Diagnosis(
        name=name.strip() if isinstance(name, str) and name.strip() else DEFAULT_DIAGNOSIS_NAME,
        confidence=_coerce_confidence(entry.get("confidence")),
        findings=_coerce_list(entry.get("findings")),
        differential=_coerce_list(entry.get("differential")),
        plan=_coerce_list(entry.get("plan")),
        severity=_coerce_severity(entry.get("severity")),
    )


def default_diagnosis_response() -> DiagnosisResponse:
    return DiagnosisResponse(diagnoses=[Diagnosis()])


def repair_diagnosis_response(raw_text: str) -> DiagnosisResponse:
    """Best-effort conversion of model text into at least one valid Diagnosis."""
    try:
        _, entries = parse_diagnosis_payload(raw_text)
        diagnoses = [normalize_diagnosis(entry) for entry in entries]
    except Exception:
        logger.exception("Unexpected failure while repairing diagnosis JSON.")
        diagnoses = []
    if not diagnoses:
        return default_diagnosis_response()
    return DiagnosisResponse(diagnoses=diagnoses)
