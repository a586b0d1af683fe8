"""Fixed vocabulary of common symptoms scanned for directly in transcripts."""

from __future__ import annotations

import re


COMMON_SYMPTOMS = [
    "headache",
    "fever",
    "pain",
    "nausea",
    "cough",
    "sore throat",
    "fatigue",
    "dizziness",
    "vomiting",
    "diarrhea",
    "chills",
    "shortness of breath",
    "chest pain",
    "abdominal pain",
    "back pain",
    "rash",
    "jaundice",
    "itching",
]

_CANONICAL_BY_ALIAS = {
    "pyrexia": "fever",
    "febrile": "fever",
    "coughing": "cough",
    "pharyngitis": "sore throat",
    "throat pain": "sore throat",
    "tiredness": "fatigue",
    "exhaustion": "fatigue",
    "breathlessness": "shortness of breath",
    "dyspnea": "shortness of breath",
    "dyspnoea": "shortness of breath",
    "stomach pain": "abdominal pain",
    "belly pain": "abdominal pain",
    "emesis": "vomiting",
    "throwing up": "vomiting",
    "diarrhoea": "diarrhea",
    "loose stools": "diarrhea",
    "migraine": "headache",
    "giddiness": "dizziness",
    "lightheadedness": "dizziness",
    "vertigo": "dizziness",
    "pruritus": "itching",
    "yellow skin": "jaundice",
    "icterus": "jaundice",
}


def _normalize(text: str) -> str:
    return " ".join(text.lower().strip().split())


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    words = [re.escape(word) for word in phrase.split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"\b", re.IGNORECASE)


_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (_phrase_pattern(term), term) for term in COMMON_SYMPTOMS
] + [
    (_phrase_pattern(alias), canonical) for alias, canonical in _CANONICAL_BY_ALIAS.items()
]


def canonical_symptom(name: str) -> str:
    """Map a known alias to its canonical symptom name.

    Unknown names pass through with whitespace collapsed and case kept.
    """
    return _CANONICAL_BY_ALIAS.get(_normalize(name), " ".join(name.split()))


def scan_transcript(transcript: str) -> list[str]:
    """Return canonical vocabulary symptoms mentioned in the transcript.

    Matching is case-insensitive and bounded by words, so "pain" does not hit
    "painting". Results keep vocabulary order and contain no duplicates.
    """
    found: list[str] = []
    for pattern, canonical in _PATTERNS:
        if canonical in found:
            continue
        if pattern.search(transcript):
            found.append(canonical)
    return found


def substring_scan(transcript: str) -> list[str]:
    """Plain substring pass over the vocabulary, used when rule extraction fails."""
    lowered = transcript.lower()
    return [term for term in COMMON_SYMPTOMS if term in lowered]
