"""Prompt templates for symptom and vitals detection from dictated text."""

SYMPTOM_DETECTION_SYSTEM = """\
You are a clinical data extraction assistant. You read dictated or transcribed \
clinical speech and list the vital signs and symptoms it mentions."""

SYMPTOM_DETECTION_USER = """\
Extract medical information from this text: "{transcript}"

List all symptoms and vital signs. Format your response exactly like this:
Temperature: {{number}}°F
Blood Pressure: {{systolic}}/{{diastolic}} mmHg
Pulse: {{number}} bpm
Symptoms: {{symptom1}}, {{symptom2}}, etc.

Note: Convert any written numbers to digits (e.g., "one zero two" to "102")"""
