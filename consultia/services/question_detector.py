import re

_QUESTION_PATTERNS = (
    re.compile(r"\?"),
    re.compile(
        r"^\s*(?:¿|(?:cómo|cuándo|dónde|qué|cuál|cuáles|por qué|desde cuándo|cuánto|"
        r"tiene|siente|ha tenido|le duele)\b)",
        re.IGNORECASE,
    ),
    re.compile(r"\b(dígame|cuénteme|explíqueme|explique|describa|describe)\b", re.IGNORECASE),
)


def is_question(text: str) -> bool:
    """Classify a clinician utterance as a question."""
    if not text or not text.strip():
        return False
    return any(pattern.search(text) for pattern in _QUESTION_PATTERNS)
