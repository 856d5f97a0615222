import logging
import re
import time

from consultia.models.consultation import Concept, ConceptualAnswer

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE

ANSWER_CONFIDENCE = 0.8

CONCEPT_PATTERNS: dict[Concept, tuple[re.Pattern, ...]] = {
    Concept.TEMPORAL_DURATION: (
        re.compile(
            r"\b(desde|hace|durante|llevo|ayer|hoy|anoche|días?|semanas?|meses|años?|horas?|tiempo)\b",
            _FLAGS,
        ),
    ),
    Concept.PAIN_INTENSITY: (
        re.compile(
            r"(intensidad|\bfuerte\b|\bleve\b|\bmoderad[oa]\b|\bsever[oa]\b|\d+.*\b10\b|escala|"
            r"dolor.*mucho|\bpoco\b)",
            _FLAGS,
        ),
    ),
    Concept.SYMPTOM_LOCATION: (
        re.compile(
            r"\b(cabeza|estómago|pecho|espalda|brazos?|piernas?|abdomen|garganta|cuello|"
            r"aquí|ahí|lado)\b",
            _FLAGS,
        ),
    ),
    Concept.PAIN_CHARACTER: (
        re.compile(
            r"\b(pulsátil|constante|punzante|sordo|quemante|ardor|opresivo|eléctrico|"
            r"cólico|tipo|como)\b",
            _FLAGS,
        ),
    ),
    Concept.TRIGGERS: (
        re.compile(
            r"\b(empeora|mejora|cuando|movimiento|moverme|reposo|comida|comer|estrés|actividad|"
            r"esfuerzo)\b",
            _FLAGS,
        ),
    ),
    Concept.ASSOCIATED_SYMPTOMS: (
        re.compile(
            r"\b(también|además|acompañado|junto|náuseas|vómitos?|fiebre|mareos?)\b",
            _FLAGS,
        ),
    ),
}


class ConceptTracker:
    """Detects concepts the patient has already answered, asked or not."""

    def __init__(self, patterns: dict[Concept, tuple[re.Pattern, ...]] = CONCEPT_PATTERNS) -> None:
        self.patterns = patterns
        self._answers: dict[Concept, ConceptualAnswer] = {}

    def analyze(self, text: str) -> list[ConceptualAnswer]:
        """Record the first answer for each concept evidenced by ``text``.

        Returns the answers created by this call.
        """
        created = []
        if not text:
            return created
        for concept, patterns in self.patterns.items():
            if concept in self._answers:
                continue
            if any(pattern.search(text) for pattern in patterns):
                answer = ConceptualAnswer(
                    concept=concept,
                    answered_by=text,
                    timestamp=time.time(),
                    confidence=ANSWER_CONFIDENCE,
                )
                self._answers[concept] = answer
                created.append(answer)
                logger.info('Concept answered: %s -> "%s"', concept.value, text[:80])
        return created

    def is_answered(self, concept: Concept) -> bool:
        return concept in self._answers

    @property
    def answers(self) -> list[ConceptualAnswer]:
        return list(self._answers.values())

    def clear(self) -> None:
        self._answers.clear()
