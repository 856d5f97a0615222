"""Pattern-based extraction of clinical facts from patient utterances.

Rules are data: each rule names the ``ExtractedInformation`` field it feeds and the
pattern that evidences it. Boolean fields flip to True on the first match; set
fields collect either the rule's fixed value or the text captured by a ``term``
group. Nothing is ever removed.
"""

import logging
import re
from dataclasses import dataclass

from consultia.models.consultation import ExtractedInformation

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE


@dataclass(frozen=True)
class ExtractionRule:
    field: str
    pattern: re.Pattern
    value: str | None = None


def _rule(field: str, pattern: str, value: str | None = None) -> ExtractionRule:
    return ExtractionRule(field=field, pattern=re.compile(pattern, _FLAGS), value=value)


SYMPTOM_RULES = (
    _rule("symptoms_mentioned", r"\b(dolor|duele|me duele|dolores)\b", "dolor"),
    _rule("symptoms_mentioned", r"\b(dolor de cabeza|cefalea|migraña|jaqueca)\b", "dolor de cabeza"),
    _rule("symptoms_mentioned", r"\b(fiebre|calentura|temperatura)\b", "fiebre"),
    _rule("symptoms_mentioned", r"\b(náuseas|nauseas|ganas de vomitar|mareos?)\b", "náuseas/mareo"),
    _rule("symptoms_mentioned", r"\b(vómitos?|vomitar|vomité)\b", "vómito"),
    _rule("symptoms_mentioned", r"\b(tos|toser|toso)\b", "tos"),
    _rule("symptoms_mentioned", r"\b(cansancio|fatiga|agotad[oa]|cansad[oa])\b", "cansancio"),
    _rule("symptoms_mentioned", r"\b(diarrea|estreñimiento|estreñid[oa])\b", "alteración intestinal"),
    _rule(
        "symptoms_mentioned",
        r"(dificultad para respirar|falta de aire|me ahogo|no puedo respirar)",
        "dificultad respiratoria",
    ),
)

DURATION_RULES = (
    _rule(
        "duration_mentioned",
        r"\b(desde|hace|durante|por|llevo)\s+(?:\w+\s+){0,2}?"
        r"(ayer|hoy|anoche|días?|semanas?|mes|meses|años?|horas?|minutos?|rato)\b",
    ),
)

INTENSITY_RULES = (
    _rule(
        "intensity_mentioned",
        r"(del 1 al 10|escala|intensidad|\bfuerte\b|\bleve\b|\bmoderad[oa]\b|\bsever[oa]\b|"
        r"\binsoportable\b|\b\d+\s*de\s*10\b)",
    ),
)

LOCATION_RULES = (
    _rule(
        "location_mentioned",
        r"\b(cabeza|estómago|pecho|espalda|brazos?|piernas?|abdomen|barriga|garganta|"
        r"cuello|rodillas?|hombros?|costado|vientre|oídos?|ojos?)\b",
    ),
)

MEDICATION_RULES = (
    _rule(
        "medications_mentioned",
        r"\b(?P<term>ibuprofeno|paracetamol|aspirina|omeprazol|losartán|losartan|metformina|"
        r"enalapril|amoxicilina|diclofenaco|naproxeno|salbutamol|insulina|atorvastatina|"
        r"levotiroxina|metamizol)\b",
    ),
)

ALLERGY_RULES = (
    _rule(
        "allergies_mentioned",
        r"\b(?:alérgic[oa]s?|alergias?)\b(?:\s+(?:a|al)(?:\s+(?:la|las|los))?\s+(?P<term>\w+))?",
        "alergia referida",
    ),
    _rule(
        "allergies_mentioned",
        r"\bno (?:puedo|tolero) tomar\s+(?:el\s+|la\s+)?(?P<term>\w+)",
    ),
)

HISTORY_RULES = (
    _rule("medical_history", r"\b(hipertens[oa]|hipertensión|presión alta|tensión alta)\b", "hipertensión"),
    _rule("medical_history", r"\b(diabetes|diabétic[oa]|azúcar alta)\b", "diabetes"),
    _rule("medical_history", r"\b(asma|asmátic[oa])\b", "asma"),
    _rule("medical_history", r"\b(epoc|enfisema|bronquitis crónica)\b", "EPOC"),
    _rule("medical_history", r"\b(infarto|cardiopatía|problemas del corazón)\b", "cardiopatía"),
    _rule("medical_history", r"\b(cáncer|tumor)\b", "oncológico"),
    _rule("medical_history", r"\b(me operaron|operad[oa] de|cirugía)\b", "quirúrgico"),
)

EXTRACTION_RULES: tuple[ExtractionRule, ...] = (
    SYMPTOM_RULES
    + DURATION_RULES
    + INTENSITY_RULES
    + LOCATION_RULES
    + MEDICATION_RULES
    + ALLERGY_RULES
    + HISTORY_RULES
)

# Urgency signals: advisory only, never recorded.
CRITICAL_PATTERNS = {
    "cardiorrespiratorio": re.compile(
        r"(dolor de pecho|dolor torácico|dificultad para respirar|falta de aire)", _FLAGS
    ),
    "sangrado": re.compile(r"\b(sangre|sangrado|sangra|hemorragia)\b", _FLAGS),
    "conciencia": re.compile(r"(desmay|pérdida de conciencia|perdí el conocimiento|convulsi)", _FLAGS),
    "fiebre_alta": re.compile(r"(fiebre alta|temperatura alta|\b(39|40|41)\s*(grados|°)?)", _FLAGS),
    "irradiacion": re.compile(r"(irradia|se extiende|se me pasa hacia|se corre hacia)", _FLAGS),
    "evolucion": re.compile(r"\b(empeora|empeoró|mejora|mejoró|peor|mejor)\b", _FLAGS),
    "temporalidad": re.compile(r"(por la noche|por la mañana|al moverme|al moverse|en reposo)", _FLAGS),
    "recencia": re.compile(r"\b(ahora|actualmente|en este momento|desde hace poco)\b", _FLAGS),
    "cambio": re.compile(r"\b(diferente|cambió|ya no|antes sí)\b", _FLAGS),
}


class ClinicalExtractor:
    def __init__(
        self,
        info: ExtractedInformation | None = None,
        rules: tuple[ExtractionRule, ...] = EXTRACTION_RULES,
    ) -> None:
        self.info = info if info is not None else ExtractedInformation()
        self.rules = rules

    def extract(self, text: str) -> None:
        """Record every concept evidenced by ``text`` that is not already known."""
        if not text:
            return
        for rule in self.rules:
            current = getattr(self.info, rule.field)
            if isinstance(current, bool):
                if not current and rule.pattern.search(text):
                    setattr(self.info, rule.field, True)
                    logger.info("Concept recorded: %s", rule.field)
                continue

            for match in rule.pattern.finditer(text):
                value = self._value_for(rule, match)
                if value and value not in current:
                    current.add(value)
                    logger.info("Concept recorded: %s -> %s", rule.field, value)

    @staticmethod
    def _value_for(rule: ExtractionRule, match: re.Match) -> str | None:
        if "term" in rule.pattern.groupindex:
            term = match.group("term")
            if term:
                return term.lower()
        return rule.value

    def reset(self) -> None:
        self.info = ExtractedInformation()


def critical_signals(text: str) -> list[str]:
    """Names of the urgency patterns present in ``text``."""
    if not text:
        return []
    return [name for name, pattern in CRITICAL_PATTERNS.items() if pattern.search(text)]


def has_critical_signal(text: str) -> bool:
    return bool(critical_signals(text))
