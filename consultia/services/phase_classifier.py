import logging

from consultia.models.consultation import ConsultationPhase, PhaseRule

logger = logging.getLogger(__name__)

PHASE_RULES: tuple[PhaseRule, ...] = (
    PhaseRule(
        phase=ConsultationPhase.LISTENING,
        min_patient_messages=0,
        max_questions=0,
        question_types=[],
        description="Escuchar motivo de consulta sin interrumpir",
    ),
    PhaseRule(
        phase=ConsultationPhase.EXPLORING,
        min_patient_messages=2,
        max_questions=2,
        question_types=["caracterizacion", "cronologia"],
        description="Profundizar en síntoma principal",
    ),
    PhaseRule(
        phase=ConsultationPhase.DIFFERENTIAL,
        min_patient_messages=4,
        max_questions=3,
        question_types=["descarte", "examen_fisico", "antecedentes"],
        description="Diferenciar entre diagnósticos posibles",
    ),
    PhaseRule(
        phase=ConsultationPhase.CONFIRMATION,
        min_patient_messages=6,
        max_questions=1,
        question_types=["confirmacion", "red_flags"],
        description="Confirmar diagnóstico o detectar emergencias",
    ),
)

_RULES_BY_PHASE = {rule.phase: rule for rule in PHASE_RULES}

# Clinician question counts that push the consultation one phase ahead.
EXPLORING_ESCALATION_QUESTIONS = 3
DIFFERENTIAL_ESCALATION_QUESTIONS = 5


def rule_for(phase: ConsultationPhase) -> PhaseRule:
    return _RULES_BY_PHASE[phase]


def classify_phase(patient_messages: int, doctor_questions: int) -> ConsultationPhase:
    phase = ConsultationPhase.LISTENING
    for rule in PHASE_RULES:
        if patient_messages >= rule.min_patient_messages:
            phase = rule.phase

    if doctor_questions >= EXPLORING_ESCALATION_QUESTIONS and phase == ConsultationPhase.EXPLORING:
        phase = ConsultationPhase.DIFFERENTIAL
    if doctor_questions >= DIFFERENTIAL_ESCALATION_QUESTIONS and phase == ConsultationPhase.DIFFERENTIAL:
        phase = ConsultationPhase.CONFIRMATION
    return phase


class PhaseTracker:
    def __init__(self) -> None:
        self.phase = ConsultationPhase.LISTENING

    @property
    def rule(self) -> PhaseRule:
        return rule_for(self.phase)

    def update(self, patient_messages: int, doctor_questions: int) -> bool:
        """Recompute the phase from session counters. Returns True on transition."""
        new_phase = classify_phase(patient_messages, doctor_questions)
        if new_phase == self.phase:
            return False

        old_phase = self.phase
        self.phase = new_phase
        logger.info(
            "Phase change: %s -> %s (%s); patient=%d msgs, clinician=%d questions",
            old_phase.value,
            new_phase.value,
            rule_for(new_phase).description,
            patient_messages,
            doctor_questions,
        )
        return True

    def reset(self) -> None:
        self.phase = ConsultationPhase.LISTENING
