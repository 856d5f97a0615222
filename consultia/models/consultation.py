from enum import Enum

from pydantic import BaseModel, Field


class ConsultationPhase(str, Enum):
    LISTENING = "listening"
    EXPLORING = "exploring"
    DIFFERENTIAL = "differential"
    CONFIRMATION = "confirmation"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ConsultationPhase):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ConsultationPhase):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ConsultationPhase):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ConsultationPhase):
            return NotImplemented
        return self.rank >= other.rank


_PHASE_ORDER = [
    ConsultationPhase.LISTENING,
    ConsultationPhase.EXPLORING,
    ConsultationPhase.DIFFERENTIAL,
    ConsultationPhase.CONFIRMATION,
]


class PhaseRule(BaseModel):
    phase: ConsultationPhase
    min_patient_messages: int
    max_questions: int
    question_types: list[str] = []
    description: str = ""


class Concept(str, Enum):
    """Semantic units of information tracked for 'already answered' suppression."""

    TEMPORAL_DURATION = "duracion_temporal"
    PAIN_INTENSITY = "intensidad_dolor"
    SYMPTOM_LOCATION = "localizacion_sintoma"
    PAIN_CHARACTER = "caracteristicas_dolor"
    TRIGGERS = "factores_desencadenantes"
    ASSOCIATED_SYMPTOMS = "sintomas_asociados"


class ConceptualAnswer(BaseModel):
    concept: Concept
    answered_by: str
    timestamp: float
    confidence: float = Field(0.8, ge=0.0, le=1.0)


class ExtractedInformation(BaseModel):
    """Cumulative facts stated by the patient. Grows only."""

    symptoms_mentioned: set[str] = set()
    duration_mentioned: bool = False
    intensity_mentioned: bool = False
    location_mentioned: bool = False
    medications_mentioned: set[str] = set()
    allergies_mentioned: set[str] = set()
    medical_history: set[str] = set()


class SessionStats(BaseModel):
    session_id: str
    transcriptions_processed: int
    patient_messages: int
    analyses_generated: int
    doctor_questions_detected: int
    conceptual_answers: int
    consultation_phase: ConsultationPhase
    extracted_info: ExtractedInformation
    session_duration_ms: int
    is_analyzing: bool = False
    last_analysis_time: str | None = None
