from enum import Enum

from pydantic import BaseModel, ConfigDict


class Speaker(str, Enum):
    CLINICIAN = "medico"
    PATIENT = "paciente"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _SPEAKER_LABELS[self]


_SPEAKER_LABELS = {
    Speaker.CLINICIAN: "Médico",
    Speaker.PATIENT: "Paciente",
    Speaker.UNKNOWN: "Sin identificar",
}

# Diarization index -> role. The provider numbers speakers in order of first
# appearance; the clinician usually opens the consultation.
DIARIZATION_ROLES = {0: Speaker.CLINICIAN, 1: Speaker.PATIENT}


def speaker_from_index(index: int | None) -> Speaker:
    if index is None:
        return Speaker.UNKNOWN
    return DIARIZATION_ROLES.get(index, Speaker.UNKNOWN)


def speaker_label(index: int | None) -> str:
    if index is None:
        return Speaker.UNKNOWN.label
    role = DIARIZATION_ROLES.get(index)
    if role is not None:
        return role.label
    return f"Hablante {index + 1}"


class TranscriptWord(BaseModel):
    word: str = ""
    start: float = 0.0
    end: float = 0.0
    confidence: float = 1.0
    speaker: int | None = None


class TranscriptFragment(BaseModel):
    """A single transcript event from the transcription provider."""

    text: str
    is_final: bool = False
    confidence: float = 0.0
    speaker_index: int | None = None
    start: float | None = None
    end: float | None = None
    words: list[TranscriptWord] = []

    @property
    def speaker(self) -> Speaker:
        return speaker_from_index(self.speaker_index)

    @property
    def speaker_label(self) -> str:
        return speaker_label(self.speaker_index)


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    speaker: Speaker
    text: str
    confidence: float = 1.0

    def render(self) -> str:
        return f'[{self.timestamp}] {self.speaker.label}: "{self.text}"'
