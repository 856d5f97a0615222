from typing import Any, Literal

from pydantic import BaseModel

SessionStatus = Literal["active", "completed", "cancelled"]


class UserInfo(BaseModel):
    id: str = ""
    email: str = ""
    name: str = ""
    role: str = ""


class SessionData(BaseModel):
    duration: int = 0
    timestamp: str = ""
    user_info: UserInfo = UserInfo()
    report_only: bool = False


class TranscriptionRecord(BaseModel):
    id: str
    speaker: str  # medico | paciente | unknown
    text: str
    timestamp: str
    confidence: float = 1.0
    is_final: bool = True


class MedicalSessionCreate(BaseModel):
    patient_id: str
    doctor_id: str | None = None
    session_data: SessionData | None = None
    transcriptions: list[TranscriptionRecord] = []
    analyses: list[dict[str, Any]] = []
    final_report: dict[str, Any] | None = None
    status: SessionStatus = "active"


class MedicalSessionUpdate(BaseModel):
    final_report: dict[str, Any] | None = None
    status: SessionStatus = "completed"


class MedicalSessionRecord(BaseModel):
    id: str
    patient_id: str
    doctor_id: str | None = None
    session_data: SessionData | None = None
    transcriptions: list[TranscriptionRecord] = []
    analyses: list[dict[str, Any]] = []
    final_report: dict[str, Any] | None = None
    status: SessionStatus = "active"
    created_at: str
    updated_at: str


class ReportsPage(BaseModel):
    reports: list[MedicalSessionRecord]
    page: int
    limit: int
    total: int
    total_pages: int
