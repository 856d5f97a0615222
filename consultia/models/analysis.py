from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


class _Item(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Symptom(_Item):
    name: str = ""
    severity: str = "moderado"  # leve | moderado | severo
    confidence: float = 0.0
    mentioned_by: str = "paciente"  # medico | paciente


class Diagnosis(_Item):
    name: str = ""
    probability: float = 0.0
    confidence: float = 0.0
    supporting_symptoms: list[str] = []
    risk_level: str = "bajo"  # bajo | medio | alto | critico


class Medication(_Item):
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    route: str = "oral"  # oral | iv | im | topica | sublingual | inhalada
    instructions: str = ""
    contraindications: list[str] = []
    side_effects: list[str] = []
    category: str = "otro"


class Recommendation(_Item):
    type: str = "seguimiento"  # medicamento | examen | procedimiento | seguimiento | derivacion | lifestyle
    description: str = ""
    priority: str = "media"
    reasoning: str = ""
    medication: Medication | None = None
    timeline: str | None = None


class RedFlag(_Item):
    alert: str = ""
    severity: str = "advertencia"  # advertencia | critico | emergencia
    action_required: str = ""


class FollowUpRecommendation(_Item):
    type: str = "control_medico"
    description: str = ""
    timeframe: str = ""
    priority: str = "media"
    specific_instructions: str = ""


class AlternativeTreatment(_Item):
    type: str = "lifestyle"
    description: str = ""
    effectiveness: str = "media"
    evidence_level: str = "media"
    instructions: str = ""
    duration: str = ""


class EmergencyCriteria(_Item):
    symptom: str = ""
    severity_threshold: str = ""
    time_frame: str = "24_horas"  # inmediato | 1-2_horas | 24_horas
    action: str = "contactar_medico"  # llamar_911 | ir_emergencias | contactar_medico
    reasoning: str = ""


class SuggestedQuestion(_Item):
    id: str = ""
    question: str = ""
    category: str = "sintoma"  # sintoma | antecedente | examen_fisico | descarte | seguimiento
    priority: str = "media"
    reasoning: str = ""
    target_diagnosis: str | None = None


class MedicalAnalysis(BaseModel):
    """Incremental analysis returned by the reasoning engine.

    All fields are required: a response missing any of them is rejected.
    """

    model_config = ConfigDict(frozen=True)

    symptoms: list[Symptom]
    diagnoses: list[Diagnosis]
    recommendations: list[Recommendation]
    red_flags: list[RedFlag]
    follow_up: list[FollowUpRecommendation]
    alternative_treatments: list[AlternativeTreatment]
    emergency_criteria: list[EmergencyCriteria]
    suggested_questions: list[SuggestedQuestion]
    summary: StrictStr
    confidence_level: float = Field(strict=True, ge=0.0, le=1.0)
    requires_immediate_attention: StrictBool


# Field name -> the key a bare string list item is mapped onto during coercion.
ANALYSIS_ITEM_KEYS = {
    "symptoms": "name",
    "diagnoses": "name",
    "recommendations": "description",
    "red_flags": "alert",
    "follow_up": "description",
    "alternative_treatments": "description",
    "emergency_criteria": "symptom",
    "suggested_questions": "question",
}


class PatientInfo(BaseModel):
    session_id: str = ""
    date: str = ""
    duration: str = ""
    total_interactions: int = 0


class SymptomReport(_Item):
    normal_language: str = ""
    technical_language: str = ""
    cie10_code: str | None = None
    severity: str = "moderado"
    confidence: float = 0.0


class DiagnosisReport(_Item):
    normal_language: str = ""
    technical_language: str = ""
    cie10_code: str = ""
    probability: float = 0.0
    confidence: float = 0.0
    supporting_evidence: list[str] = []
    differential_diagnoses: list[str] = []


class ExaminationRecommendation(_Item):
    type: str = "laboratorio"  # laboratorio | imagen | fisica | especializada
    name: str = ""
    reason: str = ""
    urgency: str = "rutinario"  # inmediato | urgente | rutinario
    expected_findings: str = ""


class FinalMedicalReport(BaseModel):
    patient_info: PatientInfo = PatientInfo()
    executive_summary: str = ""
    symptoms_report: list[SymptomReport] = []
    diagnoses_report: list[DiagnosisReport] = []
    medications_prescribed: list[Recommendation] = []
    examinations_recommended: list[ExaminationRecommendation] = []
    follow_up_plan: list[FollowUpRecommendation] = []
    emergency_criteria: list[EmergencyCriteria] = []
    alternative_treatments: list[AlternativeTreatment] = []
    doctor_notes: str = ""
    overall_confidence: float = Field(0.0, ge=0.0, le=1.0)
    requires_immediate_attention: bool = False
