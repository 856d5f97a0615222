"""Prompt assembly for the reasoning engine.

Every prompt is self-contained: the engine keeps no conversation state, so the
transcript window, the facts already known and the questions already asked are
serialized on every call.
"""

import json
from collections.abc import Iterable, Sequence

from consultia.models.analysis import FinalMedicalReport, MedicalAnalysis
from consultia.models.consultation import (
    ConceptualAnswer,
    ConsultationPhase,
    ExtractedInformation,
)
from consultia.models.transcript import TranscriptEntry
from consultia.services.phase_classifier import rule_for

ANALYSIS_SYSTEM_PROMPT = (
    "Eres un asistente médico especializado en análisis de consultas en tiempo real. "
    "Responde únicamente con un objeto JSON válido."
)

REPORT_SYSTEM_PROMPT = (
    "Eres un médico especialista que redacta informes clínicos finales. "
    "Responde únicamente con un objeto JSON válido."
)

NO_QUESTIONS_YET = "(Ninguna pregunta específica detectada aún)"
NO_CONCEPTS_YET = "- Ningún concepto respondido aún"
NO_TRANSCRIPT_YET = "(Sin transcripción todavía)"

ALREADY_MENTIONED = "✅ YA MENCIONADA"
NOT_MENTIONED = "❌ NO mencionada"

PHASE_INSTRUCTIONS = {
    ConsultationPhase.LISTENING: """\
🔇 FASE DE ESCUCHA ACTIVA ({description})
- NO sugieras preguntas todavía: el paciente está contando su motivo de consulta.
- Deja que termine de explicar sus síntomas principales.
- Solo sugiere preguntas si el paciente parece haber terminado por completo.
- Máximo: {max_questions} preguntas.""",
    ConsultationPhase.EXPLORING: """\
🔍 FASE DE EXPLORACIÓN ({description})
- Haz preguntas para profundizar en el síntoma principal.
- Enfócate en: caracterización del síntoma y cronología específica.
- NO preguntes todavía por antecedentes familiares ni examen físico.
- Máximo: {max_questions} preguntas muy específicas.
- Solo preguntas que el paciente NO haya respondido conceptualmente.""",
    ConsultationPhase.DIFFERENTIAL: """\
🎯 FASE DE DIAGNÓSTICO DIFERENCIAL ({description})
- Preguntas para DESCARTAR diagnósticos concretos.
- Enfócate en: examen físico dirigido, antecedentes relevantes, factores de riesgo.
- Cada pregunta debe tener impacto diagnóstico real.
- Máximo: {max_questions} preguntas ultra dirigidas, priorizadas por su capacidad de cambiar el diagnóstico.""",
    ConsultationPhase.CONFIRMATION: """\
✅ FASE DE CONFIRMACIÓN ({description})
- Solo preguntas CRÍTICAS para confirmar el diagnóstico o detectar signos de alarma.
- Enfócate en: red flags, confirmaciones finales, seguridad del paciente.
- Máximo: {max_questions} pregunta crítica.
- Si no hay nada crítico que preguntar, deja suggested_questions vacío.""",
}

GENERAL_INSTRUCTIONS = """\
1. Analiza la conversación entre el médico y el paciente.
2. Identifica los síntomas mencionados por el paciente.
3. Sugiere posibles diagnósticos basados en esos síntomas.
4. RECOMENDACIONES FARMACOLÓGICAS DETALLADAS (campo recommendations, type "medicamento"):
   - Medicamento con nombre genérico y comercial
   - Dosis exacta (mg, ml, unidades) y frecuencia (cada 8h, 2 veces al día...)
   - Duración del tratamiento y vía de administración (oral, tópica, IM, IV...)
   - Instrucciones (con comida, en ayunas...), contraindicaciones y efectos secundarios a vigilar
5. RECOMENDACIONES DE SEGUIMIENTO (campo follow_up):
   - Controles médicos, estudios complementarios, derivaciones, autocuidado
6. TRATAMIENTOS ALTERNATIVOS NO FARMACOLÓGICOS (campo alternative_treatments):
   - Terapias con evidencia, cambios de estilo de vida, duración y efectividad esperada
7. CRITERIOS DE EMERGENCIA ESPECÍFICOS (campo emergency_criteria):
   - Síntoma y umbral de gravedad concreto
   - time_frame: "inmediato" | "1-2_horas" | "24_horas"
   - action: "llamar_911" | "ir_emergencias" | "contactar_medico"
8. Detecta cualquier red flag que requiera atención inmediata (campo red_flags).
9. PREGUNTAS SUGERIDAS (campo suggested_questions), reglas ESTRICTAS:
   - ❌ NO repitas preguntas ya hechas por el médico (ni equivalentes en significado)
   - ❌ NO preguntes información YA PROPORCIONADA por el paciente
   - ❌ NO hagas preguntas obvias o genéricas
   - ✅ Enfócate en DETALLES FALTANTES de la información ya mencionada
   - ✅ Haz preguntas ESPECÍFICAS que llenen vacíos diagnósticos o descarten diagnósticos
   - ✅ Respeta la fase actual: como máximo {max_questions} preguntas
10. confidence_level es un número entre 0 y 1; requires_immediate_attention es booleano.
11. Responde ÚNICAMENTE con un objeto JSON válido que siga este esquema, sin texto adicional:
{schema}"""

REPORT_INSTRUCTIONS = """\
1. SÍNTOMAS (symptoms_report), cada uno en DOS versiones:
   - normal_language: lenguaje comprensible para el paciente
   - technical_language: terminología médica, con cie10_code cuando aplique
2. DIAGNÓSTICOS (diagnoses_report), cada uno en DOS versiones:
   - normal_language: descripción para comunicar al paciente
   - technical_language: terminología técnica, con cie10_code OBLIGATORIO
3. CÓDIGOS CIE-10 específicos, nunca rangos de categoría:
   - Correcto: "R51 - Cefalea". Incorrecto: "R50-R69 - Síntomas generales"
   - Usa códigos de 4-5 caracteres; si no tienes el exacto, el más específico posible
4. EXÁMENES RECOMENDADOS (examinations_recommended) con type:
   "laboratorio" | "imagen" | "fisica" | "especializada", y urgency: "inmediato" | "urgente" | "rutinario"
5. ESTRUCTURA PROFESIONAL:
   - executive_summary claro
   - Evidencia que soporta cada diagnóstico y diagnósticos diferenciales
   - follow_up_plan con marcos temporales concretos
   - emergency_criteria con time_frame ("inmediato" | "1-2_horas" | "24_horas") y
     action ("llamar_911" | "ir_emergencias" | "contactar_medico")
6. overall_confidence es un número entre 0 y 1.
7. Responde ÚNICAMENTE con un objeto JSON válido que siga este esquema, sin texto adicional:
{schema}"""


def _schema(model) -> str:
    return json.dumps(model.model_json_schema(), ensure_ascii=False)


def _render_transcript(transcript: Sequence[TranscriptEntry]) -> str:
    if not transcript:
        return NO_TRANSCRIPT_YET
    return "\n".join(entry.render() for entry in transcript)


def _render_questions(questions: Sequence[str]) -> str:
    if not questions:
        return NO_QUESTIONS_YET
    return "\n".join(f"- {question}" for question in questions)


def _render_list(values: Iterable[str], empty: str) -> str:
    items = sorted(values)
    return ", ".join(items) if items else empty


def _mark(flag: bool) -> str:
    return ALREADY_MENTIONED if flag else NOT_MENTIONED


def _render_concepts(answers: Sequence[ConceptualAnswer]) -> str:
    if not answers:
        return NO_CONCEPTS_YET
    return "\n".join(f'- {answer.concept.value}: "{answer.answered_by}"' for answer in answers)


def phase_instructions(phase: ConsultationPhase) -> str:
    rule = rule_for(phase)
    return PHASE_INSTRUCTIONS[phase].format(
        description=rule.description,
        max_questions=rule.max_questions,
    )


def build_analysis_prompt(
    transcript: Sequence[TranscriptEntry],
    doctor_questions: Sequence[str],
    info: ExtractedInformation,
    answers: Sequence[ConceptualAnswer],
    phase: ConsultationPhase,
) -> str:
    rule = rule_for(phase)
    general = GENERAL_INSTRUCTIONS.format(
        max_questions=rule.max_questions,
        schema=_schema(MedicalAnalysis),
    )
    return f"""\
CONTEXTO DE LA CONSULTA:
{_render_transcript(transcript)}

PREGUNTAS YA REALIZADAS POR EL MÉDICO:
{_render_questions(doctor_questions)}

INFORMACIÓN YA PROPORCIONADA POR EL PACIENTE:
- Síntomas mencionados: {_render_list(info.symptoms_mentioned, "Ninguno específico")}
- Duración: {_mark(info.duration_mentioned)}
- Intensidad: {_mark(info.intensity_mentioned)}
- Localización: {_mark(info.location_mentioned)}
- Medicamentos actuales: {_render_list(info.medications_mentioned, "Ninguno mencionado")}
- Alergias: {_render_list(info.allergies_mentioned, "Ninguna mencionada")}
- Antecedentes: {_render_list(info.medical_history, "Ninguno mencionado")}

CONCEPTOS RESPONDIDOS INDIRECTAMENTE (no volver a preguntar):
{_render_concepts(answers)}

FASE ACTUAL DE LA CONSULTA: {phase.value.upper()}

INSTRUCCIONES ESPECÍFICAS SEGÚN LA FASE:
{phase_instructions(phase)}

INSTRUCCIONES GENERALES:
{general}
"""


def build_final_report_prompt(transcript: Sequence[TranscriptEntry]) -> str:
    instructions = REPORT_INSTRUCTIONS.format(schema=_schema(FinalMedicalReport))
    return f"""\
Genera el INFORME MÉDICO FINAL de la consulta.

CONVERSACIÓN COMPLETA:
{_render_transcript(transcript)}

INSTRUCCIONES PARA EL INFORME FINAL:
{instructions}
"""
