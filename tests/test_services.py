"""Tests for service modules - buffer, question detection, extraction, concepts, phases, prompts."""

import pytest

from consultia.models.consultation import Concept, ConsultationPhase, ExtractedInformation
from consultia.models.transcript import Speaker, TranscriptEntry
from consultia.services.clinical_extractor import (
    ClinicalExtractor,
    critical_signals,
    has_critical_signal,
)
from consultia.services.concept_tracker import ConceptTracker
from consultia.services.phase_classifier import PhaseTracker, classify_phase, rule_for
from consultia.services.prompts import (
    ALREADY_MENTIONED,
    NO_CONCEPTS_YET,
    NO_QUESTIONS_YET,
    NOT_MENTIONED,
    build_analysis_prompt,
    build_final_report_prompt,
)
from consultia.services.question_detector import is_question
from consultia.services.transcript_buffer import TranscriptBuffer


def _entry(text: str, speaker: Speaker = Speaker.PATIENT, ts: str = "2024-01-01T10:00:00") -> TranscriptEntry:
    return TranscriptEntry(timestamp=ts, speaker=speaker, text=text)


# --- Transcript Buffer ---


class TestTranscriptBuffer:
    def test_keeps_insertion_order(self):
        buf = TranscriptBuffer(5)
        for i in range(3):
            buf.append(_entry(f"msg {i}"))
        assert [e.text for e in buf.snapshot()] == ["msg 0", "msg 1", "msg 2"]

    def test_evicts_oldest_first(self):
        buf = TranscriptBuffer(20)
        for i in range(25):
            buf.append(_entry(f"msg {i}"))
        snapshot = buf.snapshot()
        assert len(snapshot) == 20
        assert snapshot[0].text == "msg 5"
        assert snapshot[-1].text == "msg 24"

    def test_snapshot_is_immutable_copy(self):
        buf = TranscriptBuffer(3)
        buf.append(_entry("uno"))
        snapshot = buf.snapshot()
        buf.append(_entry("dos"))
        assert len(snapshot) == 1

    def test_render_uses_role_labels(self):
        buf = TranscriptBuffer(3)
        buf.append(_entry("¿Qué le pasa?", Speaker.CLINICIAN))
        buf.append(_entry("Me duele la cabeza"))
        rendered = buf.render()
        assert 'Médico: "¿Qué le pasa?"' in rendered
        assert 'Paciente: "Me duele la cabeza"' in rendered

    def test_clear(self):
        buf = TranscriptBuffer(3)
        buf.append(_entry("uno"))
        buf.clear()
        assert len(buf) == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            TranscriptBuffer(0)


# --- Question Detector ---


class TestQuestionDetector:
    @pytest.mark.parametrize(
        "text",
        [
            "¿Desde cuándo le duele?",
            "Cómo es el dolor",
            "Tiene fiebre",
            "Dígame dónde le molesta",
            "Entonces le duele más por la noche?",
            "le duele al tragar",
        ],
    )
    def test_detects_questions(self, text):
        assert is_question(text) is True

    @pytest.mark.parametrize(
        "text",
        ["Vamos a revisar la presión.", "Bien, siéntese.", "Quédese tranquilo.", "Cómodo así.", "", "   "],
    )
    def test_rejects_statements(self, text):
        assert is_question(text) is False


# --- Clinical Extractor ---


class TestClinicalExtractor:
    def test_headache_duration_intensity(self):
        extractor = ClinicalExtractor()
        extractor.extract("Tengo dolor de cabeza desde ayer, como un 7 de 10")
        info = extractor.info
        assert "dolor de cabeza" in info.symptoms_mentioned
        assert info.duration_mentioned is True
        assert info.intensity_mentioned is True
        assert info.location_mentioned is True

    def test_medications_and_allergies(self):
        extractor = ClinicalExtractor()
        extractor.extract("Tomo losartán y metformina, soy alérgico a la penicilina")
        assert {"losartán", "metformina"} <= extractor.info.medications_mentioned
        assert "penicilina" in extractor.info.allergies_mentioned

    def test_allergy_without_term(self):
        extractor = ClinicalExtractor()
        extractor.extract("Tengo alergias pero no recuerdo")
        assert extractor.info.allergies_mentioned == {"alergia referida"}

    def test_history(self):
        extractor = ClinicalExtractor()
        extractor.extract("Soy diabético y tengo la presión alta")
        assert {"diabetes", "hipertensión"} <= extractor.info.medical_history

    def test_facts_never_revert(self):
        extractor = ClinicalExtractor()
        extractor.extract("Me duele desde hace tres días")
        before = extractor.info.model_copy(deep=True)
        extractor.extract("Bueno, no sé")
        extractor.extract("")
        assert extractor.info.duration_mentioned is True
        assert before.symptoms_mentioned <= extractor.info.symptoms_mentioned

    def test_no_match_leaves_info_empty(self):
        extractor = ClinicalExtractor()
        extractor.extract("Buenos días doctor")
        assert extractor.info == ExtractedInformation()

    def test_reset(self):
        extractor = ClinicalExtractor()
        extractor.extract("Tengo fiebre")
        extractor.reset()
        assert extractor.info.symptoms_mentioned == set()


class TestCriticalSignals:
    def test_chest_pain(self):
        assert "cardiorrespiratorio" in critical_signals("Tengo dolor de pecho muy fuerte")

    def test_bleeding(self):
        assert has_critical_signal("Vi sangre al toser") is True

    def test_plain_sentence(self):
        assert critical_signals("Buenos días") == []


# --- Conceptual Answer Tracker ---


class TestConceptTracker:
    def test_detects_duration_and_intensity(self):
        tracker = ConceptTracker()
        created = tracker.analyze("Tengo dolor de cabeza desde ayer, como un 7 de 10")
        concepts = {a.concept for a in created}
        assert Concept.TEMPORAL_DURATION in concepts
        assert Concept.PAIN_INTENSITY in concepts
        assert all(a.confidence == 0.8 for a in created)

    def test_first_answer_wins(self):
        tracker = ConceptTracker()
        tracker.analyze("Me empezó ayer")
        tracker.analyze("Llevo dos semanas así")
        answers = [a for a in tracker.answers if a.concept == Concept.TEMPORAL_DURATION]
        assert len(answers) == 1
        assert answers[0].answered_by == "Me empezó ayer"

    def test_unrelated_text(self):
        tracker = ConceptTracker()
        assert tracker.analyze("Hola doctor, buenas") == []
        assert tracker.is_answered(Concept.TEMPORAL_DURATION) is False

    def test_clear(self):
        tracker = ConceptTracker()
        tracker.analyze("Desde ayer")
        tracker.clear()
        assert tracker.answers == []


# --- Phase Classifier ---


class TestPhaseClassifier:
    def test_listening_at_start(self):
        assert classify_phase(0, 0) == ConsultationPhase.LISTENING

    def test_exploring_after_two_patient_messages(self):
        assert classify_phase(2, 0) == ConsultationPhase.EXPLORING

    def test_question_escalation_from_exploring(self):
        assert classify_phase(2, 3) == ConsultationPhase.DIFFERENTIAL

    def test_chained_escalation(self):
        assert classify_phase(2, 5) == ConsultationPhase.CONFIRMATION
        assert classify_phase(4, 5) == ConsultationPhase.CONFIRMATION

    def test_questions_do_not_escalate_listening(self):
        assert classify_phase(1, 10) == ConsultationPhase.LISTENING

    def test_threshold_phases(self):
        assert classify_phase(4, 0) == ConsultationPhase.DIFFERENTIAL
        assert classify_phase(6, 0) == ConsultationPhase.CONFIRMATION

    def test_monotone_in_counters(self):
        previous = ConsultationPhase.LISTENING
        for p in range(8):
            for q in range(8):
                phase = classify_phase(p, q)
                assert phase >= classify_phase(p, 0)
                if q:
                    assert phase >= classify_phase(p, q - 1)
            assert classify_phase(p, 0) >= previous
            previous = classify_phase(p, 0)

    def test_rule_table(self):
        assert rule_for(ConsultationPhase.LISTENING).max_questions == 0
        assert rule_for(ConsultationPhase.EXPLORING).max_questions == 2
        assert rule_for(ConsultationPhase.DIFFERENTIAL).max_questions == 3
        assert rule_for(ConsultationPhase.CONFIRMATION).max_questions == 1


class TestPhaseTracker:
    def test_update_reports_transitions(self):
        tracker = PhaseTracker()
        assert tracker.update(1, 0) is False
        assert tracker.update(2, 0) is True
        assert tracker.phase == ConsultationPhase.EXPLORING
        assert tracker.update(2, 0) is False

    def test_reset(self):
        tracker = PhaseTracker()
        tracker.update(6, 0)
        tracker.reset()
        assert tracker.phase == ConsultationPhase.LISTENING


# --- Prompt Assembler ---


class TestAnalysisPrompt:
    def test_marks_known_facts(self):
        extractor = ClinicalExtractor()
        tracker = ConceptTracker()
        text = "Tengo dolor de cabeza desde ayer, como un 7 de 10"
        extractor.extract(text)
        tracker.analyze(text)

        prompt = build_analysis_prompt(
            transcript=[_entry(text)],
            doctor_questions=["¿Qué le trae por aquí?"],
            info=extractor.info,
            answers=tracker.answers,
            phase=ConsultationPhase.LISTENING,
        )
        assert f"- Duración: {ALREADY_MENTIONED}" in prompt
        assert f"- Intensidad: {ALREADY_MENTIONED}" in prompt
        assert 'duracion_temporal: "Tengo dolor de cabeza' in prompt
        assert "- ¿Qué le trae por aquí?" in prompt
        assert "FASE ACTUAL DE LA CONSULTA: LISTENING" in prompt

    def test_empty_state_placeholders(self):
        prompt = build_analysis_prompt(
            transcript=[],
            doctor_questions=[],
            info=ExtractedInformation(),
            answers=[],
            phase=ConsultationPhase.EXPLORING,
        )
        assert NO_QUESTIONS_YET in prompt
        assert NO_CONCEPTS_YET in prompt
        assert f"- Duración: {NOT_MENTIONED}" in prompt
        assert "Máximo: 2 preguntas" in prompt

    def test_schema_is_embedded(self):
        prompt = build_analysis_prompt([], [], ExtractedInformation(), [], ConsultationPhase.LISTENING)
        for field in ("red_flags", "suggested_questions", "requires_immediate_attention"):
            assert field in prompt


class TestFinalReportPrompt:
    def test_includes_full_transcript(self):
        entries = [_entry("¿Cómo está?", Speaker.CLINICIAN), _entry("Mal, con fiebre")]
        prompt = build_final_report_prompt(entries)
        assert 'Médico: "¿Cómo está?"' in prompt
        assert 'Paciente: "Mal, con fiebre"' in prompt
        assert "cie10_code" in prompt
