"""Session-scoped conversational state and analysis orchestration.

A ``ConsultationSession`` owns everything derived from one consultation: the
transcript window, extracted facts, conceptual answers, clinician questions,
the consultation phase and the analysis history. Fragments are applied one at
a time in arrival order; all derived state is updated synchronously before any
analysis prompt is built from it.
"""

import asyncio
import logging
import time
import uuid
from datetime import UTC, datetime

from consultia.config import TRANSCRIPT_WINDOW
from consultia.errors import ConsultationTooShortError, EngineError
from consultia.models.analysis import FinalMedicalReport, MedicalAnalysis, PatientInfo
from consultia.models.consultation import (
    ConceptualAnswer,
    ConsultationPhase,
    ExtractedInformation,
    SessionStats,
)
from consultia.models.medical_session import (
    MedicalSessionCreate,
    SessionData,
    SessionStatus,
    TranscriptionRecord,
)
from consultia.models.transcript import Speaker, TranscriptEntry, TranscriptFragment
from consultia.services.clinical_extractor import ClinicalExtractor, critical_signals
from consultia.services.concept_tracker import ConceptTracker
from consultia.services.llm import LLMClient
from consultia.services.phase_classifier import PhaseTracker
from consultia.services.prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    REPORT_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_final_report_prompt,
)
from consultia.services.question_detector import is_question
from consultia.services.transcript_buffer import TranscriptBuffer

logger = logging.getLogger(__name__)

MIN_ENTRIES_FOR_ANALYSIS = 2
MIN_ENTRIES_FOR_REPORT = 4
ANALYSIS_MAX_TOKENS = 2000
REPORT_MAX_TOKENS = 4000


def _new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ConsultationSession:
    def __init__(
        self,
        llm: LLMClient | None = None,
        window: int = TRANSCRIPT_WINDOW,
        correlation_id: str | None = None,
    ) -> None:
        self.llm = llm
        self.correlation_id = correlation_id
        self.buffer = TranscriptBuffer(window)
        self.is_active = True
        self.closed_at: float | None = None
        self._inflight: asyncio.Task | None = None
        self._generation = 0
        self._reset_state()

    def _reset_state(self) -> None:
        self.session_id = _new_session_id()
        self.started_at = time.time()
        self.buffer.clear()
        self.transcriptions: list[TranscriptEntry] = []
        self.extractor = ClinicalExtractor()
        self.concepts = ConceptTracker()
        self.phase_tracker = PhaseTracker()
        self.doctor_questions: list[str] = []
        self.patient_messages = 0
        self.analysis_history: list[MedicalAnalysis] = []
        self._analysis_times: list[str] = []
        self.final_report: FinalMedicalReport | None = None
        self.critical_signal_detected = False
        # Bumped on every reset so late engine results from a previous consultation are dropped.
        self._generation += 1

    # --- Read accessors ---

    @property
    def extracted_info(self) -> ExtractedInformation:
        return self.extractor.info

    @property
    def conceptual_answers(self) -> list[ConceptualAnswer]:
        return self.concepts.answers

    @property
    def phase(self) -> ConsultationPhase:
        return self.phase_tracker.phase

    @property
    def is_analyzing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def get_latest_analysis(self) -> MedicalAnalysis | None:
        return self.analysis_history[-1] if self.analysis_history else None

    def get_analysis_history(self) -> list[MedicalAnalysis]:
        return list(self.analysis_history)

    def get_stats(self) -> SessionStats:
        return SessionStats(
            session_id=self.session_id,
            transcriptions_processed=len(self.buffer),
            patient_messages=self.patient_messages,
            analyses_generated=len(self.analysis_history),
            doctor_questions_detected=len(self.doctor_questions),
            conceptual_answers=len(self.concepts.answers),
            consultation_phase=self.phase,
            extracted_info=self.extracted_info.model_copy(deep=True),
            session_duration_ms=int((time.time() - self.started_at) * 1000),
            is_analyzing=self.is_analyzing,
            last_analysis_time=self._analysis_times[-1] if self._analysis_times else None,
        )

    # --- Transcript intake ---

    def on_transcript_fragment(self, fragment: TranscriptFragment) -> TranscriptEntry | None:
        """Commit a provider fragment. Interim and blank fragments are ignored."""
        text = fragment.text.strip()
        if not fragment.is_final or not text:
            return None
        return self.add_transcription(fragment.speaker, text, confidence=fragment.confidence)

    def add_transcription(
        self,
        speaker: Speaker,
        text: str,
        confidence: float = 1.0,
        timestamp: str | None = None,
    ) -> TranscriptEntry:
        entry = TranscriptEntry(
            timestamp=timestamp or _now_iso(),
            speaker=speaker,
            text=text,
            confidence=confidence,
        )
        self.buffer.append(entry)
        self.transcriptions.append(entry)

        if speaker == Speaker.CLINICIAN and is_question(text):
            self.doctor_questions.append(text)
            logger.info("Clinician question detected: %s", text[:80])

        if speaker == Speaker.PATIENT:
            self.patient_messages += 1
            self.extractor.extract(text)
            self.concepts.analyze(text)
            signals = critical_signals(text)
            if signals:
                self.critical_signal_detected = True
                logger.warning(
                    "Critical signal in patient speech (%s): immediate analysis recommended",
                    ", ".join(signals),
                )

        self.phase_tracker.update(self.patient_messages, len(self.doctor_questions))
        return entry

    # --- Prompt assembly ---

    def build_analysis_prompt(self) -> str:
        return build_analysis_prompt(
            transcript=self.buffer.snapshot(),
            doctor_questions=list(self.doctor_questions),
            info=self.extracted_info,
            answers=self.conceptual_answers,
            phase=self.phase,
        )

    def build_final_report_prompt(self) -> str:
        return build_final_report_prompt(self.transcriptions)

    # --- Reasoning engine calls ---

    async def generate_analysis(self) -> MedicalAnalysis | None:
        """Request an incremental analysis.

        Returns None when the consultation is too short or the engine fails. While
        a call is in flight, concurrent callers share its result instead of
        issuing a second request.
        """
        if len(self.buffer) < MIN_ENTRIES_FOR_ANALYSIS:
            return None

        if self.is_analyzing:
            logger.info("Analysis already in progress for %s, sharing result", self.session_id)
            return await asyncio.shield(self._inflight)

        if self.llm is None:
            logger.warning("No reasoning engine configured; skipping analysis")
            return None

        prompt = self.build_analysis_prompt()
        self.critical_signal_detected = False
        self._inflight = asyncio.create_task(self._run_analysis(prompt, self._generation))
        return await asyncio.shield(self._inflight)

    async def _run_analysis(self, prompt: str, generation: int) -> MedicalAnalysis | None:
        try:
            analysis = await self.llm.generate_json(
                system=ANALYSIS_SYSTEM_PROMPT,
                user=prompt,
                response_model=MedicalAnalysis,
                max_tokens=ANALYSIS_MAX_TOKENS,
                purpose="analysis",
            )
        except EngineError as e:
            logger.error("Medical analysis failed: %s", e)
            return None

        if generation != self._generation:
            logger.info("Discarding analysis from a cleared consultation")
            return None

        self.analysis_history.append(analysis)
        self._analysis_times.append(_now_iso())
        logger.info(
            "Analysis complete: %d symptoms, %d diagnoses, %d recommendations, confidence %d%%",
            len(analysis.symptoms),
            len(analysis.diagnoses),
            len(analysis.recommendations),
            round(analysis.confidence_level * 100),
        )
        if analysis.requires_immediate_attention:
            logger.warning("Analysis flags immediate attention for %s", self.session_id)
        return analysis

    async def generate_final_report(self) -> FinalMedicalReport | None:
        """Generate the end-of-consultation report from the full transcript.

        Raises ConsultationTooShortError before contacting the engine when fewer
        than four entries exist. Returns None on engine failure.
        """
        entries = len(self.transcriptions)
        if entries < MIN_ENTRIES_FOR_REPORT:
            raise ConsultationTooShortError(entries, MIN_ENTRIES_FOR_REPORT)

        if self.llm is None:
            logger.warning("No reasoning engine configured; skipping final report")
            return None

        prompt = self.build_final_report_prompt()
        generation = self._generation
        try:
            report = await self.llm.generate_json(
                system=REPORT_SYSTEM_PROMPT,
                user=prompt,
                response_model=FinalMedicalReport,
                max_tokens=REPORT_MAX_TOKENS,
                purpose="report",
            )
        except EngineError as e:
            logger.error("Final report generation failed: %s", e)
            return None

        if generation != self._generation:
            logger.info("Discarding final report from a cleared consultation")
            return None

        elapsed = time.time() - self.started_at
        report.patient_info = PatientInfo(
            session_id=self.session_id,
            date=_now_iso(),
            duration=f"{round(elapsed / 60)} minutos",
            total_interactions=entries,
        )
        self.final_report = report
        logger.info(
            "Final report generated for %s: %d symptoms, %d diagnoses",
            self.session_id,
            len(report.symptoms_report),
            len(report.diagnoses_report),
        )
        return report

    # --- Lifecycle ---

    def clear_history(self) -> None:
        """Start a new consultation: reset all session-scoped state."""
        previous = self.session_id
        self._reset_state()
        self._inflight = None
        logger.info("Session %s cleared, new consultation %s", previous, self.session_id)

    def close(self) -> None:
        self.is_active = False
        self.closed_at = time.time()

    def to_record(
        self,
        patient_id: str,
        doctor_id: str | None = None,
        status: SessionStatus = "completed",
    ) -> MedicalSessionCreate:
        """Serialize the consultation in the shape the medical-session store accepts."""
        transcriptions = [
            TranscriptionRecord(
                id=f"{self.session_id}-{index}",
                speaker=entry.speaker.value,
                text=entry.text,
                timestamp=entry.timestamp,
                confidence=entry.confidence,
            )
            for index, entry in enumerate(self.transcriptions)
        ]
        analyses = [
            {**analysis.model_dump(mode="json"), "timestamp": stamp, "session_id": self.session_id}
            for analysis, stamp in zip(self.analysis_history, self._analysis_times)
        ]
        return MedicalSessionCreate(
            patient_id=patient_id,
            doctor_id=doctor_id,
            session_data=SessionData(
                duration=int(time.time() - self.started_at),
                timestamp=datetime.fromtimestamp(self.started_at, UTC).isoformat(),
            ),
            transcriptions=transcriptions,
            analyses=analyses,
            final_report=self.final_report.model_dump(mode="json") if self.final_report else None,
            status=status,
        )
