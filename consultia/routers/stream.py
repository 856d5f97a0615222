import asyncio
import base64
import binascii
import json
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from consultia.config import AUTO_ANALYZE
from consultia.errors import ConfigurationError, ConsultationTooShortError
from consultia.models.transcript import Speaker, TranscriptFragment
from consultia.services.event_bus import (
    FINAL_REPORT_GENERATED,
    MEDICAL_ANALYSIS,
    RECORDING_STARTED,
    RECORDING_STOPPED,
    TRANSCRIPTION_UPDATE,
)
from consultia.services.registry import SessionRegistry
from consultia.services.transcription import TranscriptionService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws/consultation/{correlation_id}")
async def consultation_endpoint(websocket: WebSocket, correlation_id: str):
    """WebSocket endpoint: audio → diarized transcript (Deepgram), transcript → analysis (LLM)."""
    await websocket.accept()
    registry: SessionRegistry = websocket.app.state.registry
    session = registry.open(correlation_id)
    logger.info("Consultation client connected: %s", correlation_id)

    stt: TranscriptionService | None = None
    analysis_task: asyncio.Task | None = None
    report_task: asyncio.Task | None = None
    analysis_pending = False

    async def _safe_send(data: dict) -> None:
        """Send JSON to websocket, logging on failure."""
        try:
            await websocket.send_json(data)
        except Exception:
            logger.debug("WebSocket send failed (client may have disconnected)")

    async def _emit(event_type: str, payload: dict) -> None:
        event = await registry.events.publish(correlation_id, event_type, payload)
        await _safe_send(event)

    async def _send_error(message: str, **extra) -> None:
        await _safe_send({"type": "error", "message": message, **extra})

    async def _analysis_worker():
        """Run analyses until no new transcript arrived while the last one was running."""
        nonlocal analysis_pending
        while analysis_pending:
            analysis_pending = False
            analysis = await session.generate_analysis()
            if analysis is not None:
                await _emit(
                    MEDICAL_ANALYSIS,
                    {**analysis.model_dump(mode="json"), "session_id": session.session_id},
                )

    def _request_analysis():
        nonlocal analysis_pending, analysis_task
        if not registry.engine_available:
            return
        analysis_pending = True
        if analysis_task is None or analysis_task.done():
            analysis_task = asyncio.create_task(_analysis_worker())

    def _after_commit():
        if session.critical_signal_detected:
            logger.warning("Critical signal for %s, requesting immediate analysis", correlation_id)
            _request_analysis()
        elif AUTO_ANALYZE:
            _request_analysis()

    async def on_fragment(fragment: TranscriptFragment):
        """Handle one provider result: forward it, commit it when final."""
        if not fragment.text.strip():
            return
        entry = session.on_transcript_fragment(fragment)
        await _emit(
            TRANSCRIPTION_UPDATE,
            {
                "transcript": fragment.text,
                "is_final": fragment.is_final,
                "speaker": fragment.speaker.value,
                "speaker_label": fragment.speaker_label,
                "confidence": fragment.confidence,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        if entry is not None:
            _after_commit()

    async def _stop_transcription():
        nonlocal stt
        if stt is None:
            return
        await stt.finish()
        await stt.disconnect()
        stt = None

    async def handle_start_recording():
        nonlocal stt
        if stt is not None and stt.connected:
            await _safe_send({"type": RECORDING_STARTED, "session": correlation_id,
                              "data": {"session_id": session.session_id, "already_recording": True}})
            return
        try:
            stt = registry.create_transcription(on_fragment)
        except ConfigurationError as e:
            logger.warning("Transcription unavailable: %s", e)
            await _safe_send({"type": "service_unavailable", "service": "transcription", "message": str(e)})
            return

        if not await stt.connect():
            stt = None
            await _send_error("No se pudo conectar con el servicio de transcripción")
            return

        if registry.audio.get_active_session(correlation_id) is None:
            registry.audio.create_session(correlation_id)
        await _emit(RECORDING_STARTED, {"session_id": session.session_id})

    async def handle_audio_chunk(data: bytes):
        if not registry.audio.validate_audio_data(data):
            await _send_error("Invalid audio chunk")
            return
        if stt is None or not stt.connected:
            await _send_error("Recording not started")
            return
        if registry.audio.process_audio_chunk(correlation_id, data) is None:
            await _send_error("No active audio session")
            return
        await stt.send_audio(data)

    async def handle_transcript(msg: dict):
        text = (msg.get("text") or "").strip()
        if not text:
            await _send_error("Empty transcript")
            return
        try:
            speaker = Speaker(msg.get("speaker", Speaker.UNKNOWN.value))
        except ValueError:
            await _send_error(f"Unknown speaker: {msg.get('speaker')}")
            return
        try:
            entry = session.add_transcription(speaker, text, confidence=msg.get("confidence", 1.0))
        except ValidationError:
            await _send_error("Invalid transcript")
            return
        await _emit(
            TRANSCRIPTION_UPDATE,
            {
                "transcript": entry.text,
                "is_final": True,
                "speaker": entry.speaker.value,
                "speaker_label": entry.speaker.label,
                "confidence": entry.confidence,
                "timestamp": entry.timestamp,
            },
        )
        _after_commit()

    async def handle_stop_recording():
        await _stop_transcription()
        registry.audio.end_session(correlation_id)
        await _emit(RECORDING_STOPPED, {"session_id": session.session_id})

    async def handle_final_report():
        try:
            report = await session.generate_final_report()
        except ConsultationTooShortError as e:
            await _send_error(str(e), code="consultation_too_short")
            return
        if report is None and not registry.engine_available:
            await _safe_send({"type": "service_unavailable", "service": "engine"})
            return
        if report is None:
            await _send_error("No se pudo generar el informe final")
            return
        await _emit(FINAL_REPORT_GENERATED, report.model_dump(mode="json"))

    async def request_final_report():
        nonlocal report_task
        if report_task is not None and not report_task.done():
            await _send_error("Final report already in progress")
            return
        report_task = asyncio.create_task(handle_final_report())

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await handle_audio_chunk(message["bytes"])
                continue

            try:
                msg = json.loads(message.get("text") or "")
            except json.JSONDecodeError:
                await _send_error("Invalid JSON frame")
                continue
            if not isinstance(msg, dict):
                await _send_error("Invalid JSON frame")
                continue

            msg_type = msg.get("type")
            if msg_type == "start_recording":
                await handle_start_recording()
            elif msg_type == "audio_chunk":
                try:
                    data = base64.b64decode(msg.get("data") or "", validate=True)
                except (binascii.Error, ValueError):
                    await _send_error("Audio chunk is not valid base64")
                    continue
                await handle_audio_chunk(data)
            elif msg_type == "transcript":
                await handle_transcript(msg)
            elif msg_type == "stop_recording":
                await handle_stop_recording()
            elif msg_type == "generate_final_report":
                await request_final_report()
            elif msg_type == "clear_history":
                session.clear_history()
                await _safe_send({"type": "history-cleared", "data": {"session_id": session.session_id}})
            elif msg_type == "test_connection":
                await _safe_send({
                    "type": "test-response",
                    "data": {
                        "message": "Conexión WebSocket funcionando correctamente",
                        "correlation_id": correlation_id,
                        "timestamp": datetime.now(UTC).isoformat(),
                    },
                })
            else:
                await _send_error(f"Unknown message type: {msg_type}")
    except WebSocketDisconnect:
        logger.info("Consultation client disconnected: %s", correlation_id)
    finally:
        # In-flight analysis and report calls are left to finish; their results stay in the session.
        await _stop_transcription()
        registry.close(correlation_id)


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue, label: str) -> None:
    """Push bus events to an observer, with a ping after 10s of silence."""
    try:
        await websocket.accept()
        logger.info("Observer connected to %s", label)
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=10.0)
            except TimeoutError:
                event = {"type": "ping"}

            try:
                await websocket.send_json(event)
            except Exception:
                logger.debug("Failed to send event to observer")
                break
    except WebSocketDisconnect:
        logger.info("Observer disconnected from %s", label)
    except asyncio.CancelledError:
        pass


@router.websocket("/ws/observe")
async def observe_all_endpoint(websocket: WebSocket):
    """Read-only stream of every consultation's events, for dashboards."""
    events = websocket.app.state.registry.events
    queue = events.subscribe_all()
    try:
        await _forward_events(websocket, queue, "all consultations")
    finally:
        events.unsubscribe_all(queue)


@router.websocket("/ws/observe/{correlation_id}")
async def observe_endpoint(websocket: WebSocket, correlation_id: str):
    """Read-only stream of one consultation's events for presentation clients."""
    events = websocket.app.state.registry.events
    queue = events.subscribe(correlation_id)
    try:
        await _forward_events(websocket, queue, correlation_id)
    finally:
        events.unsubscribe(correlation_id, queue)
