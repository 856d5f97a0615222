import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from consultia.dependencies import get_registry, require_engine, require_session
from consultia.errors import ConsultationTooShortError
from consultia.models.analysis import FinalMedicalReport, MedicalAnalysis
from consultia.models.consultation import SessionStats
from consultia.models.medical_session import MedicalSessionRecord, SessionStatus
from consultia.routers.medical_sessions import store_medical_session
from consultia.services.consultation import MIN_ENTRIES_FOR_ANALYSIS
from consultia.services.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["consultations"])


class AnalysisResponse(BaseModel):
    latest_analysis: MedicalAnalysis | None
    stats: SessionStats


class SaveConsultationRequest(BaseModel):
    patient_id: str
    doctor_id: str | None = None
    status: SessionStatus = "completed"


@router.get("/sessions/{correlation_id}/analysis", response_model=AnalysisResponse)
async def get_analysis(correlation_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Latest analysis for a consultation plus its running statistics."""
    session = require_session(registry, correlation_id)
    return AnalysisResponse(latest_analysis=session.get_latest_analysis(), stats=session.get_stats())


@router.post("/sessions/{correlation_id}/analysis", response_model=MedicalAnalysis)
async def request_analysis(correlation_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Force an analysis now instead of waiting for the next transcript."""
    session = require_session(registry, correlation_id)
    if len(session.buffer) < MIN_ENTRIES_FOR_ANALYSIS:
        raise HTTPException(status_code=400, detail="Not enough transcript to analyze")
    require_engine(registry)

    analysis = await session.generate_analysis()
    if analysis is None:
        raise HTTPException(status_code=502, detail="Medical analysis failed")
    return analysis


@router.post("/sessions/{correlation_id}/final-report", response_model=FinalMedicalReport)
async def request_final_report(correlation_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = require_session(registry, correlation_id)
    try:
        report = await session.generate_final_report()
    except ConsultationTooShortError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    if report is None:
        require_engine(registry)
        raise HTTPException(status_code=502, detail="Final report generation failed")
    return report


@router.get("/sessions/{correlation_id}/info")
async def get_session_info(correlation_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Consultation and audio bookkeeping for one connection."""
    session = require_session(registry, correlation_id)
    audio_stats = registry.audio.get_session_stats(correlation_id)
    return {
        "correlation_id": correlation_id,
        "is_active": session.is_active,
        "stats": session.get_stats().model_dump(mode="json"),
        "audio": audio_stats.model_dump() if audio_stats else None,
        "analyses": len(session.get_analysis_history()),
        "has_final_report": session.final_report is not None,
    }


@router.post("/sessions/{correlation_id}/clear")
async def clear_session(correlation_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Start a fresh consultation on the same connection."""
    session = require_session(registry, correlation_id)
    session.clear_history()
    return {"success": True, "session_id": session.session_id}


@router.post("/sessions/{correlation_id}/save", response_model=MedicalSessionRecord)
async def save_consultation(
    correlation_id: str,
    body: SaveConsultationRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Persist the live consultation into the medical-session store."""
    session = require_session(registry, correlation_id)
    record = session.to_record(body.patient_id, doctor_id=body.doctor_id, status=body.status)
    stored = await store_medical_session(record)
    logger.info("Saved consultation %s as medical session %s", session.session_id, stored.id)
    return stored


@router.get("/audio/stats")
async def get_audio_stats(registry: SessionRegistry = Depends(get_registry)):
    active = registry.audio.get_active_sessions()
    return {
        "stats": registry.audio.get_stats().model_dump(),
        "active_sessions": len(active),
        "sessions": [s.model_dump() for s in active],
    }
