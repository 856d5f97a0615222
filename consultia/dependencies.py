from fastapi import HTTPException, Request

from consultia.services.consultation import ConsultationSession
from consultia.services.registry import SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def require_session(registry: SessionRegistry, correlation_id: str) -> ConsultationSession:
    session = registry.get(correlation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return session


def require_engine(registry: SessionRegistry) -> None:
    if not registry.engine_available:
        raise HTTPException(status_code=503, detail="Reasoning engine unavailable")
