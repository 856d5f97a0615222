import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from consultia.database import close_db, init_db
from consultia.errors import ConfigurationError
from consultia.routers import consultations, medical_sessions, stream
from consultia.services.llm import get_llm_client
from consultia.services.registry import SessionRegistry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ConsultIA...")
    await init_db()
    logger.info("Database initialized")

    try:
        llm = get_llm_client()
    except ConfigurationError as e:
        logger.warning("Reasoning engine disabled: %s", e)
        llm = None

    registry = SessionRegistry(llm=llm)
    if not registry.transcription_available:
        logger.warning("DEEPGRAM_API_KEY not set, live transcription disabled")
    await registry.start()
    app.state.registry = registry
    yield
    await registry.stop()
    await close_db()
    logger.info("ConsultIA shut down")


app = FastAPI(
    title="ConsultIA",
    description="Real-time clinical consultation assistant: live transcription and AI analysis",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(stream.router)
app.include_router(consultations.router)
app.include_router(medical_sessions.router)


@app.get("/api/health")
async def health(request: Request):
    registry: SessionRegistry = request.app.state.registry
    return {
        "status": "ok",
        "services": {
            "engine": registry.engine_available,
            "transcription": registry.transcription_available,
        },
        "active_sessions": len(registry.active_sessions()),
    }
