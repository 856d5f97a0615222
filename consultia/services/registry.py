"""Ownership of live consultations.

One ``SessionRegistry`` is built at process start and torn down at shutdown. It
maps correlation ids (one per client connection) to their consultation state
and holds the shared, stateless collaborator clients.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from consultia.config import (
    DEEPGRAM_API_KEY,
    SESSION_CLEANUP_INTERVAL_SECONDS,
    SESSION_PURGE_AFTER_SECONDS,
    TRANSCRIPT_WINDOW,
)
from consultia.models.transcript import TranscriptFragment
from consultia.services.audio_sessions import AudioSessionManager
from consultia.services.consultation import ConsultationSession
from consultia.services.event_bus import ConsultationEventBus
from consultia.services.llm import LLMClient
from consultia.services.transcription import TranscriptionService

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        llm: LLMClient | None = None,
        events: ConsultationEventBus | None = None,
        audio: AudioSessionManager | None = None,
        window: int = TRANSCRIPT_WINDOW,
        purge_after: float = SESSION_PURGE_AFTER_SECONDS,
        cleanup_interval: float = SESSION_CLEANUP_INTERVAL_SECONDS,
        transcription_api_key: str = DEEPGRAM_API_KEY,
    ) -> None:
        self.llm = llm
        self.events = events or ConsultationEventBus()
        self.audio = audio or AudioSessionManager()
        self.window = window
        self.purge_after = purge_after
        self.cleanup_interval = cleanup_interval
        self._transcription_api_key = transcription_api_key
        self._sessions: dict[str, ConsultationSession] = {}
        self._connections: dict[str, int] = {}
        self._task: asyncio.Task | None = None

    @property
    def engine_available(self) -> bool:
        return self.llm is not None

    @property
    def transcription_available(self) -> bool:
        return bool(self._transcription_api_key)

    def open(self, correlation_id: str) -> ConsultationSession:
        """Return the consultation for ``correlation_id``, creating it if needed.

        Every ``open`` counts as one connection and must be paired with ``close``.
        """
        self._connections[correlation_id] = self._connections.get(correlation_id, 0) + 1
        session = self._sessions.get(correlation_id)
        if session is None:
            session = ConsultationSession(
                llm=self.llm, window=self.window, correlation_id=correlation_id
            )
            self._sessions[correlation_id] = session
            logger.info("Consultation %s opened for %s", session.session_id, correlation_id)
        elif not session.is_active:
            session.is_active = True
            session.closed_at = None
            logger.info("Consultation %s resumed for %s", session.session_id, correlation_id)
        self.audio.create_session(correlation_id)
        return session

    def get(self, correlation_id: str) -> ConsultationSession | None:
        return self._sessions.get(correlation_id)

    def connection_count(self, correlation_id: str) -> int:
        return self._connections.get(correlation_id, 0)

    def close(self, correlation_id: str) -> bool:
        """Release one connection. The last one out marks the consultation inactive.

        State is kept until ``cleanup`` purges it.
        """
        remaining = self._connections.pop(correlation_id, 0) - 1
        if remaining > 0:
            self._connections[correlation_id] = remaining
            logger.info("Connection to %s closed, %d still open", correlation_id, remaining)
            return False
        return self._deactivate(correlation_id)

    def _deactivate(self, correlation_id: str) -> bool:
        session = self._sessions.get(correlation_id)
        self.audio.end_session(correlation_id)
        if session is None or not session.is_active:
            return False
        session.close()
        logger.info("Consultation %s closed for %s", session.session_id, correlation_id)
        return True

    def create_transcription(
        self, on_fragment: Callable[[TranscriptFragment], Awaitable[None]]
    ) -> TranscriptionService:
        return TranscriptionService(on_fragment=on_fragment, api_key=self._transcription_api_key)

    def active_sessions(self) -> list[ConsultationSession]:
        return [s for s in self._sessions.values() if s.is_active]

    def cleanup(self, now: float | None = None) -> int:
        """Purge consultations closed longer than ``purge_after`` seconds ago."""
        now = now if now is not None else time.time()
        expired = [
            key
            for key, session in self._sessions.items()
            if not session.is_active
            and session.closed_at is not None
            and now - session.closed_at > self.purge_after
        ]
        for key in expired:
            del self._sessions[key]
            logger.info("Consultation for %s purged", key)
        self.audio.cleanup(now)
        return len(expired)

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("SessionRegistry cleanup loop already running")
            return
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Session cleanup loop started (every %ss)", self.cleanup_interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._connections.clear()
        for key in list(self._sessions):
            self._deactivate(key)
        logger.info("SessionRegistry stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                purged = self.cleanup()
                if purged:
                    logger.info("Cleanup purged %d consultations", purged)
            except Exception:
                logger.exception("Session cleanup failed")

    def __len__(self) -> int:
        return len(self._sessions)
