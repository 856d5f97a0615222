import logging
import time
import uuid

from consultia.config import MAX_AUDIO_CHUNK_BYTES, SESSION_RETENTION_SECONDS
from consultia.models.audio import AudioChunk, AudioSession, AudioSessionStats, AudioStats

logger = logging.getLogger(__name__)


class AudioSessionManager:
    """Per-connection audio bookkeeping.

    At most one active session exists per correlation id. Ended sessions are
    kept (inactive) for late stats queries and purged by ``cleanup``.
    """

    def __init__(
        self,
        retention_seconds: float = SESSION_RETENTION_SECONDS,
        max_chunk_bytes: int = MAX_AUDIO_CHUNK_BYTES,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.max_chunk_bytes = max_chunk_bytes
        self._sessions: dict[str, AudioSession] = {}
        self._stats = AudioStats()

    def create_session(self, correlation_id: str) -> AudioSession:
        if self.get_active_session(correlation_id) is not None:
            logger.info("Replacing active audio session for %s", correlation_id)
            self.end_session(correlation_id)

        session = AudioSession(
            id=f"audio_{uuid.uuid4().hex[:12]}",
            correlation_id=correlation_id,
            start_time=time.time(),
        )
        self._sessions[session.id] = session
        self._stats.sessions += 1
        logger.info("Audio session %s created for %s", session.id, correlation_id)
        return session

    def validate_audio_data(self, data: bytes | None) -> bool:
        if not data:
            logger.warning("Empty audio chunk rejected")
            return False
        if len(data) > self.max_chunk_bytes:
            logger.warning("Audio chunk too large: %d bytes", len(data))
            return False
        return True

    def process_audio_chunk(self, correlation_id: str, data: bytes) -> AudioChunk | None:
        session = self.get_active_session(correlation_id)
        if session is None:
            logger.warning("No active audio session for %s", correlation_id)
            return None
        if not self.validate_audio_data(data):
            return None

        size = len(data)
        session.chunks_received += 1
        session.total_bytes += size
        self._stats.total_chunks += 1
        self._stats.total_bytes += size
        self._stats.avg_chunk_size = self._stats.total_bytes / self._stats.total_chunks

        chunk = AudioChunk(
            id=f"chunk_{uuid.uuid4().hex[:12]}",
            session_id=session.id,
            timestamp=time.time(),
            size=size,
            sequence=session.chunks_received,
        )
        logger.debug("Chunk %s (#%d, %d bytes) for %s", chunk.id, chunk.sequence, size, session.id)
        return chunk

    def end_session(self, correlation_id: str) -> bool:
        session = self.get_active_session(correlation_id)
        if session is None:
            return False

        session.is_active = False
        session.ended_at = time.time()
        logger.info(
            "Audio session %s ended: %.0fms, %d chunks, %d bytes",
            session.id,
            (session.ended_at - session.start_time) * 1000,
            session.chunks_received,
            session.total_bytes,
        )
        return True

    def cleanup(self, now: float | None = None) -> int:
        """Purge ended sessions older than the retention window."""
        now = now if now is not None else time.time()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.is_active
            and session.ended_at is not None
            and now - session.ended_at > self.retention_seconds
        ]
        for session_id in expired:
            del self._sessions[session_id]
            logger.info("Audio session %s purged", session_id)
        return len(expired)

    def get_active_session(self, correlation_id: str) -> AudioSession | None:
        for session in self._sessions.values():
            if session.correlation_id == correlation_id and session.is_active:
                return session
        return None

    def get_active_sessions(self) -> list[AudioSession]:
        return [session for session in self._sessions.values() if session.is_active]

    def get_session_info(self, session_id: str) -> AudioSession | None:
        return self._sessions.get(session_id)

    def get_stats(self) -> AudioStats:
        return self._stats.model_copy()

    def get_session_stats(self, correlation_id: str) -> AudioSessionStats | None:
        session = self.get_active_session(correlation_id)
        if session is None:
            return None

        duration = time.time() - session.start_time
        avg_size = session.total_bytes / session.chunks_received if session.chunks_received else 0
        per_second = session.chunks_received / duration if duration > 0 else 0.0
        return AudioSessionStats(
            session_id=session.id,
            duration_ms=int(duration * 1000),
            chunks_received=session.chunks_received,
            total_bytes=session.total_bytes,
            avg_chunk_size=round(avg_size),
            chunks_per_second=round(per_second, 2),
            is_active=session.is_active,
        )

    def __len__(self) -> int:
        return len(self._sessions)
