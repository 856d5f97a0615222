from pydantic import BaseModel


class AudioSession(BaseModel):
    id: str
    correlation_id: str
    start_time: float
    chunks_received: int = 0
    total_bytes: int = 0
    is_active: bool = True
    ended_at: float | None = None


class AudioChunk(BaseModel):
    id: str
    session_id: str
    timestamp: float
    size: int
    sequence: int


class AudioStats(BaseModel):
    sessions: int = 0
    total_chunks: int = 0
    total_bytes: int = 0
    avg_chunk_size: float = 0.0


class AudioSessionStats(BaseModel):
    session_id: str
    duration_ms: int
    chunks_received: int
    total_bytes: int
    avg_chunk_size: int
    chunks_per_second: float
    is_active: bool
