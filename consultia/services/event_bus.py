import asyncio
import logging

logger = logging.getLogger(__name__)

TRANSCRIPTION_UPDATE = "transcription-update"
MEDICAL_ANALYSIS = "medical-analysis"
FINAL_REPORT_GENERATED = "final-report-generated"
RECORDING_STARTED = "recording-started"
RECORDING_STOPPED = "recording-stopped"


class ConsultationEventBus:
    """Simple in-memory pub/sub for broadcasting consultation events."""

    def __init__(self, max_queue_size: int = 256) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._global_subscribers: set[asyncio.Queue] = set()

    def subscribe_all(self) -> asyncio.Queue:
        """Subscribe to events from every session."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._global_subscribers.add(queue)
        return queue

    def unsubscribe_all(self, queue: asyncio.Queue) -> None:
        self._global_subscribers.discard(queue)

    def subscribe(self, session_key: str) -> asyncio.Queue:
        """Subscribe to events for one session."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.setdefault(session_key, set()).add(queue)
        return queue

    def unsubscribe(self, session_key: str, queue: asyncio.Queue) -> None:
        if session_key in self._subscribers:
            self._subscribers[session_key].discard(queue)
            if not self._subscribers[session_key]:
                del self._subscribers[session_key]

    def subscriber_count(self, session_key: str) -> int:
        return len(self._subscribers.get(session_key, ()))

    async def publish(self, session_key: str, event_type: str, payload: dict) -> dict:
        """Publish an event to the session's subscribers and to global subscribers."""
        event = {"type": event_type, "session": session_key, "data": payload}

        for queue in self._subscribers.get(session_key, set()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full for session %s subscriber", session_key)

        for queue in self._global_subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Global event queue full")
        return event
