from collections import deque

from consultia.config import TRANSCRIPT_WINDOW
from consultia.models.transcript import TranscriptEntry


class TranscriptBuffer:
    """Bounded, ordered window of the most recent transcript entries.

    Oldest entries are evicted first once ``max_entries`` is exceeded.
    """

    def __init__(self, max_entries: int = TRANSCRIPT_WINDOW) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: deque[TranscriptEntry] = deque(maxlen=max_entries)

    def append(self, entry: TranscriptEntry) -> None:
        self._entries.append(entry)

    def snapshot(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def render(self) -> str:
        return "\n".join(entry.render() for entry in self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
