import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlencode

import websockets

from consultia.config import (
    DEEPGRAM_API_KEY,
    DEEPGRAM_ENDPOINTING_MS,
    DEEPGRAM_LANGUAGE,
    DEEPGRAM_MODEL,
    DEEPGRAM_URL,
    TRANSCRIPTION_CONNECT_TIMEOUT,
    TRANSCRIPTION_KEEPALIVE_SECONDS,
)
from consultia.errors import ConfigurationError
from consultia.models.transcript import TranscriptFragment, TranscriptWord

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHANNELS = 1
ENCODING = "linear16"
CONNECT_POLL_INTERVAL = 0.1


def parse_results(data: dict) -> TranscriptFragment | None:
    """Decode a Deepgram ``Results`` message into a fragment."""
    alternatives = (data.get("channel") or {}).get("alternatives") or []
    if not alternatives:
        return None
    best = alternatives[0]
    words = [
        TranscriptWord(
            word=w.get("punctuated_word") or w.get("word", ""),
            start=w.get("start", 0.0),
            end=w.get("end", 0.0),
            confidence=w.get("confidence", 1.0),
            speaker=w.get("speaker"),
        )
        for w in best.get("words") or []
    ]
    start = data.get("start")
    duration = data.get("duration")
    return TranscriptFragment(
        text=best.get("transcript", "") or "",
        is_final=bool(data.get("is_final", False)),
        confidence=best.get("confidence", 0.0) or 0.0,
        speaker_index=words[0].speaker if words else None,
        start=start,
        end=start + duration if start is not None and duration is not None else None,
        words=words,
    )


class TranscriptionService:
    """Streams PCM audio to Deepgram live transcription with diarization."""

    def __init__(
        self,
        on_fragment: Callable[[TranscriptFragment], Awaitable[None]],
        api_key: str = DEEPGRAM_API_KEY,
        connect_timeout: float = TRANSCRIPTION_CONNECT_TIMEOUT,
        keepalive_interval: float = TRANSCRIPTION_KEEPALIVE_SECONDS,
    ):
        if not api_key:
            raise ConfigurationError("Transcription requires DEEPGRAM_API_KEY")
        self.on_fragment = on_fragment
        self._api_key = api_key
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self._ws = None
        self._connected = False
        self._connect_task: asyncio.Task | None = None
        self._listen_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    def connection_url(self) -> str:
        params = {
            "model": DEEPGRAM_MODEL,
            "language": DEEPGRAM_LANGUAGE,
            "encoding": ENCODING,
            "sample_rate": SAMPLE_RATE,
            "channels": CHANNELS,
            "diarize": "true",
            "interim_results": "true",
            "punctuate": "true",
            "smart_format": "true",
            "endpointing": DEEPGRAM_ENDPOINTING_MS,
            "vad_events": "false",
        }
        return f"{DEEPGRAM_URL}?{urlencode(params)}"

    async def connect(self) -> bool:
        """Open the live stream. Returns False if it is not ready within the timeout."""
        if self._connected:
            return True
        self._connect_task = asyncio.create_task(self._open())
        if await self._wait_for_connection(self.connect_timeout):
            logger.info("Deepgram live stream connected")
            return True

        if not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        logger.error("Deepgram connection not ready after %.1fs", self.connect_timeout)
        return False

    async def _open(self):
        headers = {"Authorization": f"Token {self._api_key}"}
        try:
            self._ws = await websockets.connect(self.connection_url(), additional_headers=headers)
        except Exception as e:
            logger.error("Deepgram connection failed: %s", e)
            self._ws = None
            return
        self._connected = True
        self._listen_task = asyncio.create_task(self._listen())
        self._start_keepalive()

    async def _wait_for_connection(self, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if self._connected:
                return True
            if self._connect_task is not None and self._connect_task.done():
                return self._connected
            await asyncio.sleep(CONNECT_POLL_INTERVAL)
        return self._connected

    def _start_keepalive(self):
        self._stop_keepalive()
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def _stop_keepalive(self):
        if self._keepalive_task and not self._keepalive_task.done():
            self._keepalive_task.cancel()
        self._keepalive_task = None

    async def _keepalive_loop(self):
        while self._connected:
            await asyncio.sleep(self.keepalive_interval)
            if not (self._connected and self._ws):
                break
            try:
                await self._ws.send(json.dumps({"type": "KeepAlive"}))
            except websockets.ConnectionClosed:
                logger.warning("Deepgram keep-alive failed: connection closed")
                break

    async def send_audio(self, data: bytes) -> bool:
        """Forward one audio chunk. Returns False when the stream is not open."""
        if not self._connected or self._ws is None:
            logger.warning("Deepgram not connected, dropping audio chunk")
            return False
        try:
            await self._ws.send(data)
            return True
        except websockets.ConnectionClosed:
            logger.error("Deepgram connection closed while sending audio")
            self._connected = False
            return False

    async def _listen(self):
        try:
            async for raw_message in self._ws:
                if isinstance(raw_message, bytes):
                    continue
                data = json.loads(raw_message)
                msg_type = data.get("type", "")

                if msg_type == "Results":
                    fragment = parse_results(data)
                    if fragment is None:
                        continue
                    if fragment.text.strip():
                        logger.info(
                            "Transcript (%s) %s: %s",
                            "final" if fragment.is_final else "interim",
                            fragment.speaker_label,
                            fragment.text[:80],
                        )
                    try:
                        await self.on_fragment(fragment)
                    except Exception:
                        logger.exception("Transcript handler failed")
                elif msg_type == "Metadata":
                    logger.info("Deepgram stream metadata received: %s", data.get("request_id"))
                elif msg_type == "Error":
                    logger.error("Deepgram error: %s", data)
                else:
                    logger.debug("Deepgram message: %s", msg_type)
        except websockets.ConnectionClosed:
            logger.warning("Deepgram WebSocket connection closed")
        except json.JSONDecodeError as e:
            logger.error("Deepgram sent invalid JSON: %s", e)
        finally:
            self._connected = False
            self._stop_keepalive()

    async def finish(self):
        """Ask the provider to flush pending results and close the stream."""
        if self._connected and self._ws is not None:
            try:
                await self._ws.send(json.dumps({"type": "CloseStream"}))
            except websockets.ConnectionClosed:
                logger.debug("Deepgram already closed on finish")

    async def disconnect(self):
        self._stop_keepalive()
        self._connected = False
        if self._listen_task and not self._listen_task.done():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        self._listen_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
