"""Tests for session ownership - audio bookkeeping, the registry, and the event bus."""

import asyncio
import time

import pytest

from consultia.errors import ConfigurationError
from consultia.services.audio_sessions import AudioSessionManager
from consultia.services.event_bus import MEDICAL_ANALYSIS, ConsultationEventBus
from consultia.services.registry import SessionRegistry

# --- Audio Session Manager ---


class TestAudioSessionManager:
    def test_empty_chunk_rejected(self):
        manager = AudioSessionManager()
        manager.create_session("conn-1")
        assert manager.validate_audio_data(b"") is False
        assert manager.process_audio_chunk("conn-1", b"") is None
        assert manager.get_stats().total_chunks == 0

    def test_oversized_chunk_rejected(self):
        manager = AudioSessionManager(max_chunk_bytes=4)
        manager.create_session("conn-1")
        assert manager.process_audio_chunk("conn-1", b"12345") is None

    def test_chunks_are_sequenced(self):
        manager = AudioSessionManager()
        session = manager.create_session("conn-1")
        first = manager.process_audio_chunk("conn-1", b"\x00" * 100)
        second = manager.process_audio_chunk("conn-1", b"\x00" * 300)
        assert (first.sequence, second.sequence) == (1, 2)
        assert second.session_id == session.id
        stats = manager.get_stats()
        assert stats.total_chunks == 2
        assert stats.total_bytes == 400
        assert stats.avg_chunk_size == 200

    def test_chunk_without_session(self):
        manager = AudioSessionManager()
        assert manager.process_audio_chunk("nobody", b"\x00") is None

    def test_one_active_session_per_connection(self):
        manager = AudioSessionManager()
        old = manager.create_session("conn-1")
        new = manager.create_session("conn-1")
        assert manager.get_session_info(old.id).is_active is False
        assert manager.get_active_session("conn-1").id == new.id
        assert len(manager.get_active_sessions()) == 1

    def test_end_session_is_soft(self):
        manager = AudioSessionManager()
        session = manager.create_session("conn-1")
        assert manager.end_session("conn-1") is True
        info = manager.get_session_info(session.id)
        assert info.is_active is False
        assert info.ended_at is not None
        assert manager.end_session("conn-1") is False

    def test_cleanup_respects_retention(self):
        manager = AudioSessionManager(retention_seconds=60)
        session = manager.create_session("conn-1")
        manager.end_session("conn-1")
        ended = manager.get_session_info(session.id).ended_at

        assert manager.cleanup(now=ended + 30) == 0
        assert manager.cleanup(now=ended + 61) == 1
        assert manager.get_session_info(session.id) is None

    def test_session_stats(self):
        manager = AudioSessionManager()
        manager.create_session("conn-1")
        manager.process_audio_chunk("conn-1", b"\x00" * 10)
        stats = manager.get_session_stats("conn-1")
        assert stats.chunks_received == 1
        assert stats.total_bytes == 10
        assert stats.avg_chunk_size == 10
        assert manager.get_session_stats("nobody") is None


# --- Session Registry ---


class TestSessionRegistry:
    def test_open_creates_and_reuses(self):
        registry = SessionRegistry(transcription_api_key="")
        first = registry.open("conn-1")
        assert registry.open("conn-1") is first
        assert registry.get("conn-1") is first
        assert registry.get("conn-2") is None
        assert registry.audio.get_active_session("conn-1") is not None

    def test_close_keeps_state_until_purge(self):
        registry = SessionRegistry(purge_after=300, transcription_api_key="")
        session = registry.open("conn-1")
        assert registry.close("conn-1") is True
        assert registry.get("conn-1") is session
        assert session.is_active is False
        assert registry.active_sessions() == []
        assert registry.close("conn-1") is False

        assert registry.cleanup(now=time.time() + 10) == 0
        assert registry.cleanup(now=time.time() + 301) == 1
        assert len(registry) == 0

    def test_overlapping_connections_share_consultation(self):
        registry = SessionRegistry(transcription_api_key="")
        session = registry.open("conn-1")
        assert registry.open("conn-1") is session
        assert registry.connection_count("conn-1") == 2

        assert registry.close("conn-1") is False
        assert session.is_active is True
        assert registry.audio.get_active_session("conn-1") is not None
        assert registry.cleanup(now=time.time() + 10_000) == 0

        assert registry.close("conn-1") is True
        assert session.is_active is False
        assert registry.connection_count("conn-1") == 0
        assert registry.audio.get_active_session("conn-1") is None

    def test_reopen_resumes(self):
        registry = SessionRegistry(transcription_api_key="")
        session = registry.open("conn-1")
        registry.close("conn-1")
        assert registry.open("conn-1") is session
        assert session.is_active is True

    def test_collaborator_availability(self, fake_llm):
        assert SessionRegistry(transcription_api_key="").engine_available is False
        registry = SessionRegistry(llm=fake_llm, transcription_api_key="dg-test")
        assert registry.engine_available is True
        assert registry.transcription_available is True

    def test_sessions_share_engine(self, fake_llm):
        registry = SessionRegistry(llm=fake_llm, transcription_api_key="")
        assert registry.open("a").llm is fake_llm
        assert registry.open("b").llm is fake_llm

    def test_create_transcription_without_key(self):
        registry = SessionRegistry(transcription_api_key="")

        async def on_fragment(fragment):
            pass

        with pytest.raises(ConfigurationError):
            registry.create_transcription(on_fragment)

    async def test_cleanup_loop_start_stop(self):
        registry = SessionRegistry(purge_after=0, cleanup_interval=0.01, transcription_api_key="")
        registry.open("conn-1")
        registry.close("conn-1")
        await registry.start()
        await asyncio.sleep(0.05)
        await registry.stop()
        assert len(registry) == 0


# --- Event Bus ---


class TestEventBus:
    async def test_session_subscriber_receives_events(self):
        bus = ConsultationEventBus()
        queue = bus.subscribe("conn-1")
        other = bus.subscribe("conn-2")

        event = await bus.publish("conn-1", MEDICAL_ANALYSIS, {"summary": "ok"})

        assert queue.get_nowait() == event
        assert event == {"type": MEDICAL_ANALYSIS, "session": "conn-1", "data": {"summary": "ok"}}
        assert other.empty()

    async def test_global_subscriber(self):
        bus = ConsultationEventBus()
        queue = bus.subscribe_all()
        await bus.publish("conn-1", MEDICAL_ANALYSIS, {})
        await bus.publish("conn-2", MEDICAL_ANALYSIS, {})
        assert queue.qsize() == 2
        bus.unsubscribe_all(queue)
        await bus.publish("conn-3", MEDICAL_ANALYSIS, {})
        assert queue.qsize() == 2

    async def test_full_queue_drops_event(self):
        bus = ConsultationEventBus(max_queue_size=1)
        queue = bus.subscribe("conn-1")
        await bus.publish("conn-1", MEDICAL_ANALYSIS, {"n": 1})
        await bus.publish("conn-1", MEDICAL_ANALYSIS, {"n": 2})
        assert queue.get_nowait()["data"] == {"n": 1}

    def test_unsubscribe(self):
        bus = ConsultationEventBus()
        queue = bus.subscribe("conn-1")
        assert bus.subscriber_count("conn-1") == 1
        bus.unsubscribe("conn-1", queue)
        assert bus.subscriber_count("conn-1") == 0
