import os

from dotenv import load_dotenv

load_dotenv()

# Reasoning engine
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "auto")
LLM_MODEL_ANALYSIS = os.getenv("LLM_MODEL_ANALYSIS", "")
LLM_MODEL_REPORT = os.getenv("LLM_MODEL_REPORT", "")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.3"))

# Transcription provider (Deepgram live)
DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
DEEPGRAM_URL = os.getenv("DEEPGRAM_URL", "wss://api.deepgram.com/v1/listen")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_LANGUAGE = os.getenv("DEEPGRAM_LANGUAGE", "es")
DEEPGRAM_ENDPOINTING_MS = int(os.getenv("DEEPGRAM_ENDPOINTING_MS", "500"))
TRANSCRIPTION_CONNECT_TIMEOUT = float(os.getenv("TRANSCRIPTION_CONNECT_TIMEOUT", "5"))
TRANSCRIPTION_KEEPALIVE_SECONDS = float(os.getenv("TRANSCRIPTION_KEEPALIVE_SECONDS", "10"))

# Session state
TRANSCRIPT_WINDOW = int(os.getenv("TRANSCRIPT_WINDOW", "20"))
AUTO_ANALYZE = os.getenv("AUTO_ANALYZE", "true").lower() in ("1", "true", "yes", "on")
MAX_AUDIO_CHUNK_BYTES = int(os.getenv("MAX_AUDIO_CHUNK_BYTES", str(1024 * 1024)))
SESSION_RETENTION_SECONDS = int(os.getenv("SESSION_RETENTION_SECONDS", "60"))
SESSION_PURGE_AFTER_SECONDS = int(os.getenv("SESSION_PURGE_AFTER_SECONDS", "300"))
SESSION_CLEANUP_INTERVAL_SECONDS = int(os.getenv("SESSION_CLEANUP_INTERVAL_SECONDS", "300"))

DATABASE_PATH = os.getenv("DATABASE_PATH", "consultia.db")
