from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    app_name: str = "Storyteller Engine"
    # Default to a local postgres database if not set in env
    database_url: str = "postgresql+asyncpg://localhost/storyteller"

    # OpenAI-compatible chat/completions + images endpoint
    openai_api_key: str = ""
    openai_base_url: str | None = None
    extraction_model: str = "gpt-4.1-2025-04-14"
    image_model: str = "dall-e-3"

    # ElevenLabs sound effects
    elevenlabs_api_key: str = ""
    elevenlabs_base_url: str = "https://api.elevenlabs.io/v1"

    # Retry combinator (delay = base_delay * 2 ** attempt, attempt counted from 1)
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0

    # Registry TTLs (seconds)
    session_ttl_seconds: int = 30 * 60
    pending_audio_ttl_seconds: int = 10 * 60
    launch_sequence_ttl_seconds: int = 15 * 60
    generation_progress_ttl_seconds: int = 20 * 60
    completed_progress_ttl_seconds: int = 5 * 60

    # Registry capacity (max, warn)
    max_active_sessions: int = 1000
    warn_active_sessions: int = 800
    max_pending_audio: int = 500
    warn_pending_audio: int = 400
    max_launch_sequences: int = 200
    warn_launch_sequences: int = 160
    max_generation_progress: int = 500
    warn_generation_progress: int = 400

    # Usage ledger
    max_usage_sessions: int = 500
    warn_usage_sessions: int = 400
    usage_ttl_seconds: int = 2 * 60 * 60

    # Reaper intervals (seconds)
    registry_sweep_interval: int = 60
    usage_sweep_interval: int = 10 * 60

    # Lorebook
    lorebook_max_entries: int = 200

    # Files
    log_file: str = "server.log"
    log_level: str = "INFO"
    qa_log_path: str = "logs/qa-errors.jsonl"
    sfx_cache_dir: str = "public/audio/sfx"
    image_output_dir: str = "public/portraits"
    image_public_prefix: str = "/storyteller/portraits"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

@lru_cache
def get_settings():
    return Settings()
