from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from functools import lru_cache
from pathlib import Path


def find_env_file():
    """Find .env.local file in project (for local development only)"""
    possible_paths = [
        Path(__file__).parent.parent.parent / '.env.local',  # backend/.env.local
        Path.cwd() / '.env.local',
    ]
    for p in possible_paths:
        if p.exists():
            return str(p)
    return None  # No env file found, will use environment variables


class Settings(BaseSettings):
    env: str = 'development'
    api_v1_prefix: str = '/api/v1'
    project_name: str = 'Roundtable Co-Facilitator'

    # CORS - comma separated origins or "*" for all
    cors_origins: str = '*'

    # Engine selection: auto | native | whisper | deepgram
    # Backward-compatible alias: NEXT_PUBLIC_SPEECH_ENGINE
    speech_engine: str = Field(
        default='auto',
        validation_alias=AliasChoices('SPEECH_ENGINE', 'NEXT_PUBLIC_SPEECH_ENGINE'),
    )
    # Native recognizers refuse to run outside a secure context (HTTPS / localhost)
    speech_secure_context: bool = True
    speech_lang: str = 'en-US'

    # Native continuous engine
    native_restart_interval_seconds: float = 45.0  # recognizer stops itself at ~60s
    native_silence_cycle_seconds: float = 30.0
    native_watchdog_tick_seconds: float = 1.0
    native_network_error_threshold: int = 3
    native_restart_backoff_seconds: float = 1.0
    native_max_total_restarts: int = 20

    # Chunked (whisper) engine
    chunk_interval_seconds: float = 4.0
    chunk_mime_type: str = 'audio/webm;codecs=opus'
    transcribe_url: str = 'http://localhost:8000/api/v1/transcribe'
    transcribe_timeout_seconds: float = 60.0

    # Upstream Whisper API used by the /transcribe endpoint
    openai_api_key: str = ''
    openai_base_url: str = 'https://api.openai.com/v1'
    whisper_model: str = 'whisper-1'
    whisper_language: str = 'en'
    transcribe_max_bytes: int = 10 * 1024 * 1024  # Whisper API upload limit
    transcribe_min_bytes: int = 1000  # smaller chunks are noise

    # Push capture (browser streams PCM s16le mono over the websocket)
    capture_sample_rate: int = 16000

    # Speaker attribution for finalized transcript
    facilitator_name: str = ''
    speaker_continuity_seconds: float = 30.0

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding='utf-8',
        extra='ignore',
        populate_by_name=True,
    )

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(',') if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
