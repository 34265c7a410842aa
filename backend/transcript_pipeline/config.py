"""Application-wide configuration loader.

Every setting is read from the environment with the idiom

    os.getenv(KEY) or DEFAULT

so that *falsy* values injected by docker-compose (``FOO=""``) fall back to the
in-code default instead of overriding it with an empty string.
"""

import os


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name) or default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name) or default
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    """Settings helper that gracefully falls back to sane defaults."""

    DATABASE_URL: str = os.getenv('DATABASE_URL') or 'sqlite:///data/transcripts.db'
    DB_ECHO: bool = _flag('DB_ECHO')

    CELERY_BROKER_URL: str = os.getenv('CELERY_BROKER_URL') or 'redis://broker:6379/0'
    CELERY_RESULT_BACKEND: str = os.getenv('CELERY_RESULT_BACKEND') or 'redis://broker:6379/0'
    # Tests and local debugging only: the task then runs inside the poll request
    # (on a worker thread) and eager retries ignore their countdown.
    CELERY_TASK_ALWAYS_EAGER: bool = _flag('CELERY_TASK_ALWAYS_EAGER')

    # Media platform (Kaltura) used to resolve public asset ids
    KALTURA_SERVICE_URL: str = os.getenv('KALTURA_SERVICE_URL') or 'https://cdnapisec.kaltura.com'
    KALTURA_PARTNER_ID: int = int(os.getenv('KALTURA_PARTNER_ID') or '2503451')
    KALTURA_WIDGET_ID: str = os.getenv('KALTURA_WIDGET_ID') or '_2503451'
    KALTURA_DEFAULT_FLAVOR_PARAMS_ID: int = int(os.getenv('KALTURA_DEFAULT_FLAVOR_PARAMS_ID') or '100')

    # Speech-to-text provider
    ASSEMBLYAI_API_KEY: str = os.getenv('ASSEMBLYAI_API_KEY') or ''
    ASSEMBLYAI_BASE_URL: str = os.getenv('ASSEMBLYAI_BASE_URL') or 'https://api.assemblyai.com'
    TRANSCRIPTION_KEYTERMS: list[str] = _csv(
        'TRANSCRIPTION_KEYTERMS', 'UN80,Carolyn Schwalger,Brian Wallace,Guy Ryder'
    )

    # Structured-extraction provider (OpenAI-compatible chat completions)
    LLM_CHAT_COMPLETIONS_URL: str = os.getenv('LLM_CHAT_COMPLETIONS_URL') or 'https://api.openai.com/v1/chat/completions'
    LLM_API_KEY: str = os.getenv('LLM_API_KEY') or ''
    LLM_MODEL: str = os.getenv('LLM_MODEL') or 'gpt-5-mini'
    SPEAKER_TRANSCRIPT_CHAR_LIMIT: int = int(os.getenv('SPEAKER_TRANSCRIPT_CHAR_LIMIT') or '50000')

    # Background speaker annotation
    ANNOTATION_MAX_ATTEMPTS: int = int(os.getenv('ANNOTATION_MAX_ATTEMPTS') or '3')
    ANNOTATION_TASK_MAX_RETRIES: int = int(os.getenv('ANNOTATION_TASK_MAX_RETRIES') or '3')
    ANNOTATION_RETRY_BACKOFF_SECONDS: float = float(os.getenv('ANNOTATION_RETRY_BACKOFF_SECONDS') or '5')
    # An ANNOTATING record untouched for this long is re-triggered by the next poll.
    ANNOTATION_STALE_SECONDS: float = float(os.getenv('ANNOTATION_STALE_SECONDS') or '900')

    HTTP_TIMEOUT_SECONDS: float = float(os.getenv('HTTP_TIMEOUT_SECONDS') or '60')
    LOG_DIR: str = os.getenv('LOG_DIR') or 'backend/logs'
    LOG_LEVEL: str = os.getenv('LOG_LEVEL') or 'INFO'


settings = Settings()
