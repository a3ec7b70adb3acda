"""Runtime configuration for the question-generation worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urlparse

from qagen.generation.prompts import DEFAULT_QA_THEME

DEFAULT_PAUSE_UNTIL = datetime(2999, 5, 5, tzinfo=UTC)


@dataclass(slots=True)
class GenerationSettings:
    """Backlog draining policy."""

    max_active_jobs: int = 5
    stale_after_seconds: int = 240
    retry_delay_seconds: float = 1.0
    pause_until: datetime = DEFAULT_PAUSE_UNTIL
    workers: int = 1
    qa_theme: str = DEFAULT_QA_THEME


@dataclass(slots=True)
class ModelSettings:
    """Chat-completion endpoint settings."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-3.5-turbo-16k"
    token_limit: int = 16_000
    min_completion_tokens: int = 1
    temperature: float = 0.01
    timeout_seconds: float = 480.0
    tokenizer_encoding: str = "cl100k_base"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".qagen.db")
    sqlite_busy_timeout_ms: int = 5_000
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    model: ModelSettings = field(default_factory=ModelSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("QAGEN_DB_PATH", ".qagen.db")),
            sqlite_busy_timeout_ms=int(os.getenv("QAGEN_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            generation=GenerationSettings(
                max_active_jobs=int(os.getenv("QAGEN_MAX_ACTIVE_JOBS", "5")),
                stale_after_seconds=int(os.getenv("QAGEN_STALE_AFTER_SECONDS", "240")),
                retry_delay_seconds=float(os.getenv("QAGEN_RETRY_DELAY_SECONDS", "1.0")),
                pause_until=_env_datetime("QAGEN_PAUSE_UNTIL", default=DEFAULT_PAUSE_UNTIL),
                workers=int(os.getenv("QAGEN_WORKERS", "1")),
                qa_theme=os.getenv("QAGEN_QA_THEME", DEFAULT_QA_THEME),
            ),
            model=ModelSettings(
                base_url=os.getenv("QAGEN_MODEL_BASE_URL", "https://api.openai.com/v1"),
                api_key=os.getenv("QAGEN_MODEL_API_KEY", ""),
                model=os.getenv("QAGEN_MODEL_NAME", "gpt-3.5-turbo-16k"),
                token_limit=int(os.getenv("QAGEN_MODEL_TOKEN_LIMIT", "16000")),
                min_completion_tokens=int(os.getenv("QAGEN_MIN_COMPLETION_TOKENS", "1")),
                temperature=float(os.getenv("QAGEN_MODEL_TEMPERATURE", "0.01")),
                timeout_seconds=float(os.getenv("QAGEN_MODEL_TIMEOUT_SECONDS", "480")),
                tokenizer_encoding=os.getenv("QAGEN_TOKENIZER_ENCODING", "cl100k_base"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if worker settings are unusable."""

        generation = self.generation
        if generation.max_active_jobs <= 0:
            raise ValueError("QAGEN_MAX_ACTIVE_JOBS must be a positive integer.")
        if generation.stale_after_seconds <= 0:
            raise ValueError("QAGEN_STALE_AFTER_SECONDS must be > 0.")
        if generation.retry_delay_seconds < 0:
            raise ValueError("QAGEN_RETRY_DELAY_SECONDS must be >= 0.")
        if generation.workers <= 0:
            raise ValueError("QAGEN_WORKERS must be a positive integer.")
        if self.model.token_limit <= 0:
            raise ValueError("QAGEN_MODEL_TOKEN_LIMIT must be a positive integer.")
        if self.model.min_completion_tokens <= 0:
            raise ValueError("QAGEN_MIN_COMPLETION_TOKENS must be a positive integer.")
        if self.model.min_completion_tokens >= self.model.token_limit:
            raise ValueError(
                "QAGEN_MIN_COMPLETION_TOKENS must be lower than QAGEN_MODEL_TOKEN_LIMIT.",
            )
        if self.model.timeout_seconds <= 0:
            raise ValueError("QAGEN_MODEL_TIMEOUT_SECONDS must be > 0.")
        _validate_base_url(self.model.base_url)

    def validate_for_model_calls(self) -> None:
        """Validation required before a worker talks to the model endpoint."""

        self.validate()
        if not self.model.api_key.strip():
            raise ValueError("QAGEN_MODEL_API_KEY is required to run the worker.")


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid model base URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_datetime(name: str, default: datetime) -> datetime:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid ISO datetime for {name}: {value!r}") from error
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
