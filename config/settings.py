"""
Settings Configuration
Pydantic-validated configuration for the batch analysis pipeline
"""
import os
import socket
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class DatabaseSettings(BaseSettings):
    """Relational store"""
    url: str = Field(default="sqlite:///./data/batch_analyzer.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL statements")

    class Config:
        env_prefix = "DATABASE_"


class QueueSettings(BaseSettings):
    """Job queue leasing and retry"""
    lock_ttl_seconds: int = Field(default=90, description="Lease duration for a claimed job")
    max_attempts: int = Field(default=3, description="Retries before a job is terminally failed")
    retry_backoff_seconds: List[int] = Field(default_factory=lambda: [10, 30, 60], description="Backoff indexed by prior attempt count")
    max_tick_concurrency: int = Field(default=10, description="Upper bound for jobs processed per tick")
    worker_id: str = Field(default_factory=_default_worker_id, description="Lock owner identifier")
    poll_interval_seconds: float = Field(default=5.0, description="Delay between ticks in worker mode")

    class Config:
        env_prefix = "QUEUE_"

    @field_validator("retry_backoff_seconds")
    @classmethod
    def _non_empty_backoff(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("retry_backoff_seconds must not be empty")
        return [max(0, int(item)) for item in value]


class ScraperSettings(BaseSettings):
    """Content source adapters"""
    request_timeout: float = Field(default=30.0, description="HTTP timeout (seconds)")
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; LessonBatchAnalyzer/1.0)",
        description="User-Agent header for content hosts",
    )
    allowed_hosts: List[str] = Field(
        default_factory=lambda: ["yonote.ru", "practicum.yandex.ru", "praktikum.yandex.ru"],
        description="Hosts accepted by the cookie-authenticated scraper",
    )
    min_content_chars: int = Field(default=100, description="Shorter extractions fall back to whole-page text")
    max_title_chars: int = Field(default=200, description="Lesson title length limit")

    class Config:
        env_prefix = "SCRAPER_"


class LLMSettings(BaseSettings):
    """LLM providers"""
    model_id: str = Field(default="claude-haiku", description="Default model id from the model catalog")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    max_tokens: int = Field(default=2000, description="Completion token limit")
    timeout_ms: int = Field(default=60000, description="Per-call timeout")

    max_attempts: int = Field(default=3, description="Retry wrapper attempts")
    base_delay_ms: int = Field(default=1000, description="Initial retry delay")
    max_delay_ms: int = Field(default=10000, description="Retry delay ceiling")
    fallback_model_id: Optional[str] = Field(default=None, description="Model tried once after retries are exhausted")

    # API Keys
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API Key")
    yandex_api_key: Optional[str] = Field(default=None, description="Yandex Cloud API Key")
    yandex_folder_id: Optional[str] = Field(default=None, description="Yandex Cloud folder id")

    class Config:
        env_prefix = "LLM_"


class AnalysisSettings(BaseSettings):
    """Analysis engine pacing and progress"""
    stagger_ms: int = Field(default=200, description="Per-metric start delay multiplier")
    progress_tick_ms: int = Field(default=500, description="Interim progress tick interval")
    progress_step: int = Field(default=15, description="Interim progress increment")
    progress_cap: int = Field(default=90, description="Interim progress ceiling")
    progress_ttl_seconds: int = Field(default=3600, description="Progress state lifetime")

    title_timeout_ms: int = Field(default=5000, description="Title generation timeout")
    title_max_tokens: int = Field(default=50, description="Title generation token limit")
    title_content_chars: int = Field(default=1500, description="Content prefix sent for title generation")
    fallback_title: str = Field(default="Untitled lesson", description="Title used when generation fails")

    enable_cognitive_load: bool = Field(default=False, description="Add the cognitive_load built-in metric")

    class Config:
        env_prefix = "ANALYSIS_"


class SecuritySettings(BaseSettings):
    """Credential encryption and worker endpoint auth"""
    encryption_key: Optional[str] = Field(default=None, description="Secret used to derive the credential key")
    worker_token: Optional[str] = Field(default=None, description="Bearer token for the worker tick endpoint")

    class Config:
        env_prefix = "SECURITY_"


class GeneralSettings(BaseSettings):
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Log file name under logs/")

    class Config:
        env_prefix = "APP_"


class Settings(BaseSettings):
    """Aggregated settings"""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    scraper: ScraperSettings = Field(default_factory=ScraperSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            database=DatabaseSettings(),
            queue=QueueSettings(),
            scraper=ScraperSettings(),
            llm=LLMSettings(),
            analysis=AnalysisSettings(),
            security=SecuritySettings(),
            general=GeneralSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_queue_settings() -> QueueSettings:
    return get_settings().queue
