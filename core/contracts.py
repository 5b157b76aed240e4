"""Canonical data contracts for the batch analysis pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle of a single lesson job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


class RunStatus(str, Enum):
    """Lifecycle of a batch run."""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (RunStatus.QUEUED, RunStatus.RUNNING)

    @property
    def is_finished(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_ERRORS, RunStatus.FAILED, RunStatus.STOPPED)


class MetricsMode(str, Enum):
    """Whether a run scores the built-in metrics or a stored configuration."""

    FIXED = "fixed"
    CONFIGURABLE = "configurable"


class AnalysisStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class MetricProgressStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceType(str, Enum):
    """Registered content origins."""

    YONOTE = "yonote"
    GENERIC_LIST = "generic_list"


class _Snapshot(BaseModel):
    """Read-only view of a stored row."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=False)


class Program(_Snapshot):
    id: str
    user_id: str
    name: str
    source_type: str
    root_url: str
    credential_id: Optional[str] = None
    model_id: Optional[str] = None
    created_at: Optional[datetime] = None


class Credential(_Snapshot):
    """Stored credential. ``secret_encrypted`` is only readable through the secret box."""

    id: str
    user_id: str
    provider: str
    name: Optional[str] = None
    secret_encrypted: str


class Lesson(_Snapshot):
    id: str
    program_id: str
    title: str
    source_url: str = ""
    position: int = 0
    cached_content: Optional[str] = None
    content_hash: Optional[str] = None
    fetched_at: Optional[datetime] = None


class Run(_Snapshot):
    id: str
    program_id: str
    user_id: str
    status: RunStatus
    metrics_mode: MetricsMode = MetricsMode.FIXED
    metric_configuration_id: Optional[str] = None
    total: int = 0
    queued: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    max_concurrency: int = 1
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Job(_Snapshot):
    id: str
    run_id: str
    program_id: str
    lesson_id: str
    status: JobStatus
    attempt_count: int = 0
    last_error: Optional[str] = None
    lock_owner: Optional[str] = None
    lock_expires_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MetricConfig(BaseModel):
    """One scoring dimension, either built-in or user-defined."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    name: str
    prompt_text: str = ""
    display_order: int = 0
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _non_empty_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("metric name is required")
        return text


class MetricResult(BaseModel):
    score: int
    comment: str = ""
    examples: List[str] = Field(default_factory=list)
    detailed_analysis: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)


class AnalysisRecord(_Snapshot):
    id: str
    content: str
    status: AnalysisStatus
    results: Dict[str, Any] = Field(default_factory=dict)
    model_used: str
    content_hash: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    program_id: Optional[str] = None
    run_id: Optional[str] = None
    lesson_id: Optional[str] = None
    configuration_id: Optional[str] = None
    configuration_snapshot: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class LLMRequestRecord(_Snapshot):
    id: str
    analysis_id: str
    metric: str
    model: str
    provider: Optional[str] = None
    prompt: str = ""
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0
    created_at: Optional[datetime] = None


class AuthContext(BaseModel):
    """Credentials handed to an adapter for one call."""

    cookie: Optional[str] = None
    token: Optional[str] = None
    api_key: Optional[str] = None

    def __repr__(self) -> str:
        present = [name for name in ("cookie", "token", "api_key") if getattr(self, name)]
        return f"AuthContext(present={present})"

    __str__ = __repr__


class AdapterValidation(BaseModel):
    ok: bool
    reason: Optional[str] = None


class LessonRef(BaseModel):
    """Lesson discovered by enumerating a program root."""

    title: str
    url: str
    order: int


class FetchedContent(BaseModel):
    text: str
    hash: str


class GenerateOptions(BaseModel):
    model: str
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout_ms: int = 60000


class GenerateResult(BaseModel):
    score: int
    comment: str = ""
    examples: List[str] = Field(default_factory=list)
    detailed_analysis: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    tokens_used: Optional[int] = None
    duration_ms: int = 0
    provider: str
    model: str
    raw_text: str = ""

    def to_metric_result(self) -> MetricResult:
        return MetricResult(
            score=self.score,
            comment=self.comment,
            examples=list(self.examples),
            detailed_analysis=self.detailed_analysis,
            suggestions=list(self.suggestions),
        )


class MetricProgress(BaseModel):
    status: MetricProgressStatus = MetricProgressStatus.PENDING
    progress: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class AnalysisProgress(BaseModel):
    """Ephemeral per-analysis progress snapshot served to pollers."""

    analysis_id: str
    metrics: Dict[str, MetricProgress] = Field(default_factory=dict)
    overall_progress: int = 0
    status_message: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobOutcome(BaseModel):
    """Result of one pick-and-process cycle."""

    job_id: str
    run_id: str
    lesson_id: str
    status: JobStatus
    error: Optional[str] = None
    analysis_id: Optional[str] = None
    terminal: bool = False
