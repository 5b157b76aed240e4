"""Core contracts and shared types for the batch analysis pipeline."""

from .contracts import (
    AdapterValidation,
    AnalysisProgress,
    AnalysisRecord,
    AnalysisStatus,
    AuthContext,
    Credential,
    FetchedContent,
    GenerateOptions,
    GenerateResult,
    Job,
    JobOutcome,
    JobStatus,
    Lesson,
    LessonRef,
    LLMRequestRecord,
    MetricConfig,
    MetricProgress,
    MetricProgressStatus,
    MetricResult,
    MetricsMode,
    Program,
    Run,
    RunStatus,
    SourceType,
    utcnow,
)

__all__ = [
    "AdapterValidation",
    "AnalysisProgress",
    "AnalysisRecord",
    "AnalysisStatus",
    "AuthContext",
    "Credential",
    "FetchedContent",
    "GenerateOptions",
    "GenerateResult",
    "Job",
    "JobOutcome",
    "JobStatus",
    "Lesson",
    "LessonRef",
    "LLMRequestRecord",
    "MetricConfig",
    "MetricProgress",
    "MetricProgressStatus",
    "MetricResult",
    "MetricsMode",
    "Program",
    "Run",
    "RunStatus",
    "SourceType",
    "utcnow",
]
