"""
Analysis Module
Metric fan-out, progress tracking and result aggregation
"""
from .engine import AnalysisEngine, MetricOutcome, aggregate_status, clean_title
from .progress import ProgressTracker, overall_progress
from .prompts import BUILTIN_METRIC_NAMES, builtin_metrics, prompt_for

__all__ = [
    "AnalysisEngine",
    "MetricOutcome",
    "aggregate_status",
    "clean_title",
    "ProgressTracker",
    "overall_progress",
    "BUILTIN_METRIC_NAMES",
    "builtin_metrics",
    "prompt_for",
]
