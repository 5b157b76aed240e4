"""
Progress Tracker
Per-analysis, per-metric progress served to pollers

State is kept in an in-process TTL cache. It is not shared between worker
processes and is lost on restart; a poller that finds nothing should fall
back to the stored analysis status.
"""
from typing import Iterable, Optional
import logging

from core import AnalysisProgress, MetricProgress, MetricProgressStatus, utcnow
from storage.cache import BaseCache, MemoryCache

from .prompts import display_name


logger = logging.getLogger(__name__)

BASE_PROGRESS = 5
METRICS_SHARE = 90
FINALIZING_PROGRESS = 5


def overall_progress(progress: AnalysisProgress) -> int:
    """5% for starting, 90% spread over the metrics, 5% once every metric is done."""
    total = len(progress.metrics)
    if total == 0:
        return BASE_PROGRESS

    per_metric = METRICS_SHARE / total
    value = float(BASE_PROGRESS)
    done = 0
    for metric in progress.metrics.values():
        if metric.status in (MetricProgressStatus.COMPLETED, MetricProgressStatus.FAILED):
            value += per_metric
            done += 1
        elif metric.status == MetricProgressStatus.PROCESSING:
            value += per_metric * metric.progress / 100
    if done == total:
        value += FINALIZING_PROGRESS
    return min(100, int(round(value)))


def progress_message(metric: str, sub_progress: int) -> str:
    name = display_name(metric)
    if sub_progress < 30:
        return f"Initializing {name} analysis..."
    if sub_progress < 60:
        return f"Processing {name}..."
    if sub_progress < 90:
        return f"Finalizing {name} results..."
    return f"Completing {name}..."


class ProgressTracker:
    """Keeps one ``AnalysisProgress`` per analysis id."""

    def __init__(self, cache: Optional[BaseCache] = None, ttl_seconds: int = 3600):
        self.cache = cache or MemoryCache(ttl=ttl_seconds)
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(analysis_id: str) -> str:
        return f"progress:{analysis_id}"

    def _save(self, progress: AnalysisProgress) -> AnalysisProgress:
        progress.overall_progress = overall_progress(progress)
        progress.updated_at = utcnow()
        self.cache.set(self._key(progress.analysis_id), progress, self.ttl_seconds)
        return progress

    def initialize(self, analysis_id: str, metric_names: Iterable[str]) -> AnalysisProgress:
        progress = AnalysisProgress(
            analysis_id=analysis_id,
            metrics={name: MetricProgress() for name in metric_names},
            status_message="Initializing analysis...",
        )
        return self._save(progress)

    def get(self, analysis_id: str) -> Optional[AnalysisProgress]:
        return self.cache.get(self._key(analysis_id))

    def update_metric(
        self,
        analysis_id: str,
        metric: str,
        status: MetricProgressStatus,
        value: int,
        error: Optional[str] = None,
    ) -> Optional[AnalysisProgress]:
        progress = self.get(analysis_id)
        if progress is None:
            logger.debug("No progress state for analysis %s", analysis_id)
            return None

        entry = progress.metrics.setdefault(metric, MetricProgress())
        now = utcnow()
        if status == MetricProgressStatus.PROCESSING and entry.started_at is None:
            entry.started_at = now
        if status in (MetricProgressStatus.COMPLETED, MetricProgressStatus.FAILED):
            entry.completed_at = now
        entry.status = status
        entry.progress = max(0, min(100, int(value)))
        entry.error = error

        if status == MetricProgressStatus.PROCESSING:
            progress.status_message = progress_message(metric, entry.progress)
        elif status == MetricProgressStatus.COMPLETED:
            progress.status_message = f"{display_name(metric)} complete"
        elif status == MetricProgressStatus.FAILED:
            progress.status_message = f"{display_name(metric)} failed"
        return self._save(progress)

    def advance(self, analysis_id: str, metric: str, step: int, cap: int) -> Optional[int]:
        """Interim tick: raise a processing metric by ``step`` without passing ``cap``."""
        progress = self.get(analysis_id)
        if progress is None:
            return None
        entry = progress.metrics.get(metric)
        if entry is None or entry.status != MetricProgressStatus.PROCESSING or entry.progress >= cap:
            return entry.progress if entry else None
        updated = self.update_metric(analysis_id, metric, MetricProgressStatus.PROCESSING, min(cap, entry.progress + step))
        return updated.metrics[metric].progress if updated else None

    def cleanup(self, analysis_id: str) -> None:
        self.cache.delete(self._key(analysis_id))
