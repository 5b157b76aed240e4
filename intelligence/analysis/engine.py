"""
Analysis Engine
Runs one lesson through every metric in parallel and stores a single outcome
"""
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import re
import time

from sqlalchemy.exc import SQLAlchemyError

from config import AnalysisSettings
from core import (
    AnalysisRecord,
    AnalysisStatus,
    GenerateOptions,
    GenerateResult,
    MetricConfig,
    MetricProgressStatus,
    MetricsMode,
)
from intelligence.llm import BaseLLM, ProviderRegistry, RetryPolicy, generate_with_retry
from intelligence.llm.models import ModelSpec
from processing import compute_content_hash
from storage.repository import BatchRepository

from .progress import ProgressTracker
from .prompts import builtin_metrics, prompt_for, title_prompt


logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 100
_TITLE_STRIP = re.compile(r"[\"'`«»]")


class MetricOutcome:
    """Result of one metric task; exactly one of ``result`` / ``error`` is set."""

    __slots__ = ("metric", "result", "error", "duration_ms")

    def __init__(self, metric: str, result: Optional[GenerateResult] = None, error: Optional[str] = None, duration_ms: int = 0):
        self.metric = metric
        self.result = result
        self.error = error
        self.duration_ms = duration_ms

    @property
    def ok(self) -> bool:
        return self.result is not None


def aggregate_status(outcomes: Sequence[MetricOutcome]) -> AnalysisStatus:
    succeeded = sum(1 for outcome in outcomes if outcome.ok)
    if outcomes and succeeded == len(outcomes):
        return AnalysisStatus.COMPLETED
    if succeeded > 0:
        return AnalysisStatus.PARTIAL
    return AnalysisStatus.FAILED


def clean_title(raw: str) -> str:
    lines = [line.strip() for line in (raw or "").splitlines() if line.strip()]
    if not lines:
        return ""
    title = _TITLE_STRIP.sub("", lines[0])
    title = re.sub(r"^(title|название)\s*:\s*", "", title, flags=re.IGNORECASE).strip()
    return title[:MAX_TITLE_CHARS].strip()


class AnalysisEngine:
    """
    Per-lesson analysis

    For each call: hash the content, create the analysis record, generate a
    title (failures fall back to a fixed label), score every metric
    concurrently with staggered starts and isolated failures, then finalize
    the record once as completed, partial or failed.
    """

    def __init__(
        self,
        repository: BatchRepository,
        providers: ProviderRegistry,
        progress: Optional[ProgressTracker] = None,
        settings: Optional[AnalysisSettings] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.repository = repository
        self.providers = providers
        self.settings = settings or AnalysisSettings()
        self.progress = progress or ProgressTracker(ttl_seconds=self.settings.progress_ttl_seconds)
        self.retry_policy = retry_policy
        self._sleep = sleep

    def resolve_metrics(self, metrics_mode: MetricsMode, metrics: Optional[Sequence[MetricConfig]] = None) -> List[MetricConfig]:
        """Built-ins for fixed mode or an empty configuration, else the active metrics in display order."""
        if MetricsMode(metrics_mode) == MetricsMode.FIXED or not metrics:
            return builtin_metrics(self.settings.enable_cognitive_load)

        active = sorted((m for m in metrics if m.is_active), key=lambda m: m.display_order)
        unique: Dict[str, MetricConfig] = {}
        for metric in active:
            if metric.name in unique:
                logger.warning("Duplicate metric name %s ignored", metric.name)
                continue
            unique[metric.name] = metric
        if not unique:
            logger.info("No active custom metrics, using built-in metrics")
            return builtin_metrics(self.settings.enable_cognitive_load)
        return list(unique.values())

    async def generate_title(self, provider: BaseLLM, spec: ModelSpec, content: str) -> str:
        options = GenerateOptions(
            model=spec.model,
            temperature=0.3,
            max_tokens=self.settings.title_max_tokens,
            timeout_ms=self.settings.title_timeout_ms,
        )
        try:
            raw = await provider.generate_text(title_prompt(content, self.settings.title_content_chars), options)
        except Exception as e:
            logger.warning(f"Title generation failed, using fallback: {e}")
            return self.settings.fallback_title
        return clean_title(raw) or self.settings.fallback_title

    async def _tick(self, analysis_id: str, metric: str) -> None:
        interval = self.settings.progress_tick_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.progress.advance(analysis_id, metric, self.settings.progress_step, self.settings.progress_cap)

    def _audit(self, analysis_id: str, outcome: MetricOutcome, spec: ModelSpec) -> None:
        try:
            if outcome.result is not None:
                self.repository.record_llm_request(
                    analysis_id=analysis_id,
                    metric=outcome.metric,
                    model=outcome.result.model,
                    provider=outcome.result.provider,
                    prompt=f"[{outcome.metric} analysis]",
                    response=outcome.result.model_dump(mode="json"),
                    duration_ms=outcome.result.duration_ms,
                )
            else:
                self.repository.record_llm_request(
                    analysis_id=analysis_id,
                    metric=outcome.metric,
                    model=spec.model,
                    provider=spec.provider,
                    prompt=f"[{outcome.metric} analysis]",
                    error=outcome.error,
                    duration_ms=outcome.duration_ms,
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store audit row for {outcome.metric}: {e}")

    async def _run_metric(
        self,
        analysis_id: str,
        index: int,
        metric: MetricConfig,
        content: str,
        primary: Tuple[BaseLLM, ModelSpec],
        fallback: Optional[Tuple[BaseLLM, ModelSpec]],
    ) -> MetricOutcome:
        provider, spec = primary
        if index and self.settings.stagger_ms:
            await self._sleep(index * self.settings.stagger_ms / 1000)

        self.progress.update_metric(analysis_id, metric.name, MetricProgressStatus.PROCESSING, 10)
        ticker = asyncio.create_task(self._tick(analysis_id, metric.name)) if self.settings.progress_tick_ms > 0 else None
        started = time.perf_counter()
        try:
            result = await generate_with_retry(
                provider,
                prompt_for(metric),
                content,
                self.providers.options_for(spec),
                self.retry_policy,
                fallback=fallback[0] if fallback else None,
                fallback_options=self.providers.options_for(fallback[1]) if fallback else None,
                sleep=self._sleep,
            )
            outcome = MetricOutcome(metric.name, result=result, duration_ms=result.duration_ms)
        except Exception as e:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.warning(f"Metric {metric.name} failed for analysis {analysis_id}: {e}")
            outcome = MetricOutcome(metric.name, error=str(e), duration_ms=duration_ms)
        finally:
            if ticker is not None:
                ticker.cancel()
                with suppress(asyncio.CancelledError):
                    await ticker

        if outcome.ok:
            self.progress.update_metric(analysis_id, metric.name, MetricProgressStatus.COMPLETED, 100)
        else:
            self.progress.update_metric(analysis_id, metric.name, MetricProgressStatus.FAILED, 0, error=outcome.error)
        self._audit(analysis_id, outcome, spec)
        return outcome

    @staticmethod
    def build_results(title: str, spec: ModelSpec, outcomes: Sequence[MetricOutcome], total_duration_ms: int) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for outcome in outcomes:
            if outcome.result is not None:
                entry = outcome.result.to_metric_result().model_dump()
                entry["duration_ms"] = outcome.result.duration_ms
                entry["model"] = outcome.result.model
                results[outcome.metric] = entry
            else:
                results[outcome.metric] = {"error": outcome.error}
        results["lesson_title"] = title
        results["_meta"] = {
            "model_id": spec.model_id,
            "model_label": spec.label,
            "provider": spec.provider,
            "durations_ms": {outcome.metric: outcome.duration_ms for outcome in outcomes},
            "succeeded": sum(1 for outcome in outcomes if outcome.ok),
            "failed": sum(1 for outcome in outcomes if not outcome.ok),
            "total_duration_ms": total_duration_ms,
        }
        return results

    async def analyze(
        self,
        content: str,
        *,
        model_id: Optional[str] = None,
        metrics_mode: MetricsMode = MetricsMode.FIXED,
        metrics: Optional[Sequence[MetricConfig]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        program_id: Optional[str] = None,
        run_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
        configuration_id: Optional[str] = None,
    ) -> AnalysisRecord:
        """
        Analyze one piece of content.

        Args:
            content: lesson text
            model_id: catalog model id (default model when None)
            metrics_mode: fixed built-ins or configurable metrics
            metrics: metric list for configurable mode

        Returns:
            The finalized AnalysisRecord
        """
        mode = MetricsMode(metrics_mode)
        metric_list = self.resolve_metrics(mode, metrics)
        primary = self.providers.resolve(model_id)
        fallback = self.providers.resolve_fallback(primary[1])
        spec = primary[1]

        snapshot = None
        if mode == MetricsMode.CONFIGURABLE:
            snapshot = {"metrics": [m.model_dump() for m in metric_list]}
        record = self.repository.create_analysis(
            content=content,
            content_hash=compute_content_hash(content),
            model_used=spec.model_id,
            user_id=user_id,
            session_id=session_id,
            program_id=program_id,
            run_id=run_id,
            lesson_id=lesson_id,
            configuration_id=configuration_id,
            configuration_snapshot=snapshot,
        )
        self.progress.initialize(record.id, [m.name for m in metric_list])
        logger.info(f"Analysis {record.id} started: {len(metric_list)} metrics with {spec.model_id}")

        started = time.perf_counter()
        try:
            title = await self.generate_title(primary[0], spec, content)
            outcomes = await asyncio.gather(
                *[
                    self._run_metric(record.id, index, metric, content, primary, fallback)
                    for index, metric in enumerate(metric_list)
                ]
            )
        except Exception as e:
            self.progress.cleanup(record.id)
            self.repository.finalize_analysis(record.id, status=AnalysisStatus.FAILED, results={"error": str(e)})
            raise

        total_duration_ms = int((time.perf_counter() - started) * 1000)
        status = aggregate_status(outcomes)
        try:
            finalized = self.repository.finalize_analysis(
                record.id,
                status=status,
                results=self.build_results(title, spec, outcomes, total_duration_ms),
            )
        finally:
            self.progress.cleanup(record.id)

        succeeded = sum(1 for outcome in outcomes if outcome.ok)
        log = logger.info if status != AnalysisStatus.FAILED else logger.error
        log(f"Analysis {record.id} {status.value}: {succeeded}/{len(outcomes)} metrics in {total_duration_ms}ms")
        return finalized
