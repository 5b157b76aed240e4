"""Job runner: queue -> adapter -> engine -> persistence for one tick of work."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Tuple

from core import AnalysisStatus, AuthContext, Job, JobOutcome, JobStatus, Lesson, MetricsMode, Program, Run, RunStatus
from intelligence.analysis import AnalysisEngine
from processing import compute_content_hash
from scrapers.registry import AdapterRegistry
from storage.repository import BatchRepository
from storage.secret_box import SecretBox
from utils.exceptions import (
    AuthError,
    BatchAnalyzerError,
    ConfigurationError,
    NotFoundError,
    SessionExpiredError,
    SourceFetchError,
    StaleCredentialError,
    UnsupportedSourceError,
    ValidationError,
)

from .queue import JobQueue


logger = logging.getLogger(__name__)

AUTH_FAILED = "Authentication failed - please update credentials"
DECRYPT_FAILED = "Failed to decrypt credentials - please re-authenticate"
ALL_METRICS_FAILED = "Analysis failed for every metric"

TERMINAL_ERRORS = (AuthError, NotFoundError, ValidationError, UnsupportedSourceError, ConfigurationError)


class JobFailure(Exception):
    """A job failure with the message to record and whether retries apply."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


def auth_from_secret(plaintext: str) -> AuthContext:
    """
    Build an AuthContext from a decrypted credential.

    JSON objects may carry ``cookie``, ``token`` and ``api_key``; anything
    else is taken as a raw cookie header.
    """
    text = (plaintext or "").strip()
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            return AuthContext(
                cookie=payload.get("cookie"),
                token=payload.get("token"),
                api_key=payload.get("api_key"),
            )
    return AuthContext(cookie=text or None)


def classify_error(error: Exception) -> JobFailure:
    """Map an exception raised while processing a job onto the recorded failure."""
    if isinstance(error, JobFailure):
        return error
    if isinstance(error, StaleCredentialError):
        return JobFailure(DECRYPT_FAILED, retryable=False)
    # Auth rejections keep their own message but still spend the retry budget.
    if isinstance(error, SessionExpiredError):
        return JobFailure(AUTH_FAILED)
    if isinstance(error, SourceFetchError) and error.is_auth_failure:
        return JobFailure(AUTH_FAILED)
    if isinstance(error, TERMINAL_ERRORS):
        return JobFailure(error.message, retryable=False)
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    return JobFailure(message, retryable=True)


class JobRunner:
    """
    Processes claimed jobs.

    Every exception inside ``process_next_job`` becomes a recorded job
    outcome, so one failing lesson never aborts the rest of the tick.
    """

    def __init__(
        self,
        repository: BatchRepository,
        queue: JobQueue,
        adapters: AdapterRegistry,
        engine: AnalysisEngine,
        secret_box: SecretBox,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.adapters = adapters
        self.engine = engine
        self.secret_box = secret_box

    async def process_tick(self, max_concurrency: int = 1, run_id: Optional[str] = None) -> List[JobOutcome]:
        """Run up to ``max_concurrency`` pick-and-process cycles concurrently."""
        slots = max(1, int(max_concurrency))
        results = await asyncio.gather(*[self.process_next_job(run_id) for _ in range(slots)])
        outcomes = [outcome for outcome in results if outcome is not None]
        if outcomes:
            logger.info("[%s] tick processed %d jobs", self.queue.worker_id, len(outcomes))
        return outcomes

    async def process_next_job(self, run_id: Optional[str] = None) -> Optional[JobOutcome]:
        job = self.queue.pick_job(run_id)
        if job is None:
            return None
        logger.info("[%s] picked job %s (lesson %s)", self.queue.worker_id, job.id, job.lesson_id)

        try:
            status, analysis_id = await self._process(job)
        except Exception as e:
            failure = classify_error(e)
            if not isinstance(e, (JobFailure, BatchAnalyzerError)):
                logger.exception("Unexpected error processing job %s", job.id)
            updated = self.queue.update_job_status(job.id, JobStatus.FAILED, failure.message, retryable=failure.retryable)
            return JobOutcome(
                job_id=job.id,
                run_id=job.run_id,
                lesson_id=job.lesson_id,
                status=updated.status,
                error=failure.message,
                terminal=updated.status.is_terminal,
            )

        updated = self.queue.update_job_status(job.id, status)
        logger.info("[%s] job %s %s", self.queue.worker_id, job.id, updated.status.value)
        return JobOutcome(
            job_id=job.id,
            run_id=job.run_id,
            lesson_id=job.lesson_id,
            status=updated.status,
            analysis_id=analysis_id,
            terminal=True,
        )

    def _load(self, job: Job) -> Tuple[Lesson, Run, Program]:
        lesson = self.repository.get_lesson(job.lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson not found", entity="lesson", entity_id=job.lesson_id)
        program = self.repository.get_program(job.program_id)
        if program is None:
            raise NotFoundError("Program not found", entity="program", entity_id=job.program_id)
        run = self.repository.get_run(job.run_id)
        if run is None:
            raise NotFoundError("Run not found", entity="run", entity_id=job.run_id)
        return lesson, run, program

    def _resolve_auth(self, program: Program) -> Optional[AuthContext]:
        if not program.credential_id:
            return None
        credential = self.repository.get_credential(program.credential_id)
        if credential is None:
            raise NotFoundError("Credentials not found", entity="credential", entity_id=program.credential_id)
        return auth_from_secret(self.secret_box.decrypt(credential.secret_encrypted))

    async def _process(self, job: Job) -> Tuple[JobStatus, Optional[str]]:
        lesson, run, program = self._load(job)

        if run.status == RunStatus.PAUSED:
            raise JobFailure("Run is paused", retryable=True)
        if run.status == RunStatus.STOPPED:
            raise JobFailure("Run is stopped")

        auth = self._resolve_auth(program)
        adapter = self.adapters.get(program.source_type)
        url = lesson.source_url or program.root_url

        fetched = await adapter.fetch_lesson_content(url, auth)
        content_hash = compute_content_hash(fetched.text)
        if self.queue.check_content_hash(lesson.id, content_hash, run.metric_configuration_id):
            logger.info("Skipping lesson %s: content unchanged", lesson.id)
            return JobStatus.SKIPPED, None

        self.repository.update_lesson_content(lesson.id, content=fetched.text, content_hash=content_hash)

        metrics = None
        if run.metrics_mode == MetricsMode.CONFIGURABLE and run.metric_configuration_id:
            metrics = self.repository.list_active_metric_configs(run.metric_configuration_id)

        record = await self.engine.analyze(
            fetched.text,
            model_id=program.model_id,
            metrics_mode=run.metrics_mode,
            metrics=metrics,
            user_id=program.user_id,
            program_id=program.id,
            run_id=run.id,
            lesson_id=lesson.id,
            configuration_id=run.metric_configuration_id,
        )
        if record.status == AnalysisStatus.FAILED:
            raise JobFailure(ALL_METRICS_FAILED, retryable=True)
        return JobStatus.SUCCEEDED, record.id

    def cleanup_stale_locks(self) -> int:
        return self.queue.release_stale_locks()
