"""Durable lease-based job queue backed by the relational store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update

from core import AnalysisStatus, Job, JobStatus, Run, RunStatus
from storage.database import Database
from storage.models import AnalysisModel, JobModel, RunModel
from utils.exceptions import NotFoundError, ValidationError


logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 90
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = (10, 30, 60)
STOPPED_BY_USER = "Run was stopped by user"

# Candidates read per claim attempt; losers of a claim race move to the next one.
_CLAIM_BATCH = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    Lease-based work queue.

    A job is claimed by a conditional UPDATE that re-checks eligibility, so
    concurrent claimants (tasks, threads or processes sharing the database)
    can never both win the same row. Losing a race is not an error: the
    claimant simply moves on and ``pick_job`` returns ``None`` when nothing
    is left.
    """

    def __init__(
        self,
        db: Database,
        *,
        worker_id: str,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: Sequence[int] = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not backoff_seconds:
            raise ValidationError("backoff_seconds must not be empty")
        self.db = db
        self.worker_id = worker_id
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds)
        self.max_attempts = max_attempts
        self.backoff_seconds = tuple(backoff_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, db: Database, settings, *, worker_id: Optional[str] = None, **kwargs) -> "JobQueue":
        return cls(
            db,
            worker_id=worker_id or settings.worker_id,
            lock_ttl_seconds=settings.lock_ttl_seconds,
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            **kwargs,
        )

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    @staticmethod
    def _eligible(now: datetime):
        queued_ready = and_(
            JobModel.status == JobStatus.QUEUED.value,
            or_(JobModel.next_eligible_at.is_(None), JobModel.next_eligible_at <= now),
            or_(JobModel.lock_expires_at.is_(None), JobModel.lock_expires_at <= now),
        )
        abandoned = and_(
            JobModel.status == JobStatus.RUNNING.value,
            JobModel.lock_expires_at.is_not(None),
            JobModel.lock_expires_at <= now,
        )
        return or_(queued_ready, abandoned)

    def pick_job(self, run_id: Optional[str] = None) -> Optional[Job]:
        """
        Claim the oldest eligible job, optionally restricted to one run.

        Eligible means queued and past its retry delay, or running with an
        expired lease. The claimed job is marked running with this worker as
        lock owner and a fresh lease.
        """
        now = self.now()
        with self.db.session() as session:
            query = select(JobModel.id).where(self._eligible(now))
            if run_id:
                query = query.where(JobModel.run_id == run_id)
            query = query.order_by(JobModel.created_at.asc(), JobModel.id.asc()).limit(_CLAIM_BATCH)
            if self.db.supports_skip_locked:
                query = query.with_for_update(skip_locked=True)
            candidate_ids = list(session.execute(query).scalars().all())

            for job_id in candidate_ids:
                result = session.execute(
                    update(JobModel)
                    .where(JobModel.id == job_id)
                    .where(self._eligible(now))
                    .values(
                        status=JobStatus.RUNNING.value,
                        lock_owner=self.worker_id,
                        lock_expires_at=now + self.lock_ttl,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    session.commit()
                    claimed = session.get(JobModel, job_id)
                    logger.debug("[%s] claimed job %s", self.worker_id, job_id)
                    return Job.model_validate(claimed)
            session.commit()
        return None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def backoff_for(self, attempt_count: int) -> timedelta:
        index = min(max(attempt_count, 0), len(self.backoff_seconds) - 1)
        return timedelta(seconds=self.backoff_seconds[index])

    def update_job_status(
        self,
        job_id: str,
        outcome: JobStatus,
        error: Optional[str] = None,
        *,
        retryable: bool = True,
    ) -> Job:
        """
        Record a job outcome and refresh the run counters.

        A retryable failure with attempts left goes back to ``queued`` with an
        increased ``attempt_count`` and a ``next_eligible_at`` delay taken from
        the backoff sequence (indexed by the prior attempt count). A failure on a
        stopped run is terminal and recorded as stopped by user. Everything
        else is written as the terminal status. The lease is always released.
        """
        outcome = JobStatus(outcome)
        if outcome not in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED):
            raise ValidationError(f"Unsupported job outcome: {outcome.value}")

        now = self.now()
        with self.db.session() as session:
            row = session.get(JobModel, job_id)
            if row is None:
                raise NotFoundError("Job not found", entity="job", entity_id=job_id)

            values = {"lock_owner": None, "lock_expires_at": None, "updated_at": now}
            run_status = session.execute(select(RunModel.status).where(RunModel.id == row.run_id)).scalar_one_or_none()
            if outcome == JobStatus.FAILED and run_status == RunStatus.STOPPED.value:
                # Stopped runs get no more ticks, a requeued job would never finish.
                error = STOPPED_BY_USER
                retryable = False
            if outcome == JobStatus.FAILED and retryable and row.attempt_count < self.max_attempts:
                delay = self.backoff_for(row.attempt_count)
                values.update(
                    status=JobStatus.QUEUED.value,
                    attempt_count=row.attempt_count + 1,
                    last_error=error,
                    next_eligible_at=now + delay,
                )
                logger.warning(
                    "Job %s failed (attempt %d/%d), retrying in %ss: %s",
                    job_id, row.attempt_count + 1, self.max_attempts, int(delay.total_seconds()), error,
                )
            else:
                values.update(
                    status=outcome.value,
                    last_error=error if outcome == JobStatus.FAILED else None,
                    next_eligible_at=None,
                )
                if outcome == JobStatus.FAILED:
                    logger.error("Job %s failed permanently: %s", job_id, error)

            session.execute(
                update(JobModel).where(JobModel.id == job_id).values(**values).execution_options(synchronize_session=False)
            )
            session.commit()
            run_id = row.run_id

        self.update_run_counters(run_id)
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError("Job not found", entity="job", entity_id=job_id)
        return job

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    @staticmethod
    def derive_run_status(*, pending: int, succeeded: int, failed: int, skipped: int) -> RunStatus:
        if pending > 0:
            return RunStatus.RUNNING
        if failed == 0:
            return RunStatus.COMPLETED
        if succeeded + skipped > 0:
            return RunStatus.COMPLETED_WITH_ERRORS
        return RunStatus.FAILED

    def update_run_counters(self, run_id: str) -> Run:
        """
        Recompute run counters from the job tally and derive the run status.

        ``queued`` counts jobs not yet processed (queued or running), so
        ``queued + processed == total`` and
        ``processed == succeeded + failed + skipped`` always hold.
        Paused and stopped runs keep their status.
        """
        now = self.now()
        with self.db.session() as session:
            run = session.get(RunModel, run_id)
            if run is None:
                raise NotFoundError("Run not found", entity="run", entity_id=run_id)

            tally = dict(
                session.execute(
                    select(JobModel.status, func.count())
                    .where(JobModel.run_id == run_id)
                    .group_by(JobModel.status)
                ).all()
            )
            pending = tally.get(JobStatus.QUEUED.value, 0) + tally.get(JobStatus.RUNNING.value, 0)
            succeeded = tally.get(JobStatus.SUCCEEDED.value, 0)
            failed = tally.get(JobStatus.FAILED.value, 0)
            skipped = tally.get(JobStatus.SKIPPED.value, 0)
            processed = succeeded + failed + skipped

            current = RunStatus(run.status)
            if current in (RunStatus.PAUSED, RunStatus.STOPPED):
                status = current
            else:
                status = self.derive_run_status(pending=pending, succeeded=succeeded, failed=failed, skipped=skipped)

            run.total = pending + processed
            run.queued = pending
            run.processed = processed
            run.succeeded = succeeded
            run.failed = failed
            run.skipped = skipped
            run.status = status.value
            if status == RunStatus.RUNNING and run.started_at is None:
                run.started_at = now
            if status.is_finished and run.finished_at is None:
                run.finished_at = now
            session.commit()
            return Run.model_validate(run)

    # ------------------------------------------------------------------
    # Run control & maintenance
    # ------------------------------------------------------------------

    def set_run_status(self, run_id: str, status: RunStatus) -> Run:
        """
        Pause, resume or stop a run.

        Stopping fails every still-queued job with an explanatory reason;
        jobs already in flight finish on their own.
        """
        status = RunStatus(status)
        if status not in (RunStatus.PAUSED, RunStatus.RUNNING, RunStatus.STOPPED):
            raise ValidationError(f"Unsupported run status change: {status.value}")

        now = self.now()
        with self.db.session() as session:
            run = session.get(RunModel, run_id)
            if run is None:
                raise NotFoundError("Run not found", entity="run", entity_id=run_id)
            if RunStatus(run.status).is_finished:
                raise ValidationError(f"Run is already {run.status}")

            run.status = status.value
            if status == RunStatus.RUNNING and run.started_at is None:
                run.started_at = now
            if status == RunStatus.STOPPED:
                run.finished_at = now
                session.execute(
                    update(JobModel)
                    .where(JobModel.run_id == run_id)
                    .where(JobModel.status == JobStatus.QUEUED.value)
                    .values(
                        status=JobStatus.FAILED.value,
                        last_error=STOPPED_BY_USER,
                        lock_owner=None,
                        lock_expires_at=None,
                        next_eligible_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            session.commit()

        logger.info("Run %s set to %s", run_id, status.value)
        return self.update_run_counters(run_id)

    def release_stale_locks(self) -> int:
        """Return running jobs with expired leases to the queue. Returns how many were reclaimed."""
        now = self.now()
        with self.db.session() as session:
            result = session.execute(
                update(JobModel)
                .where(JobModel.status == JobStatus.RUNNING.value)
                .where(JobModel.lock_expires_at.is_not(None))
                .where(JobModel.lock_expires_at < now)
                .values(status=JobStatus.QUEUED.value, lock_owner=None, lock_expires_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            released = int(result.rowcount or 0)
        if released:
            logger.warning("Released %d stale job locks", released)
        return released

    def check_content_hash(self, lesson_id: str, content_hash: str, config_id: Optional[str] = None) -> bool:
        """
        True when a finished analysis exists for this lesson, content hash and
        metric configuration (no configuration matches fixed-metric analyses).
        """
        with self.db.session() as session:
            query = (
                select(AnalysisModel.id)
                .where(AnalysisModel.lesson_id == lesson_id)
                .where(AnalysisModel.content_hash == content_hash)
                .where(AnalysisModel.status.in_([AnalysisStatus.COMPLETED.value, AnalysisStatus.PARTIAL.value]))
            )
            if config_id:
                query = query.where(AnalysisModel.configuration_id == config_id)
            else:
                query = query.where(AnalysisModel.configuration_id.is_(None))
            return session.execute(query.limit(1)).first() is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.db.session() as session:
            row = session.get(JobModel, job_id)
            return Job.model_validate(row) if row else None

    def list_jobs(self, run_id: str) -> List[Job]:
        with self.db.session() as session:
            rows = session.execute(
                select(JobModel).where(JobModel.run_id == run_id).order_by(JobModel.created_at.asc(), JobModel.id.asc())
            ).scalars().all()
            return [Job.model_validate(row) for row in rows]
