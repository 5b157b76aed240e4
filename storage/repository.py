"""Repository for programs, lessons, runs, metric configurations and analyses.

Job rows are owned by :mod:`orchestrator.queue`; everything else the pipeline
reads or writes goes through here. Methods return pydantic snapshots, never
live ORM objects.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update

from core import (
    AnalysisRecord,
    AnalysisStatus,
    Credential,
    JobStatus,
    Lesson,
    LessonRef,
    LLMRequestRecord,
    MetricConfig,
    MetricsMode,
    Program,
    Run,
    RunStatus,
)
from utils.exceptions import NotFoundError, StorageError, ValidationError

from .database import Database
from .models import (
    AnalysisModel,
    CredentialModel,
    JobModel,
    LessonModel,
    LLMRequestModel,
    MetricConfigModel,
    MetricConfigurationModel,
    ProgramModel,
    RunModel,
)


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchRepository:
    """Persistence for everything except job leasing."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Programs & credentials
    # ------------------------------------------------------------------

    def create_credential(self, *, user_id: str, provider: str, secret_encrypted: str, name: Optional[str] = None) -> Credential:
        with self.db.session() as session:
            row = CredentialModel(user_id=user_id, provider=provider, name=name, secret_encrypted=secret_encrypted)
            session.add(row)
            session.commit()
            return Credential.model_validate(row)

    def get_credential(self, credential_id: str) -> Optional[Credential]:
        with self.db.session() as session:
            row = session.get(CredentialModel, credential_id)
            return Credential.model_validate(row) if row else None

    def create_program(
        self,
        *,
        user_id: str,
        name: str,
        source_type: str,
        root_url: str,
        credential_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> Program:
        with self.db.session() as session:
            row = ProgramModel(
                user_id=user_id,
                name=name,
                source_type=str(getattr(source_type, "value", source_type)),
                root_url=root_url,
                credential_id=credential_id,
                model_id=model_id,
            )
            session.add(row)
            session.commit()
            return Program.model_validate(row)

    def get_program(self, program_id: str) -> Optional[Program]:
        with self.db.session() as session:
            row = session.get(ProgramModel, program_id)
            return Program.model_validate(row) if row else None

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def add_lesson(self, *, program_id: str, title: str, source_url: str = "", position: int = 0) -> Lesson:
        with self.db.session() as session:
            row = LessonModel(program_id=program_id, title=title, source_url=source_url, position=position)
            session.add(row)
            session.commit()
            return Lesson.model_validate(row)

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self.db.session() as session:
            row = session.get(LessonModel, lesson_id)
            return Lesson.model_validate(row) if row else None

    def list_lessons(self, program_id: str) -> List[Lesson]:
        with self.db.session() as session:
            rows = session.execute(
                select(LessonModel)
                .where(LessonModel.program_id == program_id)
                .order_by(LessonModel.position.asc(), LessonModel.id.asc())
            ).scalars().all()
            return [Lesson.model_validate(row) for row in rows]

    def replace_lessons(self, program_id: str, refs: Sequence[LessonRef]) -> List[Lesson]:
        """
        Sync a program's lesson list with a fresh enumeration.

        Lessons are matched by URL so cached content and hashes survive
        re-enumeration. Lessons that vanished are deleted unless a job still
        references them.
        """
        with self.db.session() as session:
            existing = {
                row.source_url: row
                for row in session.execute(
                    select(LessonModel).where(LessonModel.program_id == program_id)
                ).scalars()
            }
            kept_ids = set()
            for ref in refs:
                row = existing.get(ref.url)
                if row is None:
                    row = LessonModel(program_id=program_id, source_url=ref.url)
                    session.add(row)
                row.title = ref.title
                row.position = ref.order
                session.flush()
                kept_ids.add(row.id)

            stale_ids = [row.id for row in existing.values() if row.id not in kept_ids]
            if stale_ids:
                referenced = set(
                    session.execute(
                        select(JobModel.lesson_id).where(JobModel.lesson_id.in_(stale_ids)).distinct()
                    ).scalars()
                )
                removable = [lesson_id for lesson_id in stale_ids if lesson_id not in referenced]
                if removable:
                    session.execute(delete(LessonModel).where(LessonModel.id.in_(removable)))
            session.commit()

        lessons = self.list_lessons(program_id)
        logger.info("Program %s now has %d lessons", program_id, len(lessons))
        return lessons

    def update_lesson_content(self, lesson_id: str, *, content: str, content_hash: str, fetched_at: Optional[datetime] = None) -> None:
        with self.db.session() as session:
            result = session.execute(
                update(LessonModel)
                .where(LessonModel.id == lesson_id)
                .values(cached_content=content, content_hash=content_hash, fetched_at=fetched_at or _utcnow())
            )
            if result.rowcount != 1:
                raise NotFoundError("Lesson not found", entity="lesson", entity_id=lesson_id)
            session.commit()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        *,
        program_id: str,
        user_id: str,
        metrics_mode: MetricsMode = MetricsMode.FIXED,
        metric_configuration_id: Optional[str] = None,
        max_concurrency: int = 1,
        lesson_ids: Optional[Sequence[str]] = None,
    ) -> Run:
        """Create a run plus one queued job per lesson, in lesson order."""
        mode = MetricsMode(metrics_mode)
        if mode == MetricsMode.CONFIGURABLE and not metric_configuration_id:
            raise ValidationError("Configurable runs need a metric configuration")
        if max_concurrency < 1:
            raise ValidationError("max_concurrency must be at least 1")

        with self.db.session() as session:
            if session.get(ProgramModel, program_id) is None:
                raise NotFoundError("Program not found", entity="program", entity_id=program_id)

            query = select(LessonModel).where(LessonModel.program_id == program_id)
            if lesson_ids is not None:
                query = query.where(LessonModel.id.in_(list(lesson_ids)))
            lessons = session.execute(
                query.order_by(LessonModel.position.asc(), LessonModel.id.asc())
            ).scalars().all()
            if not lessons:
                raise ValidationError("Program has no lessons to analyze", details={"program_id": program_id})

            now = _utcnow()
            run = RunModel(
                program_id=program_id,
                user_id=user_id,
                status=RunStatus.QUEUED.value,
                metrics_mode=mode.value,
                metric_configuration_id=metric_configuration_id,
                total=len(lessons),
                queued=len(lessons),
                max_concurrency=max_concurrency,
                created_at=now,
            )
            session.add(run)
            session.flush()
            for index, lesson in enumerate(lessons):
                # Distinct timestamps keep claim order equal to lesson order.
                stamp = now + timedelta(microseconds=index)
                session.add(
                    JobModel(
                        run_id=run.id,
                        program_id=program_id,
                        lesson_id=lesson.id,
                        status=JobStatus.QUEUED.value,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
            session.commit()
            logger.info("Created run %s with %d jobs", run.id, len(lessons))
            return Run.model_validate(run)

    def get_run(self, run_id: str) -> Optional[Run]:
        with self.db.session() as session:
            row = session.get(RunModel, run_id)
            return Run.model_validate(row) if row else None

    def list_active_runs(self) -> List[Run]:
        with self.db.session() as session:
            rows = session.execute(
                select(RunModel)
                .where(RunModel.status.in_([RunStatus.QUEUED.value, RunStatus.RUNNING.value]))
                .order_by(RunModel.created_at.asc())
            ).scalars().all()
            return [Run.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Metric configurations
    # ------------------------------------------------------------------

    def create_metric_configuration(self, *, name: str, metrics: Sequence[MetricConfig], user_id: Optional[str] = None) -> str:
        if not metrics:
            raise ValidationError("A metric configuration needs at least one metric")
        with self.db.session() as session:
            configuration = MetricConfigurationModel(name=name, user_id=user_id)
            session.add(configuration)
            session.flush()
            for index, metric in enumerate(metrics):
                session.add(
                    MetricConfigModel(
                        configuration_id=configuration.id,
                        name=metric.name,
                        prompt_text=metric.prompt_text,
                        display_order=metric.display_order if metric.display_order else index,
                        is_active=metric.is_active,
                    )
                )
            session.commit()
            return configuration.id

    def list_active_metric_configs(self, configuration_id: str) -> List[MetricConfig]:
        with self.db.session() as session:
            rows = session.execute(
                select(MetricConfigModel)
                .where(MetricConfigModel.configuration_id == configuration_id)
                .where(MetricConfigModel.is_active.is_(True))
                .order_by(MetricConfigModel.display_order.asc(), MetricConfigModel.id.asc())
            ).scalars().all()
            return [MetricConfig.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Analyses & audit
    # ------------------------------------------------------------------

    def create_analysis(
        self,
        *,
        content: str,
        content_hash: str,
        model_used: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        program_id: Optional[str] = None,
        run_id: Optional[str] = None,
        lesson_id: Optional[str] = None,
        configuration_id: Optional[str] = None,
        configuration_snapshot: Optional[Dict[str, Any]] = None,
    ) -> AnalysisRecord:
        with self.db.session() as session:
            row = AnalysisModel(
                content=content,
                content_hash=content_hash,
                model_used=model_used,
                status=AnalysisStatus.RUNNING.value,
                results={},
                user_id=user_id,
                session_id=session_id,
                program_id=program_id,
                run_id=run_id,
                lesson_id=lesson_id,
                configuration_id=configuration_id,
                configuration_snapshot=configuration_snapshot,
            )
            session.add(row)
            session.commit()
            return AnalysisRecord.model_validate(row)

    def finalize_analysis(self, analysis_id: str, *, status: AnalysisStatus, results: Dict[str, Any]) -> AnalysisRecord:
        """Write the final status and results. A record can be finalized only once."""
        final = AnalysisStatus(status)
        if final == AnalysisStatus.RUNNING:
            raise ValidationError("Cannot finalize an analysis as running")
        with self.db.session() as session:
            result = session.execute(
                update(AnalysisModel)
                .where(AnalysisModel.id == analysis_id)
                .where(AnalysisModel.status == AnalysisStatus.RUNNING.value)
                .values(status=final.value, results=results, completed_at=_utcnow())
            )
            if result.rowcount != 1:
                session.rollback()
                if session.get(AnalysisModel, analysis_id) is None:
                    raise NotFoundError("Analysis not found", entity="analysis", entity_id=analysis_id)
                raise StorageError("Analysis already finalized", details={"analysis_id": analysis_id})
            session.commit()
            return AnalysisRecord.model_validate(session.get(AnalysisModel, analysis_id))

    def get_analysis(self, analysis_id: str) -> Optional[AnalysisRecord]:
        with self.db.session() as session:
            row = session.get(AnalysisModel, analysis_id)
            return AnalysisRecord.model_validate(row) if row else None

    def count_analyses(self, lesson_id: str) -> int:
        with self.db.session() as session:
            return int(
                session.execute(
                    select(func.count()).select_from(AnalysisModel).where(AnalysisModel.lesson_id == lesson_id)
                ).scalar_one()
            )

    def record_llm_request(
        self,
        *,
        analysis_id: str,
        metric: str,
        model: str,
        provider: Optional[str] = None,
        prompt: str = "",
        response: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: int = 0,
    ) -> LLMRequestRecord:
        with self.db.session() as session:
            row = LLMRequestModel(
                analysis_id=analysis_id,
                metric=metric,
                model=model,
                provider=provider,
                prompt=prompt,
                response=response,
                error=error,
                duration_ms=max(0, int(duration_ms)),
            )
            session.add(row)
            session.commit()
            return LLMRequestRecord.model_validate(row)

    def list_llm_requests(self, analysis_id: str) -> List[LLMRequestRecord]:
        with self.db.session() as session:
            rows = session.execute(
                select(LLMRequestModel)
                .where(LLMRequestModel.analysis_id == analysis_id)
                .order_by(LLMRequestModel.created_at.asc())
            ).scalars().all()
            return [LLMRequestRecord.model_validate(row) for row in rows]
