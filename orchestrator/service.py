"""Run lifecycle service: create runs, control them, enumerate programs, drive worker ticks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from core import JobOutcome, JobStatus, Lesson, MetricsMode, Run, RunStatus
from scrapers.registry import AdapterRegistry
from storage.repository import BatchRepository
from storage.secret_box import SecretBox
from utils.exceptions import NotFoundError, ValidationError

from .queue import JobQueue
from .runner import JobRunner, auth_from_secret


logger = logging.getLogger(__name__)

RUN_ACTIONS = {
    "pause": RunStatus.PAUSED,
    "resume": RunStatus.RUNNING,
    "stop": RunStatus.STOPPED,
}


@dataclass
class TickReport:
    """What one worker tick did."""

    released_locks: int = 0
    concurrency: int = 0
    outcomes: List[JobOutcome] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        tally = {status.value: 0 for status in JobStatus}
        for outcome in self.outcomes:
            tally[outcome.status.value] += 1
        return tally

    def to_dict(self) -> Dict[str, object]:
        return {
            "released_locks": self.released_locks,
            "concurrency": self.concurrency,
            "processed": len(self.outcomes),
            "counts": self.counts(),
            "outcomes": [outcome.model_dump(mode="json") for outcome in self.outcomes],
        }


class RunService:
    """Entry point used by the CLI and the HTTP surface; collaborators are injected once at startup."""

    def __init__(
        self,
        repository: BatchRepository,
        queue: JobQueue,
        runner: JobRunner,
        adapters: AdapterRegistry,
        secret_box: SecretBox,
        *,
        max_tick_concurrency: int = 10,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.runner = runner
        self.adapters = adapters
        self.secret_box = secret_box
        self.max_tick_concurrency = max(1, max_tick_concurrency)

    def create_run(
        self,
        program_id: str,
        user_id: str,
        *,
        metrics_mode: MetricsMode = MetricsMode.FIXED,
        metric_configuration_id: Optional[str] = None,
        max_concurrency: int = 1,
        lesson_ids: Optional[Sequence[str]] = None,
    ) -> Run:
        """Create a run with one queued job per lesson."""
        return self.repository.create_run(
            program_id=program_id,
            user_id=user_id,
            metrics_mode=metrics_mode,
            metric_configuration_id=metric_configuration_id,
            max_concurrency=max_concurrency,
            lesson_ids=lesson_ids,
        )

    def set_run_status(self, run_id: str, status: RunStatus) -> Run:
        return self.queue.set_run_status(run_id, status)

    def apply_action(self, run_id: str, action: str) -> Run:
        """``pause`` / ``resume`` / ``stop``."""
        status = RUN_ACTIONS.get(str(action).strip().lower())
        if status is None:
            raise ValidationError(f"Unknown run action: {action}", details={"allowed": sorted(RUN_ACTIONS)})
        return self.set_run_status(run_id, status)

    def get_run_status(self, run_id: str) -> Run:
        run = self.repository.get_run(run_id)
        if run is None:
            raise NotFoundError("Run not found", entity="run", entity_id=run_id)
        return run

    async def enumerate_program(self, program_id: str) -> List[Lesson]:
        """Fetch the program's lesson list from its source and store it in order."""
        program = self.repository.get_program(program_id)
        if program is None:
            raise NotFoundError("Program not found", entity="program", entity_id=program_id)

        adapter = self.adapters.get(program.source_type)
        validation = adapter.validate(program.root_url)
        if not validation.ok:
            raise ValidationError(validation.reason or "Invalid source URL", details={"url": program.root_url})

        auth = None
        if program.credential_id:
            credential = self.repository.get_credential(program.credential_id)
            if credential is None:
                raise NotFoundError("Credentials not found", entity="credential", entity_id=program.credential_id)
            auth = auth_from_secret(self.secret_box.decrypt(credential.secret_encrypted))

        refs = await adapter.enumerate_lessons(program.root_url, auth)
        logger.info("Enumerated %d lessons for program %s", len(refs), program_id)
        return self.repository.replace_lessons(program_id, refs)

    def tick_concurrency(self, run_id: Optional[str] = None) -> int:
        """Sum of active runs' ``max_concurrency``, capped by ``max_tick_concurrency``."""
        if run_id:
            run = self.get_run_status(run_id)
            wanted = run.max_concurrency if run.status.is_active else 0
        else:
            wanted = sum(run.max_concurrency for run in self.repository.list_active_runs())
        return min(wanted, self.max_tick_concurrency)

    async def worker_tick(self, run_id: Optional[str] = None) -> TickReport:
        """Reclaim abandoned leases, then process one batch of jobs."""
        report = TickReport(released_locks=self.runner.cleanup_stale_locks())
        report.concurrency = self.tick_concurrency(run_id)
        if report.concurrency > 0:
            report.outcomes = await self.runner.process_tick(report.concurrency, run_id)
        return report
