"""Runtime wiring shared by the CLI and the web entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from config import Settings, get_settings
from intelligence.analysis import AnalysisEngine, ProgressTracker
from intelligence.llm import ProviderRegistry, RetryPolicy, build_providers
from orchestrator import JobQueue, JobRunner, RunService
from scrapers import AdapterRegistry, build_default_registry
from storage import BatchRepository, Database, SecretBox


@dataclass
class Runtime:
    """Every long-lived collaborator, built once per process."""

    settings: Settings
    db: Database
    repository: BatchRepository
    queue: JobQueue
    adapters: AdapterRegistry
    providers: ProviderRegistry
    progress: ProgressTracker
    engine: AnalysisEngine
    runner: JobRunner
    service: RunService

    async def aclose(self) -> None:
        await self.adapters.aclose()
        await self.providers.aclose()
        self.db.dispose()


def build_runtime(settings: Optional[Settings] = None, *, adapters: Optional[AdapterRegistry] = None, providers: Optional[ProviderRegistry] = None) -> Runtime:
    settings = settings or get_settings()
    db = Database(settings.database.url, echo=settings.database.echo)
    repository = BatchRepository(db)
    queue = JobQueue.from_settings(db, settings.queue)
    adapters = adapters or build_default_registry(settings.scraper)
    providers = providers or build_providers(settings.llm)
    progress = ProgressTracker(ttl_seconds=settings.analysis.progress_ttl_seconds)
    engine = AnalysisEngine(
        repository,
        providers,
        progress,
        settings=settings.analysis,
        retry_policy=RetryPolicy.from_settings(settings.llm),
    )
    secret_box = SecretBox(settings.security.encryption_key)
    runner = JobRunner(repository, queue, adapters, engine, secret_box)
    service = RunService(
        repository,
        queue,
        runner,
        adapters,
        secret_box,
        max_tick_concurrency=settings.queue.max_tick_concurrency,
    )
    return Runtime(
        settings=settings,
        db=db,
        repository=repository,
        queue=queue,
        adapters=adapters,
        providers=providers,
        progress=progress,
        engine=engine,
        runner=runner,
        service=service,
    )


@lru_cache()
def get_runtime() -> Runtime:
    return build_runtime()
