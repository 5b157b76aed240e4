"""
Shared fixtures: a throwaway SQLite store, a controllable clock, scripted
LLM providers and a mock-transport content site.
"""
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import AnalysisSettings, DatabaseSettings, SecuritySettings, Settings
from intelligence.analysis import AnalysisEngine, ProgressTracker
from intelligence.llm import BaseLLM, LLMResponse, Message, ModelCatalog, ModelSpec, ProviderRegistry, RetryPolicy
from orchestrator import JobQueue, JobRunner, RunService
from scrapers import AdapterRegistry, CookieSiteAdapter, ManifestListAdapter
from storage import BatchRepository, Database, SecretBox
from webapp.runtime import build_runtime


ENCRYPTION_KEY = "test-encryption-key"
SITE = "https://yonote.ru"

METRIC_JSON = json.dumps(
    {
        "score": 1,
        "comment": "Solid structure with minor gaps.",
        "examples": ["First we define a variable."],
        "detailed_analysis": "The lesson moves from definitions to practice.",
        "suggestions": ["Add a summary at the end."],
    }
)


class FakeClock:
    """Deterministic clock for lease and backoff tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def default_responder(messages: List[Message]):
    # Title requests carry a single user message; metric requests add a system prompt.
    if len(messages) == 1:
        return "Python Variables Basics"
    return METRIC_JSON


class FakeLLM(BaseLLM):
    """Provider whose answers come from ``responder(messages)``; exceptions are raised."""

    def __init__(self, responder: Callable = default_responder, name: str = "fake", model: str = "fake-1"):
        super().__init__(model)
        self._name = name
        self.responder = responder
        self.calls: List[List[Message]] = []

    @property
    def provider(self) -> str:
        return self._name

    async def acomplete(self, messages: List[Message], **kwargs) -> LLMResponse:
        self.calls.append(messages)
        reply = self.responder(messages)
        if isinstance(reply, BaseException):
            raise reply
        return LLMResponse(content=reply, model=kwargs.get("model") or self.model, usage={"total_tokens": 42})


async def no_sleep(_seconds: float) -> None:
    return None


def lesson_page(title: str) -> str:
    body = " ".join([f"{title} explains how variables store values and how to name them well."] * 4)
    return f"""
    <html><body>
      <nav>Course menu</nav>
      <main><h1>{title}</h1><p>{body}</p></main>
      <footer>Contacts</footer>
    </body></html>
    """


def site_transport(pages: Dict[str, object]) -> httpx.MockTransport:
    """``pages`` maps a URL path to HTML or to an int status code."""

    def handler(request: httpx.Request) -> httpx.Response:
        page = pages.get(request.url.path)
        if page is None:
            return httpx.Response(404, text="not found")
        if isinstance(page, int):
            return httpx.Response(page, text="denied")
        return httpx.Response(200, text=page, headers={"content-type": "text/html"})

    return httpx.MockTransport(handler)


def make_registry(llm: BaseLLM) -> ProviderRegistry:
    catalog = ModelCatalog([ModelSpec("fake-model", llm.provider, "fake-1", "Fake Model")])
    return ProviderRegistry([llm], catalog)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'batch.db'}")
    yield database
    database.dispose()


@pytest.fixture
def repository(db):
    return BatchRepository(db)


@pytest.fixture
def queue(db, clock):
    return JobQueue(db, worker_id="worker-a", clock=clock)


@pytest.fixture
def secret_box():
    return SecretBox(ENCRYPTION_KEY)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def analysis_settings():
    return AnalysisSettings(stagger_ms=0, progress_tick_ms=0)


@pytest.fixture
def engine(repository, llm, analysis_settings):
    return AnalysisEngine(
        repository,
        make_registry(llm),
        ProgressTracker(),
        settings=analysis_settings,
        retry_policy=RetryPolicy(max_attempts=2, base_delay_ms=1, max_delay_ms=1),
        sleep=no_sleep,
    )


@pytest.fixture
def pages():
    return {
        "/course": (
            '<html><body><ul>'
            '<li><a href="/lesson/a">Lesson A</a></li>'
            '<li><a href="/lesson/b">Lesson B</a></li>'
            '<li><a href="/lesson/c">Lesson C</a></li>'
            '</ul></body></html>'
        ),
        "/lesson/a": lesson_page("Lesson A"),
        "/lesson/b": lesson_page("Lesson B"),
        "/lesson/c": lesson_page("Lesson C"),
    }


@pytest.fixture
def adapters(pages):
    transport = site_transport(pages)
    return AdapterRegistry([CookieSiteAdapter(transport=transport), ManifestListAdapter(transport=transport)])


@pytest.fixture
def runner(repository, queue, adapters, engine, secret_box):
    return JobRunner(repository, queue, adapters, engine, secret_box)


@pytest.fixture
def service(repository, queue, runner, adapters, secret_box):
    return RunService(repository, queue, runner, adapters, secret_box, max_tick_concurrency=10)


@pytest.fixture
def program_factory(repository, secret_box):
    """Create a cookie-site program with one lesson per path."""

    def _create(paths=("/lesson/a", "/lesson/b", "/lesson/c"), cookie: Optional[str] = "session=abc", secret: Optional[str] = None):
        credential_id = None
        if cookie is not None or secret is not None:
            credential = repository.create_credential(
                user_id="user-1",
                provider="yonote",
                secret_encrypted=secret if secret is not None else secret_box.encrypt(cookie),
            )
            credential_id = credential.id
        program = repository.create_program(
            user_id="user-1",
            name="Python course",
            source_type="yonote",
            root_url=f"{SITE}/course",
            credential_id=credential_id,
            model_id="fake-model",
        )
        lessons = [
            repository.add_lesson(program_id=program.id, title=path.rsplit("/", 1)[-1], source_url=f"{SITE}{path}", position=index)
            for index, path in enumerate(paths)
        ]
        return program, lessons

    return _create


@pytest.fixture
def runtime(tmp_path, adapters, llm):
    """Fully wired runtime on a temporary database with the fake site and provider."""
    settings = Settings(
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'runtime.db'}"),
        security=SecuritySettings(encryption_key=ENCRYPTION_KEY, worker_token="tick-token"),
        analysis=AnalysisSettings(stagger_ms=0, progress_tick_ms=0),
    )
    built = build_runtime(settings, adapters=adapters, providers=make_registry(llm))
    yield built
    built.db.dispose()
