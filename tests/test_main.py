"""
Tests for the command line entrypoint
"""
import pytest

from main import build_parser, run_command
from utils.exceptions import ValidationError

from conftest import SITE


def _program(runtime, paths=("/lesson/a", "/lesson/b")):
    repository = runtime.repository
    credential = repository.create_credential(
        user_id="user-1", provider="yonote", secret_encrypted=runtime.service.secret_box.encrypt("session=abc")
    )
    program = repository.create_program(
        user_id="user-1",
        name="Course",
        source_type="yonote",
        root_url=f"{SITE}/course",
        credential_id=credential.id,
        model_id="fake-model",
    )
    for index, path in enumerate(paths):
        repository.add_lesson(program_id=program.id, title=path, source_url=f"{SITE}{path}", position=index)
    return program


def _parse(*argv):
    return build_parser().parse_args(list(argv))


def test_parser_defaults():
    args = _parse("create-run", "--program-id", "p1", "--user-id", "u1")
    assert args.metrics_mode == "fixed"
    assert args.max_concurrency == 1
    assert args.configuration_id is None

    with pytest.raises(SystemExit):
        _parse("pause")


@pytest.mark.asyncio
async def test_create_tick_and_status(runtime):
    program = _program(runtime)

    created = await run_command(
        _parse("create-run", "--program-id", program.id, "--user-id", "user-1", "--max-concurrency", "2"), runtime
    )
    run_id = created["run"]["id"]
    assert created["run"]["status"] == "queued"
    assert created["run"]["total"] == 2

    report = await run_command(_parse("tick", "--run-id", run_id), runtime)
    assert report["processed"] == 2

    status = await run_command(_parse("run-status", "--run-id", run_id), runtime)
    assert status["run"]["status"] == "completed"
    assert status["run"]["succeeded"] == 2


@pytest.mark.asyncio
async def test_pause_command(runtime):
    program = _program(runtime)
    run = runtime.service.create_run(program.id, "user-1")

    paused = await run_command(_parse("pause", "--run-id", run.id), runtime)

    assert paused["run"]["status"] == "paused"


@pytest.mark.asyncio
async def test_enumerate_command(runtime):
    program = _program(runtime, paths=())

    result = await run_command(_parse("enumerate", "--program-id", program.id), runtime)

    assert [lesson["url"] for lesson in result["lessons"]] == [
        f"{SITE}/lesson/a",
        f"{SITE}/lesson/b",
        f"{SITE}/lesson/c",
    ]


@pytest.mark.asyncio
async def test_create_run_without_lessons(runtime):
    program = _program(runtime, paths=())

    with pytest.raises(ValidationError):
        await run_command(_parse("create-run", "--program-id", program.id, "--user-id", "user-1"), runtime)
