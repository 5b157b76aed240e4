"""CLI entrypoint for the batch analysis worker and run control."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Optional

import uvicorn

from config import get_settings
from core import MetricsMode
from utils.exceptions import BatchAnalyzerError
from utils.logger import configure_package_logging
from webapp.runtime import Runtime, build_runtime


logger = logging.getLogger("batch_analyzer")


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


async def _worker_loop(runtime: Runtime, interval: float, max_ticks: Optional[int], run_id: Optional[str]) -> int:
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        report = await runtime.service.worker_tick(run_id)
        ticks += 1
        if report.outcomes or report.released_locks:
            _print(report.to_dict())
        await asyncio.sleep(interval)
    return ticks


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Batch lesson analyzer CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db")

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    create = sub.add_parser("create-run")
    create.add_argument("--program-id", required=True)
    create.add_argument("--user-id", required=True)
    create.add_argument("--metrics-mode", choices=[mode.value for mode in MetricsMode], default=MetricsMode.FIXED.value)
    create.add_argument("--configuration-id", default=None)
    create.add_argument("--max-concurrency", type=int, default=1)

    tick = sub.add_parser("tick")
    tick.add_argument("--run-id", default=None)

    worker = sub.add_parser("worker")
    worker.add_argument("--interval", type=float, default=None)
    worker.add_argument("--max-ticks", type=int, default=None)
    worker.add_argument("--run-id", default=None)

    enumerate_cmd = sub.add_parser("enumerate")
    enumerate_cmd.add_argument("--program-id", required=True)

    status = sub.add_parser("run-status")
    status.add_argument("--run-id", required=True)

    for action in ("pause", "resume", "stop"):
        control = sub.add_parser(action)
        control.add_argument("--run-id", required=True)

    return parser


async def run_command(args: argparse.Namespace, runtime: Runtime) -> Any:
    service = runtime.service

    if args.command == "init-db":
        runtime.db.create_schema()
        return {"ok": True, "database": runtime.db.dialect}

    if args.command == "create-run":
        run = service.create_run(
            args.program_id,
            args.user_id,
            metrics_mode=MetricsMode(args.metrics_mode),
            metric_configuration_id=args.configuration_id,
            max_concurrency=args.max_concurrency,
        )
        return {"run": run.model_dump(mode="json")}

    if args.command == "tick":
        report = await service.worker_tick(args.run_id)
        return report.to_dict()

    if args.command == "worker":
        interval = args.interval if args.interval is not None else runtime.settings.queue.poll_interval_seconds
        logger.info("Worker %s polling every %ss", runtime.queue.worker_id, interval)
        ticks = await _worker_loop(runtime, interval, args.max_ticks, args.run_id)
        return {"ticks": ticks}

    if args.command == "enumerate":
        lessons = await service.enumerate_program(args.program_id)
        return {
            "program_id": args.program_id,
            "lessons": [{"id": lesson.id, "title": lesson.title, "url": lesson.source_url} for lesson in lessons],
        }

    if args.command == "run-status":
        return {"run": service.get_run_status(args.run_id).model_dump(mode="json")}

    run = service.apply_action(args.run_id, args.command)
    return {"run": run.model_dump(mode="json")}


async def _main(args: argparse.Namespace) -> int:
    runtime = build_runtime()
    try:
        _print(await run_command(args, runtime))
        return 0
    except BatchAnalyzerError as e:
        logger.error("%s failed: %s", args.command, e)
        _print({"error": e.message, "type": type(e).__name__})
        return 1
    finally:
        await runtime.aclose()


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_package_logging(settings.general.log_level, settings.general.log_file)
    if args.command == "serve":
        uvicorn.run("webapp.app:app", host=args.host, port=args.port, reload=args.reload)
        return 0
    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
