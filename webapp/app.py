"""FastAPI surface for the worker tick, run control and progress polling."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from core import AnalysisStatus
from utils.exceptions import AuthError, BatchAnalyzerError, NotFoundError, ValidationError
from webapp.runtime import get_runtime


logger = logging.getLogger(__name__)

app = FastAPI(title="Batch Lesson Analyzer API")


@app.exception_handler(BatchAnalyzerError)
async def _domain_error(request: Request, exc: BatchAnalyzerError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, AuthError):
        status = 401
    else:
        logger.error("Request %s failed: %s", request.url.path, exc)
        status = 500
    return JSONResponse(status_code=status, content={"detail": exc.message})


def _require_worker_token(authorization: Optional[str]) -> None:
    expected = get_runtime().settings.security.worker_token
    if not expected:
        raise HTTPException(status_code=503, detail="worker token is not configured")
    scheme, _, token = str(authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=401, detail="invalid worker token")


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.post("/api/worker/tick")
async def worker_tick(run_id: Optional[str] = None, authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    _require_worker_token(authorization)
    report = await get_runtime().service.worker_tick(run_id)
    return report.to_dict()


@app.get("/api/runs/{run_id}")
def get_run(run_id: str) -> Dict[str, Any]:
    runtime = get_runtime()
    run = runtime.service.get_run_status(run_id)
    jobs = runtime.queue.list_jobs(run_id)
    return {
        "run": run.model_dump(mode="json"),
        "jobs": [job.model_dump(mode="json", exclude={"lock_owner"}) for job in jobs],
    }


@app.post("/api/runs/{run_id}/{action}")
def control_run(run_id: str, action: str) -> Dict[str, Any]:
    run = get_runtime().service.apply_action(run_id, action)
    return {"run": run.model_dump(mode="json")}


@app.get("/api/analyses/{analysis_id}/progress")
def analysis_progress(analysis_id: str) -> Dict[str, Any]:
    runtime = get_runtime()
    progress = runtime.progress.get(analysis_id)
    if progress is not None:
        return {"analysis_id": analysis_id, "live": True, "progress": progress.model_dump(mode="json")}

    record = runtime.repository.get_analysis(analysis_id)
    if record is None:
        raise HTTPException(status_code=404, detail="analysis not found")
    # Progress state is per process; finished or foreign analyses report their stored status.
    return {
        "analysis_id": analysis_id,
        "live": False,
        "status": record.status.value,
        "overall_progress": 0 if record.status == AnalysisStatus.RUNNING else 100,
    }
