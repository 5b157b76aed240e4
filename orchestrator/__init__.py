"""Job queue, runner and run lifecycle service for batch analysis."""

from .queue import STOPPED_BY_USER, JobQueue
from .runner import AUTH_FAILED, DECRYPT_FAILED, JobRunner, auth_from_secret
from .service import RUN_ACTIONS, RunService, TickReport

__all__ = [
    "AUTH_FAILED",
    "DECRYPT_FAILED",
    "JobQueue",
    "JobRunner",
    "RUN_ACTIONS",
    "RunService",
    "STOPPED_BY_USER",
    "TickReport",
    "auth_from_secret",
]
