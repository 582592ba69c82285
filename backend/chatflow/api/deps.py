"""
Shared route dependencies
"""
from typing import Optional

from ..flow.engine import FlowEngine, get_engine
from ..services.database import db
from ..services.job_runner import JobRunner, create_job_runner

_job_runner: Optional[JobRunner] = None


def get_repository():
    return db


def get_flow_engine() -> FlowEngine:
    return get_engine()


def get_job_runner() -> JobRunner:
    """Process-wide job runner bound to the process-wide engine"""
    global _job_runner
    if _job_runner is None:
        _job_runner = create_job_runner(get_engine())
    return _job_runner
