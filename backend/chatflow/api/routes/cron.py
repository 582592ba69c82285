"""
Cron endpoint - runs one pass of the scheduled job runner
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ...core.config import settings
from ...services.job_runner import JobRunner
from ..deps import get_job_runner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(
    key: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None)
) -> None:
    """Accept the secret as ?key= or as a Bearer token; open when no secret is set"""
    if not settings.CRON_SECRET:
        return

    provided = key
    if not provided and authorization:
        provided = authorization.replace("Bearer ", "", 1)

    if provided != settings.CRON_SECRET:
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/jobs", dependencies=[Depends(verify_cron_secret)])
async def run_jobs(runner: JobRunner = Depends(get_job_runner)):
    """Process due scheduled jobs"""
    try:
        return await runner.run_due_jobs()
    except Exception as e:
        logger.exception(f"Job pass failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to process jobs")
