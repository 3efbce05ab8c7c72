"""
GET /status
Reports whether the stored status document is missing, a placeholder,
degraded, stale, fresh or in an unexpected format.
"""
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from staging_monitor.core.config import HTTP_TIMEOUT, REPORT_MAX_AGE_HOURS
from staging_monitor.core.errors import PublishError
from staging_monitor.services.pipeline import get_controller
from staging_monitor.services.report_status import assess

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status")
async def get_status():
    publisher = get_controller().publisher
    try:
        stored = await publisher.read_current(deadline=time.monotonic() + HTTP_TIMEOUT)
    except PublishError as e:
        logger.error("Could not read %s: %s", publisher.destination, e)
        raise HTTPException(status_code=503, detail=f"Report store unavailable: {e}")

    status = assess(
        stored,
        now=datetime.now(timezone.utc),
        max_age_hours=REPORT_MAX_AGE_HOURS,
        destination=publisher.destination,
    )
    return {**status.model_dump(mode="json"), "healthy": status.healthy}
