"""
POST /webhook/workflow-run
==========================
Receives GitHub `workflow_run` webhooks and schedules the Trigger
Controller for completed runs of the monitored workflow.

Filtering (all before any GitHub API call):
    - X-Hub-Signature-256 must match when WEBHOOK_SECRET is set (401 otherwise)
    - X-GitHub-Event other than workflow_run / ping → ignored
    - action != completed, other workflow, other branch, or a head commit
      carrying the monitor sentinel → ignored

Accepted events answer 202 immediately; the report is produced in a
background task.
"""
import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request

from staging_monitor.agents.trigger_controller import ignore_reason
from staging_monitor.core.config import WEBHOOK_SECRET
from staging_monitor.core.errors import StagingMonitorError
from staging_monitor.models.run_event import RunCompletionEvent
from staging_monitor.services.pipeline import get_controller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhook"])


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check GitHub's `sha256=<hex>` HMAC of the raw body."""
    if not secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len("sha256="):])


async def process_event(event: RunCompletionEvent) -> None:
    """Background task: run the controller, log instead of raising."""
    try:
        outcome = await get_controller().handle(event)
        logger.info("Run %d handled: %s", event.run_id, outcome.status)
    except StagingMonitorError as e:
        logger.error("Run %d failed to publish: %s", event.run_id, e)
    except Exception:
        logger.exception("Run %d crashed while being handled", event.run_id)


@router.post("/workflow-run", status_code=202)
async def workflow_run_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: str = Header(default=""),
    x_hub_signature_256: Optional[str] = Header(default=None),
):
    body = await request.body()
    if not verify_signature(body, x_hub_signature_256, WEBHOOK_SECRET):
        logger.warning("Rejected webhook with a bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event != "workflow_run":
        return {"status": "ignored", "reason": f"event {x_github_event!r} is not workflow_run"}

    try:
        payload = json.loads(body)
        event = RunCompletionEvent.from_workflow_run_payload(payload)
    except (ValueError, TypeError, AttributeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid workflow_run payload: {e}")

    reason = ignore_reason(event)
    if reason:
        logger.info("Ignoring run %d: %s", event.run_id, reason)
        return {"status": "ignored", "run_id": event.run_id, "reason": reason}

    background_tasks.add_task(process_event, event)
    logger.info("Scheduled report for run %d (attempt %d)", event.run_id, event.run_attempt)
    return {"status": "accepted", "run_id": event.run_id}
