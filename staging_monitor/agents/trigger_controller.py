"""
Trigger Controller
==================
Entry point for one upstream run completion. Drives
Fetcher → Analyzer → Renderer → Publisher and owns every failure decision.

State machine:
    idle → fetching → analyzing → rendering → publishing → idle
    fetching | analyzing | rendering → error_reporting → publishing → idle

Contract:
    - Self-triggered events (head commit carries the sentinel) are dropped
      before any work, including the stored-document read.
    - skip / proceed is a pure function of (event, stored metadata): see decide().
    - RunNotComplete aborts without publishing.
    - Any other failure before publishing produces a degraded report naming
      the failed stage, which is still published: exactly one publish per
      run completion.
    - PublishConflict is retried once (the publisher re-reads), then raised.
      PublishError is raised once the publisher's deadline retries run out.
    - Every invocation records the states it visited (outcome.states, and
      `last_states` on the controller when an error escapes).
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from staging_monitor.core.config import INVOCATION_TIMEOUT, REPORT_BRANCH, UPSTREAM_WORKFLOW
from staging_monitor.core.constants import (
    SENTINEL_TOKEN,
    STAGE_ANALYZING,
    STAGE_FETCHING,
    STAGE_PUBLISHING,
    STAGE_RENDERING,
)
from staging_monitor.core.errors import (
    FetchError,
    PublishConflict,
    PublishError,
    RunNotComplete,
)
from staging_monitor.models.outcome import InvocationOutcome
from staging_monitor.models.publish import PublishResult
from staging_monitor.models.report import RenderedDocument, ReportMetadata, StatusReport
from staging_monitor.models.run import FetchedRun
from staging_monitor.models.run_event import RunCompletionEvent
from staging_monitor.services.report_document import parse_report_metadata

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    RENDERING = "rendering"
    ERROR_REPORTING = "error_reporting"
    PUBLISHING = "publishing"


PROCEED = "proceed"
SKIP_SELF = "skipped_self"
SKIP_DUPLICATE = "skipped_duplicate"
SKIP_STALE = "skipped_stale"


# ---------------------------------------------------------------------------
# Pure decisions
# ---------------------------------------------------------------------------
def is_self_triggered(event: RunCompletionEvent) -> bool:
    """True when the run was started by one of our own report commits."""
    return SENTINEL_TOKEN in (event.head_commit_message or "")


def decide(event: RunCompletionEvent, stored: Optional[ReportMetadata]) -> str:
    """
    Decide what to do with `event` given the metadata of the stored report.

    Returns one of PROCEED, SKIP_SELF, SKIP_DUPLICATE, SKIP_STALE.
    """
    if is_self_triggered(event):
        return SKIP_SELF
    if stored is None:
        return PROCEED
    if stored.run_id == event.run_id and stored.run_attempt == event.run_attempt:
        return SKIP_DUPLICATE
    # run_number 0 means the event did not carry one; let the publisher judge
    if event.run_number and (stored.run_number, stored.run_attempt) > (event.run_number, event.run_attempt):
        return SKIP_STALE
    return PROCEED


def ignore_reason(
    event: RunCompletionEvent,
    workflow: str = UPSTREAM_WORKFLOW,
    branch: str = REPORT_BRANCH,
) -> Optional[str]:
    """Why an inbound event is not for us, or None if it should be handled."""
    if event.action and event.action != "completed":
        return f"action is {event.action!r}, not 'completed'"
    if not event.matches_workflow(workflow):
        return f"workflow {event.workflow_name or event.workflow_path!r} is not {workflow!r}"
    if branch and event.branch and event.branch != branch:
        return f"branch {event.branch!r} is not {branch!r}"
    if is_self_triggered(event):
        return "head commit carries the monitor sentinel"
    return None


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out before the invocation deadline"
    if isinstance(exc, FetchError):
        return f"GitHub API {exc}"
    return f"{type(exc).__name__}: {exc}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------
class TriggerController:
    """
    Processes one RunCompletionEvent per handle() call.

    Components are injected so tests (and the CLI/webhook builders) decide
    which fetcher, store and clock are used.
    """

    def __init__(
        self,
        fetcher,
        analyzer,
        renderer,
        publisher,
        invocation_timeout: float = INVOCATION_TIMEOUT,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.renderer = renderer
        self.publisher = publisher
        self.invocation_timeout = invocation_timeout
        self.now = now
        self.last_states: List[str] = []

    async def handle(self, event: RunCompletionEvent) -> InvocationOutcome:
        trace: List[str] = [ControllerState.IDLE.value]
        self.last_states = trace
        try:
            outcome = await self._run(event, trace)
        finally:
            trace.append(ControllerState.IDLE.value)
            logger.debug("Run %d state trace: %s", event.run_id, " → ".join(trace))
        return outcome.model_copy(update={"states": list(trace)})

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _enter(self, trace: List[str], state: ControllerState, run_id: int) -> None:
        trace.append(state.value)
        logger.debug("Run %d: entering %s", run_id, state.value)

    async def _read_stored_metadata(self, deadline: float) -> Optional[ReportMetadata]:
        try:
            stored = await self.publisher.read_current(deadline)
        except PublishError as e:
            # The publisher re-reads under its lock anyway; don't fail on this read
            logger.warning("Could not read the stored report, proceeding without it: %s", e)
            return None
        return parse_report_metadata(stored.content) if stored.exists else None

    async def _run(self, event: RunCompletionEvent, trace: List[str]) -> InvocationOutcome:
        deadline = time.monotonic() + self.invocation_timeout

        if is_self_triggered(event):
            logger.info("Run %d was triggered by a monitor commit, ignoring", event.run_id)
            return InvocationOutcome(run_id=event.run_id, status=SKIP_SELF)

        stored_meta = await self._read_stored_metadata(deadline)
        decision = decide(event, stored_meta)
        if decision != PROCEED:
            logger.info(
                "Skipping run %d attempt %d (%s); stored report is run %s",
                event.run_id, event.run_attempt, decision,
                stored_meta.run_id if stored_meta else "none",
            )
            return InvocationOutcome(run_id=event.run_id, status=decision)

        fetched: Optional[FetchedRun] = None
        stage = STAGE_FETCHING
        failed_stage: Optional[str] = None
        reason: Optional[str] = None
        document: RenderedDocument

        try:
            self._enter(trace, ControllerState.FETCHING, event.run_id)
            fetched = await asyncio.wait_for(
                self.fetcher.fetch(event.run_id, event.run_attempt),
                timeout=max(0.0, deadline - time.monotonic()),
            )

            stage = STAGE_ANALYZING
            self._enter(trace, ControllerState.ANALYZING, event.run_id)
            analysis = self.analyzer.analyze(fetched.jobs, fetched.logs)

            stage = STAGE_RENDERING
            self._enter(trace, ControllerState.RENDERING, event.run_id)
            report = StatusReport(
                run=fetched.metadata,
                jobs=analysis.jobs,
                failure_excerpts=analysis.failure_excerpts,
                warnings=analysis.warnings,
                generated_at=self.now(),
            )
            document = self.renderer.render(report)
        except RunNotComplete as e:
            logger.warning("Aborting: %s", e)
            return InvocationOutcome(
                run_id=event.run_id, status="aborted", failed_stage=stage, reason=str(e)
            )
        except Exception as e:
            self._enter(trace, ControllerState.ERROR_REPORTING, event.run_id)
            failed_stage = stage
            reason = _describe(e)
            logger.error("Run %d: %s stage failed: %s", event.run_id, stage, reason)
            document = self.renderer.render_degraded(
                event,
                stage,
                reason,
                self.now(),
                run=fetched.metadata if fetched is not None else None,
            )

        self._enter(trace, ControllerState.PUBLISHING, event.run_id)
        result = await self._publish(document, deadline)

        if result.status == "stale":
            status = "stale"
        elif failed_stage is not None:
            status = "degraded"
        else:
            status = result.status
        return InvocationOutcome(
            run_id=event.run_id,
            status=status,
            failed_stage=failed_stage,
            reason=reason,
            publish_result=result,
        )

    async def _publish(self, document: RenderedDocument, deadline: float) -> PublishResult:
        try:
            return await self.publisher.publish(document, deadline)
        except PublishConflict as e:
            logger.warning("Publish conflict (%s), re-reading and retrying once", e)
        try:
            return await self.publisher.publish(document, deadline)
        except PublishConflict:
            logger.error(
                "Stage %s failed for run #%d: conflict persisted after retry",
                STAGE_PUBLISHING, document.metadata.run_number,
            )
            raise
