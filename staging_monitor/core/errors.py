"""
Errors
======
Typed failures raised by the pipeline components.

Inner components only raise these; the Trigger Controller alone decides
whether a failure aborts the invocation, degrades to a minimal report,
or is surfaced as fatal.

    RunNotComplete    — precondition violation, abort with no publish
    FetchError        — upstream API failure (reason: unavailable / not_found /
                        rejected / invalid_response), degrade
    AnalysisError     — unreadable log, recovered inside the analyzer
    RenderError       — rendering invariant violated, degrade and report as-is
    PublishConflict   — destination changed since it was read, retry once
    PublishError      — store failure (reason: unavailable / rejected), fatal
"""

UNAVAILABLE = "unavailable"
NOT_FOUND = "not_found"
REJECTED = "rejected"
INVALID_RESPONSE = "invalid_response"


class StagingMonitorError(Exception):
    """Base class for all monitor failures."""


class RunNotComplete(StagingMonitorError):
    def __init__(self, run_id: int, status: str) -> None:
        super().__init__(f"run {run_id} is not complete (status: {status})")
        self.run_id = run_id
        self.status = status


class FetchError(StagingMonitorError):
    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class AnalysisError(StagingMonitorError):
    pass


class RenderError(StagingMonitorError):
    pass


class PublishConflict(StagingMonitorError):
    pass


class PublishError(StagingMonitorError):
    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail
