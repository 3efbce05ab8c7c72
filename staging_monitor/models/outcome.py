"""
Invocation Outcome
What one Trigger Controller invocation did, and the states it passed through.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .publish import PublishResult

OutcomeStatus = Literal[
    "published",           # full report written
    "unchanged",           # stored report already identical
    "stale",               # a newer run's report was stored before we published
    "degraded",            # minimal failure report written (or already identical)
    "skipped_self",        # event produced by our own report commit
    "skipped_duplicate",   # this run attempt is already reported
    "skipped_stale",       # stored report describes a newer run
    "aborted",             # run not complete, nothing published
]


class InvocationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    status: OutcomeStatus
    failed_stage: Optional[str] = None
    reason: Optional[str] = None
    publish_result: Optional[PublishResult] = None
    states: List[str] = Field(default_factory=list)

    @property
    def published(self) -> bool:
        return self.publish_result is not None and self.publish_result.status == "published"
