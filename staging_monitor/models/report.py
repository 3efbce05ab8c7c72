"""
Report Models
=============
Pydantic models for the persisted status report.

Fields (ReportMetadata):
    run_id / run_number / run_attempt — identity of the reported run; the
                                        controller's duplicate and freshness
                                        checks compare against these
    branch / head_sha                 — what the run built
    degraded                          — True when a stage failed and the
                                        document is the minimal failure report
    failed_stage / failure_reason     — set only on degraded reports

The metadata is embedded in the document itself (an HTML comment), so the
"last published run" is always stored alongside the report it describes.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .analysis import FailureExcerpt, WarningEntry
from .run import JobResult, RunMetadata


class ReportMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    run_number: int = 0
    run_attempt: int = 1
    branch: str = ""
    head_sha: str = ""
    degraded: bool = False
    failed_stage: Optional[str] = None
    failure_reason: Optional[str] = None


class StatusReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    run: RunMetadata
    jobs: list[JobResult] = Field(default_factory=list)
    failure_excerpts: list[FailureExcerpt] = Field(default_factory=list)
    warnings: list[WarningEntry] = Field(default_factory=list)
    generated_at: datetime


class RenderedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ReportMetadata
    commit_message: str
