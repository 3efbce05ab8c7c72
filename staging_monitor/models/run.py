"""
Run Models
==========
Pydantic models for one fetched upstream workflow run.

    RunMetadata  — identity, timing and overall conclusion of the run
    JobResult    — one job of the run with its ordered steps
    StepResult   — one step; log_excerpt is only populated on failure
    FetchedRun   — everything the Run Fetcher returns for one run

All of these are frozen: once fetched, a run is never mutated. The analyzer
attaches excerpts by producing copies (model_copy), not by assignment.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RunConclusion = Literal["success", "failure", "cancelled", "unknown"]
JobStatus = Literal["queued", "in_progress", "completed"]
JobConclusion = Literal["success", "failure", "skipped", "cancelled"]


class RunMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    run_number: int
    run_attempt: int = 1
    workflow_name: str = ""
    branch: str = ""
    head_sha: str = ""
    head_commit_message: str = ""
    html_url: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    conclusion: RunConclusion = "unknown"


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    name: str
    conclusion: Optional[JobConclusion] = None
    log_excerpt: Optional[str] = None


class JobResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: int
    name: str
    status: JobStatus = "completed"
    conclusion: Optional[JobConclusion] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    html_url: str = ""
    steps: list[StepResult] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.conclusion == "failure"


class FetchedRun(BaseModel):
    model_config = ConfigDict(frozen=True)

    metadata: RunMetadata
    jobs: list[JobResult] = Field(default_factory=list)
    # job_id -> raw log text, None when the log could not be retrieved
    logs: dict[int, Optional[str]] = Field(default_factory=dict)
