"""
Analysis Models
Output of the Log Analyzer: failure excerpts and aggregated warning codes.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .run import JobResult


class WarningEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    count: int = Field(ge=1)
    description: str = ""


class FailureExcerpt(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_name: str
    step_name: Optional[str] = None
    text: str
    recognized: bool = False     # anchored on a recognised error pattern
    placeholder: bool = False    # substituted for a missing/unreadable log


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    jobs: list[JobResult] = Field(default_factory=list)
    failure_excerpts: list[FailureExcerpt] = Field(default_factory=list)
    warnings: list[WarningEntry] = Field(default_factory=list)
