"""
Run Completion Event
====================
Inbound notification that an upstream workflow run finished.

Built from a GitHub `workflow_run` webhook payload (or the same payload
written to GITHUB_EVENT_PATH inside a CI job). Only the run identity and
the head commit message are needed: everything else is re-fetched.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class RunCompletionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    run_number: int = 0
    run_attempt: int = 1
    workflow_name: str = ""
    workflow_path: str = ""
    branch: str = ""
    head_sha: str = ""
    head_commit_message: str = ""
    action: str = "completed"
    status: str = "completed"
    conclusion: Optional[str] = None
    html_url: str = ""

    @classmethod
    def from_workflow_run_payload(cls, payload: dict[str, Any]) -> "RunCompletionEvent":
        """Build an event from a `workflow_run` webhook body."""
        run = payload.get("workflow_run") or {}
        if "id" not in run:
            raise ValueError("payload has no workflow_run.id")
        head_commit = run.get("head_commit") or {}
        return cls(
            run_id=int(run["id"]),
            run_number=int(run.get("run_number") or 0),
            run_attempt=int(run.get("run_attempt") or 1),
            workflow_name=run.get("name") or (payload.get("workflow") or {}).get("name", ""),
            workflow_path=run.get("path") or "",
            branch=run.get("head_branch") or "",
            head_sha=run.get("head_sha") or "",
            head_commit_message=head_commit.get("message") or "",
            action=payload.get("action") or "",
            status=run.get("status") or "",
            conclusion=run.get("conclusion"),
            html_url=run.get("html_url") or "",
        )

    def matches_workflow(self, workflow: str) -> bool:
        """True when `workflow` names this run's workflow (display name or file name)."""
        if not workflow:
            return True
        wanted = workflow.strip().lower()
        file_name = self.workflow_path.rsplit("/", 1)[-1].lower()
        return wanted in (self.workflow_name.lower(), file_name, self.workflow_path.lower())
