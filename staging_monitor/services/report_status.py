"""
Report Status
=============
Operator-facing health check of the stored status document, shared by
`GET /status` and `staging-monitor check`.

    missing      — no document at the destination
    placeholder  — the "Awaiting first monitoring run" stub, never updated
    degraded     — last invocation published a failure report
    stale        — last update older than REPORT_MAX_AGE_HOURS
    fresh        — a full report, recently generated
    unexpected   — a document exists but is not in the monitor's format
"""
import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from staging_monitor.core.constants import SECTION_RUN_SUMMARY
from staging_monitor.models.publish import StoredDocument
from staging_monitor.services.report_document import (
    format_timestamp,
    is_placeholder,
    parse_generated_at,
    parse_report_metadata,
)

ReportState = Literal["missing", "placeholder", "degraded", "stale", "fresh", "unexpected"]

_RUN_NUMBER_RE = re.compile(r"Run Number[^#\n]*#(?P<number>\d+)")

_ICONS = {
    "missing": "❌",
    "placeholder": "⏳",
    "degraded": "⚠️",
    "stale": "⌛",
    "fresh": "✅",
    "unexpected": "⚠️",
}


class ReportStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ReportState
    destination: str = ""
    run_id: Optional[int] = None
    run_number: Optional[int] = None
    generated_at: Optional[datetime] = None
    age_hours: Optional[float] = None
    failed_stage: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.state == "fresh"


def assess(
    stored: StoredDocument,
    now: datetime,
    max_age_hours: float,
    destination: str = "",
) -> ReportStatus:
    """Classify the stored document."""
    if not stored.exists:
        return ReportStatus(state="missing", destination=destination)

    content = stored.content
    if is_placeholder(content):
        return ReportStatus(state="placeholder", destination=destination)

    meta = parse_report_metadata(content)
    generated_at = parse_generated_at(content)
    age_hours = None
    if generated_at is not None:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        age_hours = round((now - generated_at).total_seconds() / 3600.0, 2)

    if meta is None:
        # Hand-edited or pre-metadata documents: fall back to the summary table
        match = _RUN_NUMBER_RE.search(content)
        if SECTION_RUN_SUMMARY not in content or match is None or generated_at is None:
            return ReportStatus(state="unexpected", destination=destination)
        run_number = int(match.group("number"))
        state = "stale" if age_hours > max_age_hours else "fresh"
        return ReportStatus(
            state=state,
            destination=destination,
            run_number=run_number,
            generated_at=generated_at,
            age_hours=age_hours,
        )

    if meta.degraded:
        state = "degraded"
    elif age_hours is not None and age_hours > max_age_hours:
        state = "stale"
    elif age_hours is None:
        state = "unexpected"
    else:
        state = "fresh"

    return ReportStatus(
        state=state,
        destination=destination,
        run_id=meta.run_id,
        run_number=meta.run_number,
        generated_at=generated_at,
        age_hours=age_hours,
        failed_stage=meta.failed_stage,
        failure_reason=meta.failure_reason,
    )


def describe(status: ReportStatus) -> str:
    """Human-readable, multi-line summary for the CLI."""
    icon = _ICONS[status.state]
    lines = []
    if status.state == "missing":
        lines.append(f"{icon} Status document NOT FOUND at {status.destination}")
    elif status.state == "placeholder":
        lines.append(f"{icon} Status document has NOT been updated yet (still showing placeholder)")
    elif status.state == "unexpected":
        lines.append(f"{icon} Status document exists but format is unexpected")
    elif status.state == "degraded":
        lines.append(
            f"{icon} Last monitoring run FAILED at the {status.failed_stage} stage: {status.failure_reason}"
        )
    elif status.state == "stale":
        lines.append(f"{icon} Status document is STALE (last updated {status.age_hours}h ago)")
    else:
        lines.append(f"{icon} Status document is up to date")

    if status.run_number:
        lines.append(f"   📊 Latest run: #{status.run_number}")
    if status.generated_at is not None:
        lines.append(f"   🕒 Generated at: {format_timestamp(status.generated_at)}")
    if status.destination:
        lines.append(f"   📍 Location: {status.destination}")
    return "\n".join(lines)
