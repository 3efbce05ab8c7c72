"""
Report Renderer
===============
THE SINGLE SOURCE OF TRUTH for the persisted status document.

STRICT DETERMINISM CONTRACT:
  - This module NEVER performs I/O.
  - This module NEVER reads environment variables.
  - This module NEVER reorders rows: jobs keep the Fetcher's listing order,
    warnings keep the Analyzer's first-seen order.
  - Given the same inputs, it ALWAYS returns the same bytes, except the
    "Generated at" line.

DOCUMENT LAYOUT (fixed, in this order):
    title
    metadata comment          (machine-readable, see report_document.py)
    generated-at line
    [Monitoring Failure]      (degraded reports only)
    Latest Run Information    run summary table
    Job Status                one row per job
    Step Breakdown            one table per job
    Error Excerpts            one collapsible <details> block per failed job
    Warnings                  one row per warning code

Every section heading is always present. A section without data renders a
placeholder sentence, so "nothing to report" is never confused with
"section missing".
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from staging_monitor.core.constants import (
    COMMIT_PREFIX,
    CONCLUSION_ICONS,
    REPORT_TITLE,
    RUN_CONCLUSION_MAP,
    SECTION_ERRORS,
    SECTION_FAILURE,
    SECTION_JOBS,
    SECTION_RUN_SUMMARY,
    SECTION_STEPS,
    SECTION_WARNINGS,
    SENTINEL_TOKEN,
    SKIP_CI_TOKEN,
)
from staging_monitor.core.errors import RenderError
from staging_monitor.models.analysis import FailureExcerpt, WarningEntry
from staging_monitor.models.report import RenderedDocument, ReportMetadata, StatusReport
from staging_monitor.models.run import JobResult, RunMetadata
from staging_monitor.models.run_event import RunCompletionEvent
from staging_monitor.services.report_document import (
    format_timestamp,
    generated_at_line,
    metadata_line,
)

logger = logging.getLogger(__name__)

EMPTY_CELL = "—"

# ---------------------------------------------------------------------------
# Placeholder sentences
# ---------------------------------------------------------------------------
NO_JOBS = "_No jobs were reported for this run._"
NO_STEPS = "_No steps were reported for this job._"
NO_ERRORS = "_No errors: no job failed in this run._"
NO_WARNINGS = "_No warnings: no analyzer warning codes were found in the job logs._"
UNRECOGNIZED_FAILURE = "_No recognised error pattern; showing the end of the log._"


def not_available(stage: str) -> str:
    return f"_Not available: the {stage} stage failed before this section could be produced._"


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------
def _cell(value: object) -> str:
    text = str(value) if value is not None and value != "" else EMPTY_CELL
    return text.replace("\r", " ").replace("\n", " ").replace("|", "\\|")


def _conclusion(value: Optional[str]) -> str:
    if not value:
        return EMPTY_CELL
    icon = CONCLUSION_ICONS.get(value)
    return f"{icon} {value}" if icon else value


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return EMPTY_CELL
    total = int(round(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _timestamp(value: Optional[datetime]) -> str:
    return format_timestamp(value) if value is not None else EMPTY_CELL


def _short_sha(sha: str) -> str:
    return f"`{sha[:7]}`" if sha else EMPTY_CELL


def _fence(text: str) -> str:
    """Shortest backtick fence that cannot be closed by the excerpt itself."""
    longest = run = 0
    for ch in text:
        run = run + 1 if ch == "`" else 0
        longest = max(longest, run)
    return "`" * max(3, longest + 1)


def _table(header: Iterable[str], rows: list[list[str]]) -> list[str]:
    header = list(header)
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "|".join("---" for _ in header) + "|",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in rows)
    return lines


def commit_message(metadata: ReportMetadata) -> str:
    """Commit message for a report; always carries the sentinel and [skip ci]."""
    if metadata.degraded:
        summary = f"report {metadata.failed_stage or 'unknown'} failure for run #{metadata.run_number}"
    else:
        summary = f"update staging status for run #{metadata.run_number}"
    return f"{COMMIT_PREFIX} {summary} {SENTINEL_TOKEN} {SKIP_CI_TOKEN}"


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------
class ReportRenderer:
    """
    Renders StatusReports (and degraded failure reports) as Markdown.
    """

    # -------------------------------------------------------------------
    # Full report
    # -------------------------------------------------------------------
    def render(self, report: StatusReport) -> RenderedDocument:
        """
        Render a complete status report.

        Raises
        ------
        RenderError
            The report violates a rendering invariant (duplicate warning
            codes, non-positive counts, excerpts for unknown jobs).
        """
        self._validate(report)
        run = report.run
        metadata = ReportMetadata(
            run_id=run.run_id,
            run_number=run.run_number,
            run_attempt=run.run_attempt,
            branch=run.branch,
            head_sha=run.head_sha,
        )

        lines = self._header(metadata, report.generated_at)
        lines += self._run_summary(run, report.jobs, report.warnings)
        lines += self._job_table(report.jobs)
        lines += self._step_breakdown(report.jobs)
        lines += self._error_excerpts(report.failure_excerpts)
        lines += self._warnings_table(report.warnings)

        content = "\n".join(lines).rstrip("\n") + "\n"
        logger.debug("Rendered report for run %d (%d bytes)", run.run_id, len(content))
        return RenderedDocument(
            content=content,
            metadata=metadata,
            commit_message=commit_message(metadata),
        )

    # -------------------------------------------------------------------
    # Degraded report
    # -------------------------------------------------------------------
    def render_degraded(
        self,
        event: RunCompletionEvent,
        stage: str,
        reason: str,
        generated_at: datetime,
        run: Optional[RunMetadata] = None,
    ) -> RenderedDocument:
        """
        Render the minimal report used when a stage failed.

        Uses only the event (and the fetched run metadata when the failure
        happened after fetching), so it cannot itself fail on bad run data.
        """
        if run is None:
            run = RunMetadata(
                run_id=event.run_id,
                run_number=event.run_number,
                run_attempt=event.run_attempt,
                workflow_name=event.workflow_name,
                branch=event.branch,
                head_sha=event.head_sha,
                html_url=event.html_url,
                conclusion=RUN_CONCLUSION_MAP.get(event.conclusion or "", "unknown"),
            )
        metadata = ReportMetadata(
            run_id=run.run_id,
            run_number=run.run_number,
            run_attempt=run.run_attempt,
            branch=run.branch,
            head_sha=run.head_sha,
            degraded=True,
            failed_stage=stage,
            failure_reason=reason,
        )

        lines = self._header(metadata, generated_at)
        lines += [
            SECTION_FAILURE,
            "",
            f"The status report for run #{run.run_number} could not be generated: "
            f"the **{stage}** stage failed.",
            "",
            f"**Reason:** {_cell(reason)}",
            "",
            "The sections below are placeholders until the next successful monitoring run.",
            "",
        ]
        lines += self._run_summary(run, None, None)
        placeholder = not_available(stage)
        for heading in (SECTION_JOBS, SECTION_STEPS, SECTION_ERRORS, SECTION_WARNINGS):
            lines += [heading, "", placeholder, ""]

        content = "\n".join(lines).rstrip("\n") + "\n"
        return RenderedDocument(
            content=content,
            metadata=metadata,
            commit_message=commit_message(metadata),
        )

    # -------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------
    @staticmethod
    def _header(metadata: ReportMetadata, generated_at: datetime) -> list[str]:
        return [
            REPORT_TITLE,
            "",
            metadata_line(metadata),
            "",
            generated_at_line(generated_at),
            "",
        ]

    @staticmethod
    def _run_summary(
        run: RunMetadata,
        jobs: Optional[list[JobResult]],
        warnings: Optional[list[WarningEntry]],
    ) -> list[str]:
        run_number = f"#{run.run_number}"
        if run.html_url:
            run_number = f"[{run_number}]({run.html_url})"
        duration = None
        if run.started_at is not None and run.completed_at is not None:
            duration = max(0.0, (run.completed_at - run.started_at).total_seconds())

        rows = [
            ["Workflow", _cell(run.workflow_name)],
            ["Run Number", run_number],
            ["Run ID", str(run.run_id)],
            ["Attempt", str(run.run_attempt)],
            ["Branch", f"`{run.branch}`" if run.branch else EMPTY_CELL],
            ["Commit", _short_sha(run.head_sha)],
            ["Started", _timestamp(run.started_at)],
            ["Completed", _timestamp(run.completed_at)],
            ["Duration", format_duration(duration)],
            ["Conclusion", _conclusion(run.conclusion)],
        ]
        if jobs is not None:
            failed = sum(1 for j in jobs if j.conclusion == "failure")
            passed = sum(1 for j in jobs if j.conclusion == "success")
            rows.append(["Jobs", f"{len(jobs)} total, {passed} passed, {failed} failed"])
        if warnings is not None:
            total = sum(w.count for w in warnings)
            rows.append(["Warnings", f"{total} across {len(warnings)} code(s)"])

        return [SECTION_RUN_SUMMARY, ""] + _table(["Field", "Value"], rows) + [""]

    @staticmethod
    def _job_table(jobs: list[JobResult]) -> list[str]:
        lines = [SECTION_JOBS, ""]
        if not jobs:
            return lines + [NO_JOBS, ""]
        rows = [
            [
                str(index),
                _cell(job.name),
                _cell(job.status),
                _conclusion(job.conclusion),
                format_duration(job.duration_seconds),
            ]
            for index, job in enumerate(jobs, start=1)
        ]
        return lines + _table(["#", "Job", "Status", "Conclusion", "Duration"], rows) + [""]

    @staticmethod
    def _step_breakdown(jobs: list[JobResult]) -> list[str]:
        lines = [SECTION_STEPS, ""]
        if not jobs:
            return lines + [NO_JOBS, ""]
        for job in jobs:
            lines += [f"### {_cell(job.name)}", ""]
            if not job.steps:
                lines += [NO_STEPS, ""]
                continue
            rows = []
            for step in job.steps:
                conclusion = _conclusion(step.conclusion)
                if step.log_excerpt is not None:
                    conclusion += " (see excerpt)"
                rows.append([str(step.number), _cell(step.name), conclusion])
            lines += _table(["#", "Step", "Conclusion"], rows) + [""]
        return lines

    @staticmethod
    def _error_excerpts(excerpts: list[FailureExcerpt]) -> list[str]:
        lines = [SECTION_ERRORS, ""]
        if not excerpts:
            return lines + [NO_ERRORS, ""]
        for excerpt in excerpts:
            title = _cell(excerpt.job_name)
            if excerpt.step_name:
                title += f" › {_cell(excerpt.step_name)}"
            line_count = len(excerpt.text.splitlines())
            if excerpt.placeholder:
                summary = "Log unavailable"
            else:
                summary = f"Show log excerpt ({line_count} line{'s' if line_count != 1 else ''})"
            fence = _fence(excerpt.text)

            lines += [f"### {title}", ""]
            if not excerpt.recognized and not excerpt.placeholder:
                lines += [UNRECOGNIZED_FAILURE, ""]
            lines += [
                "<details>",
                f"<summary>{summary}</summary>",
                "",
                f"{fence}text",
                excerpt.text,
                fence,
                "",
                "</details>",
                "",
            ]
        return lines

    @staticmethod
    def _warnings_table(warnings: list[WarningEntry]) -> list[str]:
        lines = [SECTION_WARNINGS, ""]
        if not warnings:
            return lines + [NO_WARNINGS, ""]
        rows = [[f"`{w.code}`", str(w.count), _cell(w.description)] for w in warnings]
        total = sum(w.count for w in warnings)
        return lines + _table(["Code", "Count", "Description"], rows) + [
            "",
            f"**Total:** {total} warning(s) across {len(warnings)} code(s).",
            "",
        ]

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @staticmethod
    def _validate(report: StatusReport) -> None:
        codes = [w.code for w in report.warnings]
        if len(codes) != len(set(codes)):
            raise RenderError(f"duplicate warning codes in report: {codes}")
        for w in report.warnings:
            if w.count < 1:
                raise RenderError(f"warning {w.code} has non-positive count {w.count}")
        job_names = {j.name for j in report.jobs}
        for excerpt in report.failure_excerpts:
            if excerpt.job_name not in job_names:
                raise RenderError(f"excerpt refers to unknown job {excerpt.job_name!r}")


def render_report(
    metadata: RunMetadata,
    jobs: list[JobResult],
    warnings: list[WarningEntry],
    failure_excerpts: Optional[list[FailureExcerpt]] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Functional form of ReportRenderer.render returning the document text."""
    report = StatusReport(
        run=metadata,
        jobs=jobs,
        failure_excerpts=failure_excerpts or [],
        warnings=warnings,
        generated_at=generated_at or datetime.now(timezone.utc),
    )
    return ReportRenderer().render(report).content
