"""
Log Analyzer
============
Turns raw job logs into failure excerpts and aggregated warning counts.

Pipeline:
    1. Normalize each log (strip Actions timestamps, ANSI colours, BOM)
    2. For every failed job, cut a bounded excerpt:
         first_error — window anchored on the first recognised error line
         tail        — the last N lines
       A failure with no recognised error line falls back to the tail.
    3. Attach the excerpt to the job's first failed step
    4. Scan every log (passing and failing jobs) for warning codes
    5. Sum counts per code across the run, in first-seen order

Contract:
    - DETERMINISTIC: same jobs + logs → same AnalysisResult, always.
    - Tolerant: a missing or unreadable log becomes a placeholder excerpt,
      never an exception to the caller.
    - Order preserving: excerpts follow job order, warnings follow first
      appearance. Nothing is re-sorted.
"""
import logging
import re
from collections import OrderedDict
from typing import Mapping, Optional

from staging_monitor.core.config import (
    EXCERPT_CONTEXT_LINES,
    EXCERPT_MAX_LINES,
    EXCERPT_MODE,
)
from staging_monitor.core.errors import AnalysisError
from staging_monitor.models.analysis import AnalysisResult, FailureExcerpt, WarningEntry
from staging_monitor.models.run import JobResult
from staging_monitor.parser.log_patterns import PatternSet, default_pattern_set

logger = logging.getLogger(__name__)

EXCERPT_MODES = ("first_error", "tail")

# Longest single line kept in an excerpt
_MAX_LINE_CHARS = 500


# ---------------------------------------------------------------------------
# Log Normalization
# ---------------------------------------------------------------------------
_TIMESTAMP_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z ?")
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_ANNOTATION_PREFIX = re.compile(r"^##\[(?:warning|notice)\]")


def normalize_log(text: str) -> list[str]:
    """
    Split a raw Actions log into clean lines.

    Removes the UTF-8 BOM, the per-line ISO timestamp Actions prepends,
    ANSI colour sequences and trailing whitespace.
    """
    lines: list[str] = []
    for raw in text.lstrip("\ufeff").splitlines():
        line = _TIMESTAMP_PREFIX.sub("", raw.lstrip("\ufeff"))
        line = _ANSI_ESCAPE.sub("", line)
        lines.append(line.rstrip())
    return lines


def _dedupe_key(line: str) -> str:
    # "##[warning]<msg>" annotations repeat the compiler line they annotate
    return _ANNOTATION_PREFIX.sub("", line).strip()


def _clip(line: str) -> str:
    if len(line) <= _MAX_LINE_CHARS:
        return line
    return line[:_MAX_LINE_CHARS] + " …"


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------
class LogAnalyzer:
    """
    Extracts failure excerpts and warning counts from one run's job logs.
    """

    def __init__(
        self,
        patterns: Optional[PatternSet] = None,
        excerpt_mode: str = EXCERPT_MODE,
        max_lines: int = EXCERPT_MAX_LINES,
        context_lines: int = EXCERPT_CONTEXT_LINES,
        dedupe_repeated_lines: bool = True,
    ) -> None:
        if excerpt_mode not in EXCERPT_MODES:
            raise ValueError(f"excerpt_mode must be one of {EXCERPT_MODES}, got {excerpt_mode!r}")
        if max_lines < 1:
            raise ValueError("max_lines must be >= 1")
        self.patterns = patterns or default_pattern_set()
        self.excerpt_mode = excerpt_mode
        self.max_lines = max_lines
        self.context_lines = max(0, min(context_lines, max_lines - 1))
        self.dedupe_repeated_lines = dedupe_repeated_lines

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    def analyze(
        self,
        jobs: list[JobResult],
        logs: Mapping[int, Optional[str]],
    ) -> AnalysisResult:
        """
        Analyze every job of a run.

        Parameters
        ----------
        jobs : list[JobResult]
            Jobs in the Fetcher's listing order.
        logs : Mapping[int, str | None]
            job_id → raw log text (None when it could not be retrieved).

        Returns
        -------
        AnalysisResult
            Jobs with excerpts attached to their failing step, the excerpts
            in job order, and the aggregated warnings. Never raises for log
            content problems.
        """
        excerpts: list[FailureExcerpt] = []
        annotated_jobs: list[JobResult] = []
        totals: "OrderedDict[str, list]" = OrderedDict()  # code -> [count, description]

        for job in jobs:
            unreadable_reason = ""
            try:
                lines: Optional[list[str]] = self._read_lines(job, logs)
            except AnalysisError as exc:
                lines = None
                if job.failed:
                    logger.warning("Substituting placeholder excerpt for %r: %s", job.name, exc)
                else:
                    logger.debug("No log to scan for %r: %s", job.name, exc)
                unreadable_reason = str(exc)

            if lines is not None:
                self._accumulate_warnings(lines, totals)

            if not job.failed:
                annotated_jobs.append(job)
                continue

            step_name = self._failing_step_name(job)
            if lines is None:
                excerpt = FailureExcerpt(
                    job_name=job.name,
                    step_name=step_name,
                    text=f"Log unavailable: {unreadable_reason}",
                    recognized=False,
                    placeholder=True,
                )
            else:
                text, recognized = self.extract_excerpt(lines)
                excerpt = FailureExcerpt(
                    job_name=job.name,
                    step_name=step_name,
                    text=text,
                    recognized=recognized,
                )
            excerpts.append(excerpt)
            annotated_jobs.append(self._attach_excerpt(job, step_name, excerpt.text))

        warnings = [
            WarningEntry(code=code, count=count, description=description)
            for code, (count, description) in totals.items()
        ]
        logger.info(
            "Analyzed %d job(s): %d failure excerpt(s), %d warning code(s), %d warning(s) total",
            len(jobs), len(excerpts), len(warnings), sum(w.count for w in warnings),
        )
        return AnalysisResult(jobs=annotated_jobs, failure_excerpts=excerpts, warnings=warnings)

    def extract_excerpt(self, lines: list[str]) -> tuple[str, bool]:
        """
        Cut a bounded excerpt from normalized log lines.

        Returns (excerpt_text, recognized) where `recognized` is True when the
        excerpt is anchored on a recognised error line.
        """
        while lines and not lines[-1].strip():
            lines = lines[:-1]

        if self.excerpt_mode == "first_error":
            for index, line in enumerate(lines):
                if self.patterns.is_error_line(line):
                    start = max(0, index - self.context_lines)
                    window = lines[start:start + self.max_lines]
                    return "\n".join(_clip(l) for l in window), True

        # tail mode, or no recognised error line
        window = lines[-self.max_lines:]
        recognized = any(self.patterns.is_error_line(l) for l in window)
        return "\n".join(_clip(l) for l in window), recognized

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    @staticmethod
    def _read_lines(job: JobResult, logs: Mapping[int, Optional[str]]) -> list[str]:
        text = logs.get(job.job_id)
        if text is None:
            raise AnalysisError(f"no log was retrieved for job {job.name!r}")
        if not isinstance(text, str):
            raise AnalysisError(f"log for job {job.name!r} is not text")
        lines = normalize_log(text)
        if not any(line.strip() for line in lines):
            raise AnalysisError(f"log for job {job.name!r} is empty")
        return lines

    def _accumulate_warnings(self, lines: list[str], totals: "OrderedDict[str, list]") -> None:
        seen: set[str] = set()
        for line in lines:
            match = self.patterns.match_warning(line)
            if match is None:
                continue
            if self.dedupe_repeated_lines:
                key = _dedupe_key(line)
                if key in seen:
                    continue
                seen.add(key)
            entry = totals.get(match.code)
            if entry is None:
                totals[match.code] = [1, match.description]
            else:
                entry[0] += 1
                if not entry[1] and match.description:
                    entry[1] = match.description

    @staticmethod
    def _failing_step_name(job: JobResult) -> Optional[str]:
        # None when no step failed (e.g. the job timed out between steps)
        for step in job.steps:
            if step.conclusion == "failure":
                return step.name
        return None

    @staticmethod
    def _attach_excerpt(job: JobResult, step_name: Optional[str], text: str) -> JobResult:
        if step_name is None:
            return job
        steps = []
        attached = False
        for step in job.steps:
            if not attached and step.name == step_name:
                steps.append(step.model_copy(update={"log_excerpt": text}))
                attached = True
            else:
                steps.append(step)
        return job.model_copy(update={"steps": steps})
