"""
Report Document
===============
Reading and writing the machine-readable parts of the persisted report.

The document carries two non-prose lines:

    <!-- staging-monitor:meta {"branch":"develop","run_id":4521,...} -->
    > Generated at: 2026-10-18 12:00:00 UTC

The metadata comment is how the controller knows which run the stored
report describes (duplicate and freshness checks). The generated-at line is
the only part of a report that differs between two renderings of the same
run, so it is ignored when comparing documents.
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from staging_monitor.core.constants import (
    AWAITING_FIRST_RUN,
    GENERATED_AT_LABEL,
    METADATA_MARKER,
)
from staging_monitor.models.report import ReportMetadata

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"

_METADATA_RE = re.compile(
    r"<!--\s*" + re.escape(METADATA_MARKER) + r"\s+(?P<json>\{.*?\})\s*-->"
)
_GENERATED_AT_RE = re.compile(
    r"^> " + re.escape(GENERATED_AT_LABEL) + r" (?P<ts>.+?)\s*$", re.MULTILINE
)


def format_timestamp(value: datetime) -> str:
    """UTC, second precision. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def metadata_line(metadata: ReportMetadata) -> str:
    payload = json.dumps(metadata.model_dump(), sort_keys=True, separators=(",", ":"))
    # "--" cannot appear inside an HTML comment
    payload = payload.replace("--", "\\u002d\\u002d")
    return f"<!-- {METADATA_MARKER} {payload} -->"


def generated_at_line(generated_at: datetime) -> str:
    return f"> {GENERATED_AT_LABEL} {format_timestamp(generated_at)}"


def parse_report_metadata(content: str) -> Optional[ReportMetadata]:
    """Return the embedded metadata, or None if absent or malformed."""
    if not content:
        return None
    match = _METADATA_RE.search(content)
    if not match:
        return None
    try:
        return ReportMetadata.model_validate(json.loads(match.group("json")))
    except (ValueError, ValidationError) as exc:
        logger.warning("Stored report has unreadable metadata: %s", exc)
        return None


def parse_generated_at(content: str) -> Optional[datetime]:
    match = _GENERATED_AT_RE.search(content or "")
    if not match:
        return None
    try:
        parsed = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def without_generated_at(content: str) -> str:
    # Only the header stamp; log excerpts may quote the same text
    return _GENERATED_AT_RE.sub("", content, count=1)


def same_report(left: str, right: str) -> bool:
    """True when two documents differ at most in their generated-at line."""
    return without_generated_at(left) == without_generated_at(right)


def is_placeholder(content: str) -> bool:
    return AWAITING_FIRST_RUN in (content or "") and parse_report_metadata(content) is None


def is_superseded(candidate: ReportMetadata, stored: Optional[ReportMetadata]) -> bool:
    """
    True when `stored` describes a newer run than `candidate`.

    Run numbers order runs of one workflow; attempts order re-runs of the
    same run number. Equal keys are not superseded (re-render of same run).
    """
    if stored is None:
        return False
    return (stored.run_number, stored.run_attempt) > (candidate.run_number, candidate.run_attempt)
