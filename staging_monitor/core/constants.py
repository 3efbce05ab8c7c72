"""
Constants
Centralised storage for the report schema strings, commit markers and status enums.
"""
# Sentinel embedded in every commit the monitor makes. Runs whose head commit
# carries it are never reported on.
SENTINEL_TOKEN = "[staging-monitor]"
SKIP_CI_TOKEN = "[skip ci]"
COMMIT_PREFIX = "docs(staging):"

# Machine-readable header of the persisted document
METADATA_MARKER = "staging-monitor:meta"
GENERATED_AT_LABEL = "Generated at:"

REPORT_TITLE = "# Staging Workflow Status"

# Section headings, in rendering order
SECTION_RUN_SUMMARY = "## Latest Run Information"
SECTION_JOBS = "## Job Status"
SECTION_STEPS = "## Step Breakdown"
SECTION_ERRORS = "## Error Excerpts"
SECTION_WARNINGS = "## Warnings"
SECTION_ORDER = (
    SECTION_RUN_SUMMARY,
    SECTION_JOBS,
    SECTION_STEPS,
    SECTION_ERRORS,
    SECTION_WARNINGS,
)
SECTION_FAILURE = "## Monitoring Failure"

# Placeholder text of the document before the first monitoring run
AWAITING_FIRST_RUN = "Awaiting first monitoring run"

# Controller stages (also used as failed_stage in degraded reports)
STAGE_FETCHING = "fetching"
STAGE_ANALYZING = "analyzing"
STAGE_RENDERING = "rendering"
STAGE_PUBLISHING = "publishing"

# GitHub status / conclusion normalisation
JOB_STATUS_MAP = {
    "queued": "queued",
    "waiting": "queued",
    "pending": "queued",
    "requested": "queued",
    "in_progress": "in_progress",
    "completed": "completed",
}
JOB_CONCLUSION_MAP = {
    "success": "success",
    "neutral": "success",
    "failure": "failure",
    "timed_out": "failure",
    "startup_failure": "failure",
    "action_required": "failure",
    "skipped": "skipped",
    "stale": "skipped",
    "cancelled": "cancelled",
}
RUN_CONCLUSION_MAP = {
    "success": "success",
    "neutral": "success",
    "failure": "failure",
    "timed_out": "failure",
    "startup_failure": "failure",
    "action_required": "failure",
    "cancelled": "cancelled",
}

CONCLUSION_ICONS = {
    "success": "✅",
    "failure": "❌",
    "cancelled": "⛔",
    "skipped": "⏭️",
    "unknown": "❓",
}
