"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_TOKEN           — Token used for the Actions API and the contents API
    GITHUB_REPOSITORY      — owner/repo holding both the upstream workflow and the report
    GITHUB_API_URL         — REST API root (default: https://api.github.com)
    UPSTREAM_WORKFLOW      — Workflow name or file name being monitored (default: Staging)
    REPORT_BRANCH          — Branch the status document lives on (default: develop)
    REPORT_PATH            — Path of the status document (default: docs/STAGING-STATUS.md)
    PUBLISH_BACKEND        — "github" (contents API) or "git" (local checkout)
    GIT_WORKSPACE          — Checkout used by the "git" backend (default: .)
    WEBHOOK_SECRET         — Shared secret for X-Hub-Signature-256 (empty disables the check)

Retry Philosophy:
    Every network call carries HTTP_TIMEOUT. Timeouts, transport errors,
    HTTP 5xx and HTTP 429 are transient: they are retried FETCH_MAX_RETRIES
    times with exponential backoff (BACKOFF_BASE_SECONDS doubling, capped at
    BACKOFF_MAX_SECONDS). Publishing retries are bounded by INVOCATION_TIMEOUT
    instead of a count.

Excerpts:
    EXCERPT_MODE selects "first_error" (window around the first recognised
    error line) or "tail" (last EXCERPT_MAX_LINES lines). Failures without a
    recognised error line always fall back to the tail.
"""
import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")
GITHUB_REPOSITORY = os.getenv("GITHUB_REPOSITORY", "")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")

# Upstream workflow being watched
UPSTREAM_WORKFLOW = os.getenv("UPSTREAM_WORKFLOW", "Staging")

# Report destination
REPORT_BRANCH = os.getenv("REPORT_BRANCH", "develop")
REPORT_PATH = os.getenv("REPORT_PATH", "docs/STAGING-STATUS.md")
PUBLISH_BACKEND = os.getenv("PUBLISH_BACKEND", "github").lower()
GIT_WORKSPACE = os.getenv("GIT_WORKSPACE", ".")

# Network behaviour
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 20.0))
FETCH_MAX_RETRIES = int(os.getenv("FETCH_MAX_RETRIES", 4))
BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", 1.0))
BACKOFF_MAX_SECONDS = float(os.getenv("BACKOFF_MAX_SECONDS", 30.0))
LOG_FETCH_CONCURRENCY = int(os.getenv("LOG_FETCH_CONCURRENCY", 4))

# Log analysis
EXCERPT_MODE = os.getenv("EXCERPT_MODE", "first_error").lower()
EXCERPT_MAX_LINES = int(os.getenv("EXCERPT_MAX_LINES", 40))
EXCERPT_CONTEXT_LINES = int(os.getenv("EXCERPT_CONTEXT_LINES", 5))
LOG_PATTERNS_FILE = os.getenv("LOG_PATTERNS_FILE", "")

# Whole-invocation ceiling (seconds); bounds publish retries
INVOCATION_TIMEOUT = float(os.getenv("INVOCATION_TIMEOUT", 600.0))

# Operator check: a report older than this is reported as stale
REPORT_MAX_AGE_HOURS = float(os.getenv("REPORT_MAX_AGE_HOURS", 72.0))

# Webhook receiver
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")

# Identity used by the "git" backend for report commits
COMMIT_AUTHOR_NAME = os.getenv("COMMIT_AUTHOR_NAME", "staging-monitor[bot]")
COMMIT_AUTHOR_EMAIL = os.getenv("COMMIT_AUTHOR_EMAIL", "staging-monitor@users.noreply.github.com")
