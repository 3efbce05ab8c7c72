"""
Pipeline Wiring
===============
Builds the Trigger Controller and its components from configuration.

Used by the CLI (one controller per process) and the webhook server (one
shared controller, so every background task goes through the same
publisher and therefore the same per-destination lock).
"""
import logging
from typing import Optional

from staging_monitor.agents.report_publisher import ReportPublisher
from staging_monitor.agents.run_fetcher import RunFetcher
from staging_monitor.agents.trigger_controller import TriggerController
from staging_monitor.core.config import LOG_PATTERNS_FILE, PUBLISH_BACKEND
from staging_monitor.parser.log_analyzer import LogAnalyzer
from staging_monitor.parser.log_patterns import load_pattern_set
from staging_monitor.services.document_store import (
    DocumentStore,
    GitHubContentsStore,
    LocalGitStore,
)
from staging_monitor.services.report_renderer import ReportRenderer

logger = logging.getLogger(__name__)

_shared_controller: Optional[TriggerController] = None


def build_store(backend: str = PUBLISH_BACKEND) -> DocumentStore:
    if backend == "github":
        return GitHubContentsStore()
    if backend == "git":
        return LocalGitStore()
    raise ValueError(f"Unknown PUBLISH_BACKEND {backend!r} (expected 'github' or 'git')")


def build_controller(
    store: Optional[DocumentStore] = None,
    patterns_file: str = LOG_PATTERNS_FILE,
) -> TriggerController:
    store = store or build_store()
    patterns = load_pattern_set(patterns_file)
    logger.info("Publishing to %s", store.destination)
    return TriggerController(
        fetcher=RunFetcher(),
        analyzer=LogAnalyzer(patterns=patterns),
        renderer=ReportRenderer(),
        publisher=ReportPublisher(store),
    )


def get_controller() -> TriggerController:
    """Process-wide controller for the webhook server."""
    global _shared_controller
    if _shared_controller is None:
        _shared_controller = build_controller()
    return _shared_controller
