"""
Report Publisher
================
Commits a rendered document to its store, at most once per change.

Contract (under a per-destination lock):
    1. Re-read the stored document.
    2. Stored report describes a newer run      -> "stale", nothing written.
    3. Stored content equals the new content
       (ignoring the Generated-at line)          -> "unchanged", nothing written.
    4. Otherwise full replace, passing the revision read in step 1.

PublishConflict (destination moved between read and write) is NOT handled
here; the Trigger Controller re-runs publish() once and then fails loud.
PublishError("unavailable") is retried with exponential backoff until the
caller's deadline passes.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from staging_monitor.core.config import BACKOFF_BASE_SECONDS, BACKOFF_MAX_SECONDS
from staging_monitor.core.errors import UNAVAILABLE, PublishError
from staging_monitor.models.publish import PublishResult, StoredDocument
from staging_monitor.models.report import RenderedDocument
from staging_monitor.services.document_store import DocumentStore
from staging_monitor.services.report_document import (
    is_superseded,
    parse_report_metadata,
    same_report,
)
from staging_monitor.utils.backoff import backoff_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReportPublisher:
    """
    Idempotent publisher for one store.

    The lock table is keyed by the store's destination so that two publishers
    sharing a destination string (same process) still serialize through one
    lock when they share this instance.
    """

    def __init__(
        self,
        store: DocumentStore,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_max: float = BACKOFF_MAX_SECONDS,
    ) -> None:
        self.store = store
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def destination(self) -> str:
        return self.store.destination

    def _lock(self) -> asyncio.Lock:
        lock = self._locks.get(self.destination)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[self.destination] = lock
        return lock

    async def _with_retry(
        self,
        action: str,
        call: Callable[[], Awaitable[T]],
        deadline: Optional[float],
    ) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except PublishError as e:
                if e.reason != UNAVAILABLE:
                    raise
                delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                if deadline is None or time.monotonic() + delay > deadline:
                    logger.error("%s of %s failed, giving up: %s", action, self.destination, e)
                    raise
                logger.warning(
                    "%s of %s unavailable (attempt %d), retrying in %.1fs: %s",
                    action, self.destination, attempt + 1, delay, e,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def read_current(self, deadline: Optional[float] = None) -> StoredDocument:
        """Current stored document, with the same unavailable-retry policy as publish()."""
        return await self._with_retry("read", self.store.read, deadline)

    async def publish(
        self, document: RenderedDocument, deadline: Optional[float] = None
    ) -> PublishResult:
        """
        Publish `document` unless it is stale or identical to what is stored.

        `deadline` is a time.monotonic() value; without one, an unavailable
        store is not retried.
        """
        async with self._lock():
            stored = await self.read_current(deadline)

            if stored.exists:
                stored_meta = parse_report_metadata(stored.content)
                if is_superseded(document.metadata, stored_meta):
                    logger.info(
                        "Discarding report for run #%d: %s already holds run #%d",
                        document.metadata.run_number, self.destination, stored_meta.run_number,
                    )
                    return PublishResult(status="stale", revision=stored.revision)

                if same_report(stored.content, document.content):
                    logger.info("Report for run #%d unchanged, nothing to publish", document.metadata.run_number)
                    return PublishResult(status="unchanged", revision=stored.revision)

            result = await self._with_retry(
                "write",
                lambda: self.store.write(document.content, document.commit_message, stored.revision),
                deadline,
            )
            logger.info(
                "Published report for run #%d to %s (%s)",
                document.metadata.run_number, self.destination, result.status,
            )
            return result
