import pytest
import asyncio
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from staging_monitor.agents.report_publisher import ReportPublisher
from staging_monitor.core.errors import PublishConflict, PublishError, REJECTED, UNAVAILABLE
from staging_monitor.models.report import StatusReport
from staging_monitor.models.run import RunMetadata
from staging_monitor.services.report_renderer import ReportRenderer

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _document(run_number=87, run_attempt=1, generated_at=NOW, workflow="Staging"):
    run = RunMetadata(
        run_id=4500 + run_number,
        run_number=run_number,
        run_attempt=run_attempt,
        workflow_name=workflow,
        branch="develop",
    )
    return ReportRenderer().render(StatusReport(run=run, generated_at=generated_at))


def _far_deadline():
    return time.monotonic() + 3600


def test_first_publish_creates_document(memory_store):
    document = _document()
    result = asyncio.run(ReportPublisher(memory_store).publish(document))

    assert result.status == "published"
    assert memory_store.content == document.content
    assert memory_store.writes[0][1] == document.commit_message


def test_identical_content_is_unchanged_and_revision_kept(make_store):
    store = make_store(_document().content)
    # Re-render of the same run a few hours later
    later = _document(generated_at=NOW + timedelta(hours=4))

    result = asyncio.run(ReportPublisher(store).publish(later))

    assert result.status == "unchanged"
    assert result.revision == "1"
    assert store.revision == 1
    assert store.writes == []


def test_changed_content_replaces_document(make_store):
    store = make_store(_document(workflow="Staging").content)
    updated = _document(workflow="Staging (renamed)")

    result = asyncio.run(ReportPublisher(store).publish(updated))

    assert result.status == "published"
    assert store.content == updated.content


def test_newer_stored_run_makes_publish_stale(make_store):
    store = make_store(_document(run_number=90).content)

    result = asyncio.run(ReportPublisher(store).publish(_document(run_number=87)))

    assert result.status == "stale"
    assert store.writes == []


def test_rerun_attempt_of_same_run_number_replaces_report(make_store):
    store = make_store(_document(run_number=87, run_attempt=1).content)

    result = asyncio.run(ReportPublisher(store).publish(_document(run_number=87, run_attempt=2)))

    assert result.status == "published"


def test_conflict_propagates_to_caller(memory_store):
    memory_store.write_errors.append(PublishConflict("moved"))
    with pytest.raises(PublishConflict):
        asyncio.run(ReportPublisher(memory_store).publish(_document()))


def test_unavailable_store_is_retried_until_success(memory_store):
    memory_store.read_errors.append(PublishError(UNAVAILABLE, "HTTP 502"))
    memory_store.write_errors.append(PublishError(UNAVAILABLE, "HTTP 503"))

    async def run_test():
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            publisher = ReportPublisher(memory_store, backoff_base=1.0, backoff_max=30.0)
            result = await publisher.publish(_document(), deadline=_far_deadline())
            assert mock_sleep.call_count == 2
            return result

    assert asyncio.run(run_test()).status == "published"


def test_unavailable_store_gives_up_at_deadline(memory_store):
    memory_store.read_errors.extend(PublishError(UNAVAILABLE, "down") for _ in range(10))

    async def run_test():
        with patch("asyncio.sleep", new_callable=AsyncMock):
            publisher = ReportPublisher(memory_store, backoff_base=1.0, backoff_max=30.0)
            # Deadline shorter than the first backoff step
            await publisher.publish(_document(), deadline=time.monotonic() + 0.5)

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(run_test())
    assert exc_info.value.reason == UNAVAILABLE
    assert memory_store.read_count == 1


def test_rejected_store_error_is_not_retried(memory_store):
    memory_store.write_errors.append(PublishError(REJECTED, "HTTP 403"))

    async def run_test():
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(PublishError):
                await ReportPublisher(memory_store).publish(_document(), deadline=_far_deadline())
            mock_sleep.assert_not_called()

    asyncio.run(run_test())


def test_concurrent_publishes_are_serialized(memory_store):
    """Two runs published at once: the older one must see the newer and go stale."""
    original_read = memory_store.read
    active = {"now": 0, "max": 0}

    async def slow_read():
        active["now"] += 1
        active["max"] = max(active["max"], active["now"])
        await asyncio.sleep(0.01)
        try:
            return await original_read()
        finally:
            active["now"] -= 1

    memory_store.read = slow_read
    publisher = ReportPublisher(memory_store)

    async def run_test():
        return await asyncio.gather(
            publisher.publish(_document(run_number=91)),
            publisher.publish(_document(run_number=90)),
        )

    newer, older = asyncio.run(run_test())

    assert active["max"] == 1
    assert newer.status == "published"
    assert older.status == "stale"
    assert len(memory_store.writes) == 1
