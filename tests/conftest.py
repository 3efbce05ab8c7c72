"""
Shared fixtures: an in-memory document store and GitHub payload builders.
"""
import pytest
from datetime import datetime, timezone
from typing import Optional

from staging_monitor.core.errors import PublishConflict
from staging_monitor.models.publish import PublishResult, StoredDocument
from staging_monitor.services.document_store import DocumentStore

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class MemoryStore(DocumentStore):
    """
    In-memory store with an integer revision counter.

    `read_errors` / `write_errors` are queues of exceptions raised by the
    next read()/write() calls before normal behaviour resumes.
    """

    def __init__(self, content: Optional[str] = None) -> None:
        self.destination = "memory:docs/STAGING-STATUS.md"
        self.content = content
        self.revision = 1 if content is not None else 0
        self.writes: list[tuple[str, str]] = []
        self.read_count = 0
        self.read_errors: list[Exception] = []
        self.write_errors: list[Exception] = []

    async def read(self) -> StoredDocument:
        self.read_count += 1
        if self.read_errors:
            raise self.read_errors.pop(0)
        if self.content is None:
            return StoredDocument(exists=False, revision=None)
        return StoredDocument(content=self.content, exists=True, revision=str(self.revision))

    async def write(self, content, message, expected_revision) -> PublishResult:
        if self.write_errors:
            raise self.write_errors.pop(0)
        current = str(self.revision) if self.content is not None else None
        if expected_revision != current:
            raise PublishConflict(f"expected {expected_revision}, found {current}")
        self.content = content
        self.revision += 1
        self.writes.append((content, message))
        return PublishResult(status="published", revision=str(self.revision), commit_sha=f"c{self.revision}")


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def make_store():
    return MemoryStore


@pytest.fixture
def fixed_now():
    return FIXED_NOW


def _run_payload(run_id=4521, run_number=87, run_attempt=1, status="completed",
                 conclusion="failure", branch="develop", message="Merge pull request #12"):
    return {
        "id": run_id,
        "name": "Staging",
        "path": ".github/workflows/staging.yml",
        "run_number": run_number,
        "run_attempt": run_attempt,
        "head_branch": branch,
        "head_sha": "0123456789abcdef0123456789abcdef01234567",
        "status": status,
        "conclusion": conclusion,
        "html_url": f"https://github.com/acme/shop/actions/runs/{run_id}",
        "run_started_at": "2026-10-18T11:50:00Z",
        "updated_at": "2026-10-18T11:58:30Z",
        "head_commit": {"message": message},
    }


def _job_payload(job_id, name, conclusion="success", steps=None):
    return {
        "id": job_id,
        "name": name,
        "status": "completed",
        "conclusion": conclusion,
        "started_at": "2026-10-18T11:50:10Z",
        "completed_at": "2026-10-18T11:52:40Z",
        "html_url": f"https://github.com/acme/shop/actions/runs/4521/job/{job_id}",
        "steps": steps if steps is not None else [
            {"number": 1, "name": "Set up job", "conclusion": "success"},
            {"number": 2, "name": "Run " + name, "conclusion": conclusion},
        ],
    }


@pytest.fixture
def run_payload():
    return _run_payload


@pytest.fixture
def job_payload():
    return _job_payload


@pytest.fixture
def webhook_payload():
    def build(action="completed", **run_kwargs):
        return {
            "action": action,
            "workflow_run": _run_payload(**run_kwargs),
            "workflow": {"name": "Staging", "path": ".github/workflows/staging.yml"},
            "repository": {"full_name": "acme/shop"},
        }
    return build


# Logs for the canonical three-job example (build / test / lint)
BUILD_LOG = (
    "\ufeff2026-10-18T11:50:11.0000000Z ##[group]Run dotnet build\n"
    "2026-10-18T11:50:12.0000000Z Build succeeded.\n"
    "2026-10-18T11:50:12.1000000Z     0 Warning(s)\n"
)
TEST_LOG = (
    "2026-10-18T11:51:00.0000000Z Running tests...\n"
    "2026-10-18T11:51:01.0000000Z test_checkout ... ok\n"
    "2026-10-18T11:51:02.0000000Z \x1b[31mtest_totals: assertion failed at line 42\x1b[0m\n"
    "2026-10-18T11:51:02.1000000Z   expected 10, got 12\n"
    "2026-10-18T11:51:03.0000000Z ##[error]Process completed with exit code 1.\n"
)
LINT_LOG = (
    "2026-10-18T11:52:00.0000000Z src/Cart.cs(10,5): warning CA1822: Member 'Total' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:00.1000000Z src/Cart.cs(20,5): warning CA1822: Member 'Count' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:00.2000000Z src/Order.cs(7,9): warning CA1822: Member 'Id' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:00.3000000Z src/Order.cs(31,13): warning CS8602: Dereference of a possibly null reference. [src/Shop.csproj]\n"
    "2026-10-18T11:52:01.0000000Z Build succeeded.\n"
    # MSBuild repeats every warning in its end-of-build summary
    "2026-10-18T11:52:01.1000000Z src/Cart.cs(10,5): warning CA1822: Member 'Total' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:01.2000000Z src/Cart.cs(20,5): warning CA1822: Member 'Count' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:01.3000000Z src/Order.cs(7,9): warning CA1822: Member 'Id' does not access instance data and can be marked as static [src/Shop.csproj]\n"
    "2026-10-18T11:52:01.4000000Z src/Order.cs(31,13): warning CS8602: Dereference of a possibly null reference. [src/Shop.csproj]\n"
    "2026-10-18T11:52:01.5000000Z     4 Warning(s)\n"
)


@pytest.fixture
def example_logs():
    return {"build": BUILD_LOG, "test": TEST_LOG, "lint": LINT_LOG}
