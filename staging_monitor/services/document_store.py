"""
Document Stores
===============
Where the status document lives. A store holds exactly one document at a
fixed destination and supports compare-and-swap replacement:

    read()                                   -> StoredDocument(content, exists, revision)
    write(content, message, expected_revision) -> PublishResult

write() MUST raise PublishConflict when the destination moved away from
`expected_revision` since it was read, and PublishError for everything
else (reason "unavailable" when retrying can help, "rejected" when not).

Backends:
    GitHubContentsStore — GitHub contents API; revision = blob SHA.
    LocalGitStore       — a git checkout; revision = remote branch head.
"""
import asyncio
import base64
import binascii
import logging
import os
import subprocess
from typing import Optional

import httpx

from staging_monitor.agents.run_fetcher import normalize_repository
from staging_monitor.core.config import (
    COMMIT_AUTHOR_EMAIL,
    COMMIT_AUTHOR_NAME,
    GIT_WORKSPACE,
    GITHUB_API_URL,
    GITHUB_REPOSITORY,
    GITHUB_TOKEN,
    HTTP_TIMEOUT,
    REPORT_BRANCH,
    REPORT_PATH,
)
from staging_monitor.core.errors import REJECTED, UNAVAILABLE, PublishConflict, PublishError
from staging_monitor.models.publish import PublishResult, StoredDocument

logger = logging.getLogger(__name__)


class DocumentStore:
    """Interface shared by all backends."""

    destination: str = ""

    async def read(self) -> StoredDocument:
        raise NotImplementedError

    async def write(
        self, content: str, message: str, expected_revision: Optional[str]
    ) -> PublishResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# GitHub contents API
# ---------------------------------------------------------------------------
class GitHubContentsStore(DocumentStore):
    """
    Stores the document through `GET/PUT /repos/{repo}/contents/{path}`.

    The PUT carries the blob SHA that was read; GitHub answers 409 when the
    file changed in between, which is surfaced as PublishConflict.
    """

    def __init__(
        self,
        github_token: str = GITHUB_TOKEN,
        repository: str = GITHUB_REPOSITORY,
        branch: str = REPORT_BRANCH,
        path: str = REPORT_PATH,
        api_url: str = GITHUB_API_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.repository = normalize_repository(repository)
        self.branch = branch
        self.path = path.lstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.destination = f"github:{self.repository}@{branch}:{self.path}"
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "staging-monitor",
        }
        if github_token:
            self.headers["Authorization"] = f"Bearer {github_token}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    @property
    def _url(self) -> str:
        return f"/repos/{self.repository}/contents/{self.path}"

    @staticmethod
    def _raise_for(response: httpx.Response, action: str) -> None:
        status = response.status_code
        if status == 429 or status >= 500:
            raise PublishError(UNAVAILABLE, f"{action}: HTTP {status}")
        raise PublishError(REJECTED, f"{action}: HTTP {status} {response.text[:200]}")

    async def read(self) -> StoredDocument:
        try:
            async with self._client() as client:
                response = await client.get(self._url, params={"ref": self.branch})
        except httpx.TransportError as exc:
            raise PublishError(UNAVAILABLE, f"read {self.destination}: {exc}") from exc

        if response.status_code == 404:
            return StoredDocument(content="", exists=False, revision=None)
        if response.is_error:
            self._raise_for(response, f"read {self.destination}")

        try:
            data = response.json()
        except ValueError as exc:
            raise PublishError(REJECTED, f"read {self.destination}: non-JSON body") from exc
        if not isinstance(data, dict) or data.get("encoding") != "base64" or "content" not in data:
            encoding = data.get("encoding") if isinstance(data, dict) else None
            raise PublishError(REJECTED, f"read {self.destination}: unsupported encoding {encoding!r}")
        try:
            raw = base64.b64decode(data["content"])
        except (ValueError, binascii.Error) as exc:
            raise PublishError(REJECTED, f"read {self.destination}: invalid base64 content: {exc}") from exc
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError:
            # The revision stays valid, so the next publish can replace it
            logger.warning("%s is not valid UTF-8, reading it with replacement characters", self.destination)
            content = raw.decode("utf-8", errors="replace")
        return StoredDocument(content=content, exists=True, revision=data.get("sha"))

    async def write(
        self, content: str, message: str, expected_revision: Optional[str]
    ) -> PublishResult:
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if expected_revision:
            body["sha"] = expected_revision

        try:
            async with self._client() as client:
                response = await client.put(self._url, json=body)
        except httpx.TransportError as exc:
            raise PublishError(UNAVAILABLE, f"write {self.destination}: {exc}") from exc

        if response.status_code == 409:
            raise PublishConflict(f"{self.destination} changed since revision {expected_revision}")
        if response.status_code == 422 and "sha" in response.text:
            # File appeared (or changed) without us holding its SHA
            raise PublishConflict(f"{self.destination} was created or replaced concurrently")
        if response.is_error:
            self._raise_for(response, f"write {self.destination}")

        data = response.json()
        revision = (data.get("content") or {}).get("sha")
        commit_sha = (data.get("commit") or {}).get("sha", "")
        logger.info("Committed %s (%s)", self.destination, commit_sha[:7])
        return PublishResult(status="published", revision=revision, commit_sha=commit_sha)


# ---------------------------------------------------------------------------
# Local git checkout
# ---------------------------------------------------------------------------
class LocalGitStore(DocumentStore):
    """
    Stores the document by committing to a local checkout and pushing.

    The revision token is the remote branch head. A write first fetches;
    if the remote head moved, or the push is rejected as non-fast-forward,
    the write raises PublishConflict.
    """

    def __init__(
        self,
        workspace: str = GIT_WORKSPACE,
        branch: str = REPORT_BRANCH,
        path: str = REPORT_PATH,
        remote: str = "origin",
        author_name: str = COMMIT_AUTHOR_NAME,
        author_email: str = COMMIT_AUTHOR_EMAIL,
    ) -> None:
        self.workspace = os.path.abspath(workspace)
        self.branch = branch
        self.path = path.lstrip("/")
        self.remote = remote
        self.author_name = author_name
        self.author_email = author_email
        self.destination = f"git:{self.workspace}@{branch}:{self.path}"

    @property
    def _remote_ref(self) -> str:
        return f"{self.remote}/{self.branch}"

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", *args],
            cwd=self.workspace,
            check=check,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

    def _fetch_head(self) -> str:
        try:
            self._git("fetch", self.remote, self.branch)
            return self._git("rev-parse", self._remote_ref).stdout.strip()
        except subprocess.CalledProcessError as e:
            logger.error("git fetch of %s failed: %s", self._remote_ref, e.stderr)
            raise PublishError(UNAVAILABLE, f"fetch {self._remote_ref}: {(e.stderr or '').strip()}") from e

    def _read_sync(self) -> StoredDocument:
        head = self._fetch_head()
        shown = self._git("show", f"{self._remote_ref}:{self.path}", check=False)
        if shown.returncode != 0:
            return StoredDocument(content="", exists=False, revision=head)
        return StoredDocument(content=shown.stdout, exists=True, revision=head)

    def _write_sync(
        self, content: str, message: str, expected_revision: Optional[str]
    ) -> PublishResult:
        abs_path = os.path.normpath(os.path.join(self.workspace, self.path))
        if not abs_path.startswith(self.workspace + os.sep):
            raise PublishError(REJECTED, f"report path escapes the workspace: {self.path}")

        head = self._fetch_head()
        if expected_revision and head != expected_revision:
            raise PublishConflict(f"{self._remote_ref} moved from {expected_revision[:7]} to {head[:7]}")

        try:
            self._git("checkout", "-B", self.branch, self._remote_ref)

            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)

            self._git("add", self.path)

            # returncode 0 = NO staged differences → nothing to commit
            if self._git("diff", "--cached", "--quiet", check=False).returncode == 0:
                logger.info("No staged change for %s, skipping commit", self.path)
                return PublishResult(status="unchanged", revision=head)

            self._git(
                "-c", f"user.name={self.author_name}",
                "-c", f"user.email={self.author_email}",
                "commit", "-m", message,
            )
        except subprocess.CalledProcessError as e:
            logger.error("git commit of %s failed: %s", self.path, e.stderr)
            raise PublishError(REJECTED, f"commit {self.path}: {(e.stderr or '').strip()}") from e

        try:
            self._git("push", self.remote, f"HEAD:{self.branch}")
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").lower()
            if any(marker in stderr for marker in ("rejected", "non-fast-forward", "fetch first")):
                raise PublishConflict(f"push to {self._remote_ref} rejected: {e.stderr.strip()}") from e
            logger.error("git push to %s failed: %s", self._remote_ref, e.stderr)
            raise PublishError(UNAVAILABLE, f"push {self._remote_ref}: {(e.stderr or '').strip()}") from e

        commit_sha = self._git("rev-parse", "HEAD").stdout.strip()
        logger.info("Pushed %s to %s (%s)", self.path, self._remote_ref, commit_sha[:7])
        return PublishResult(status="published", revision=commit_sha, commit_sha=commit_sha)

    async def read(self) -> StoredDocument:
        return await asyncio.to_thread(self._read_sync)

    async def write(
        self, content: str, message: str, expected_revision: Optional[str]
    ) -> PublishResult:
        return await asyncio.to_thread(self._write_sync, content, message, expected_revision)
