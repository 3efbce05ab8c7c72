"""
Run Fetcher
===========
Reads one completed workflow run from the GitHub Actions API: run metadata,
every job (all pages) with its steps, and the raw log of each job that ran.

Contract:
    - The run must be completed, otherwise RunNotComplete.
    - Transient failures (transport errors, timeouts, HTTP 5xx / 429) are
      retried with exponential backoff; exhaustion raises
      FetchError(reason="unavailable").
    - Job pages are drained through the Link header; nothing is truncated.
    - Job logs are downloaded concurrently (bounded by a semaphore) and
      returned in the API's job listing order.
    - A job log that cannot be retrieved is returned as None; the analyzer
      substitutes a placeholder for it.
"""
import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from staging_monitor.core.config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    FETCH_MAX_RETRIES,
    GITHUB_API_URL,
    GITHUB_REPOSITORY,
    GITHUB_TOKEN,
    HTTP_TIMEOUT,
    LOG_FETCH_CONCURRENCY,
)
from staging_monitor.core.constants import (
    JOB_CONCLUSION_MAP,
    JOB_STATUS_MAP,
    RUN_CONCLUSION_MAP,
)
from staging_monitor.core.errors import (
    INVALID_RESPONSE,
    NOT_FOUND,
    REJECTED,
    UNAVAILABLE,
    FetchError,
    RunNotComplete,
)
from staging_monitor.models.run import FetchedRun, JobResult, RunMetadata, StepResult
from staging_monitor.utils.backoff import backoff_delay

logger = logging.getLogger(__name__)

_JOBS_PER_PAGE = 100


def normalize_repository(repository: str) -> str:
    """Accept 'owner/repo' or a GitHub URL and return 'owner/repo'."""
    match = re.search(r"github\.com[:/](.+?)(?:\.git)?/?$", repository)
    if match:
        return match.group(1).rstrip("/")
    return repository.strip().strip("/")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp from API: %r", value)
        return None


def _duration(started: Optional[datetime], completed: Optional[datetime]) -> Optional[float]:
    if started is None or completed is None:
        return None
    return max(0.0, (completed - started).total_seconds())


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class RunFetcher:
    """
    Fetches metadata, jobs and logs of one upstream workflow run.
    """

    def __init__(
        self,
        github_token: str = GITHUB_TOKEN,
        repository: str = GITHUB_REPOSITORY,
        api_url: str = GITHUB_API_URL,
        max_retries: int = FETCH_MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        backoff_max: float = BACKOFF_MAX_SECONDS,
        timeout: float = HTTP_TIMEOUT,
        concurrency: int = LOG_FETCH_CONCURRENCY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.repository = normalize_repository(repository)
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.transport = transport
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
            follow_redirects=True,
            transport=self.transport,
        )

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def fetch(self, run_id: int, run_attempt: Optional[int] = None) -> FetchedRun:
        """
        Fetch a completed run with all of its jobs and job logs.

        Parameters
        ----------
        run_id : int
            Workflow run id.
        run_attempt : int | None
            Attempt to report on; defaults to the run's latest attempt.

        Raises
        ------
        RunNotComplete
            The run has not finished yet.
        FetchError
            The API could not be read (after retries for transient errors).
        """
        if not self.repository:
            raise FetchError(REJECTED, "no repository configured")

        run_url = f"/repos/{self.repository}/actions/runs/{run_id}"
        if run_attempt:
            # The bare run endpoint always describes the latest attempt
            run_url = f"{run_url}/attempts/{run_attempt}"

        async with self._client() as client:
            raw_run = await self._get_json(client, run_url)
            status = raw_run.get("status") or "unknown"
            if status != "completed":
                raise RunNotComplete(run_id, status)

            try:
                metadata = self._parse_run(raw_run)
            except (KeyError, TypeError, ValueError) as exc:
                raise FetchError(INVALID_RESPONSE, f"malformed run payload: {exc}") from exc
            attempt = run_attempt or metadata.run_attempt
            jobs = await self._fetch_jobs(client, run_id, attempt)
            logs = await self._fetch_logs(client, jobs)

        logger.info(
            "Fetched run %d (#%d attempt %d): %d job(s), %d log(s)",
            metadata.run_id, metadata.run_number, attempt, len(jobs),
            sum(1 for text in logs.values() if text is not None),
        )
        return FetchedRun(metadata=metadata, jobs=jobs, logs=logs)

    # -------------------------------------------------------------------
    # HTTP with retry
    # -------------------------------------------------------------------
    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """GET with exponential backoff on transient failures."""
        attempt = 0
        while True:
            try:
                response = await client.get(url, params=params)
            except httpx.TransportError as exc:
                # Includes httpx.TimeoutException
                failure = f"{type(exc).__name__}: {exc}"
            else:
                if not _is_transient(response.status_code):
                    if response.is_error:
                        reason = NOT_FOUND if response.status_code in (404, 410) else REJECTED
                        logger.error("GitHub API %s -> HTTP %d", url, response.status_code)
                        raise FetchError(reason, f"HTTP {response.status_code} for {url}")
                    return response
                failure = f"HTTP {response.status_code}"

            if attempt >= self.max_retries:
                logger.error("Giving up on %s after %d attempt(s): %s", url, attempt + 1, failure)
                raise FetchError(UNAVAILABLE, f"{failure} for {url}")

            delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
            logger.warning(
                "Transient failure on %s (%s), retry %d/%d in %.1fs",
                url, failure, attempt + 1, self.max_retries, delay,
            )
            await asyncio.sleep(delay)
            attempt += 1

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await self._request(client, url, params)
        try:
            data = response.json()
        except ValueError as exc:
            raise FetchError(INVALID_RESPONSE, f"non-JSON body from {url}") from exc
        if not isinstance(data, dict):
            raise FetchError(INVALID_RESPONSE, f"unexpected body from {url}")
        return data

    # -------------------------------------------------------------------
    # Jobs (paginated)
    # -------------------------------------------------------------------
    async def _fetch_jobs(
        self, client: httpx.AsyncClient, run_id: int, attempt: int
    ) -> List[JobResult]:
        url: Optional[str] = f"/repos/{self.repository}/actions/runs/{run_id}/attempts/{attempt}/jobs"
        params: Optional[Dict[str, Any]] = {"per_page": _JOBS_PER_PAGE}
        raw_jobs: List[Dict[str, Any]] = []
        total_count: Optional[int] = None
        pages = 0

        while url:
            response = await self._request(client, url, params)
            try:
                data = response.json()
            except ValueError as exc:
                raise FetchError(INVALID_RESPONSE, f"non-JSON jobs page {pages + 1}") from exc
            pages += 1
            raw_jobs.extend(data.get("jobs") or [])
            if total_count is None:
                total_count = data.get("total_count")

            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        if total_count is not None and len(raw_jobs) < total_count:
            logger.warning(
                "Run %d listed %d job(s) across %d page(s) but reported total_count=%d",
                run_id, len(raw_jobs), pages, total_count,
            )
        try:
            return [self._parse_job(raw) for raw in raw_jobs]
        except (KeyError, TypeError, ValueError) as exc:
            raise FetchError(INVALID_RESPONSE, f"malformed job payload: {exc}") from exc

    # -------------------------------------------------------------------
    # Logs (bounded concurrency, listing order preserved)
    # -------------------------------------------------------------------
    async def _fetch_logs(
        self, client: httpx.AsyncClient, jobs: List[JobResult]
    ) -> Dict[int, Optional[str]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch_one(job: JobResult) -> Optional[str]:
            if job.conclusion == "skipped" or job.status != "completed":
                return None
            async with semaphore:
                try:
                    response = await self._request(
                        client, f"/repos/{self.repository}/actions/jobs/{job.job_id}/logs"
                    )
                except FetchError as exc:
                    logger.warning("Log for job %r unavailable: %s", job.name, exc)
                    return None
                return response.text

        # gather() returns results in argument order, not completion order
        texts = await asyncio.gather(*(fetch_one(job) for job in jobs))
        return {job.job_id: text for job, text in zip(jobs, texts)}

    # -------------------------------------------------------------------
    # Payload parsing
    # -------------------------------------------------------------------
    @staticmethod
    def _parse_run(raw: Dict[str, Any]) -> RunMetadata:
        head_commit = raw.get("head_commit") or {}
        return RunMetadata(
            run_id=int(raw["id"]),
            run_number=int(raw.get("run_number") or 0),
            run_attempt=int(raw.get("run_attempt") or 1),
            workflow_name=raw.get("name") or "",
            branch=raw.get("head_branch") or "",
            head_sha=raw.get("head_sha") or "",
            head_commit_message=head_commit.get("message") or "",
            html_url=raw.get("html_url") or "",
            started_at=_parse_timestamp(raw.get("run_started_at") or raw.get("created_at")),
            completed_at=_parse_timestamp(raw.get("updated_at")),
            conclusion=RUN_CONCLUSION_MAP.get(raw.get("conclusion") or "", "unknown"),
        )

    @staticmethod
    def _parse_job(raw: Dict[str, Any]) -> JobResult:
        started = _parse_timestamp(raw.get("started_at"))
        completed = _parse_timestamp(raw.get("completed_at"))
        steps = [
            StepResult(
                number=int(step.get("number") or index),
                name=step.get("name") or f"Step {index}",
                conclusion=JOB_CONCLUSION_MAP.get(step.get("conclusion") or ""),
            )
            for index, step in enumerate(raw.get("steps") or [], start=1)
        ]
        return JobResult(
            job_id=int(raw["id"]),
            name=raw.get("name") or f"job-{raw['id']}",
            status=JOB_STATUS_MAP.get(raw.get("status") or "", "queued"),
            conclusion=JOB_CONCLUSION_MAP.get(raw.get("conclusion") or ""),
            started_at=started,
            completed_at=completed,
            duration_seconds=_duration(started, completed),
            html_url=raw.get("html_url") or "",
            steps=steps,
        )
