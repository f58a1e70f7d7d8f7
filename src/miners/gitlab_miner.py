"""
GitLab Repository Data Mining Module.

This module pulls commits, commit comments, branches and members from the
GitLab REST API (v4). Each operation has its own rate limiter and retries
transient failures a bounded number of times; credential failures are never
retried.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlsplit

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings, logger
from errors import ProjectNotFound, RemoteUnavailable, SyncError, Unauthorized
from miners.base import RepositoryMiner
from miners.models import GitLabBranch, GitLabComment, GitLabCommit, GitLabMember
from miners.rate_limit import RateLimiter
from storage.models import Project

OPERATIONS = ("commits", "comments", "branches", "members")


def normalize_base_url(gitlab_url: str) -> str:
    """Reduce a configured GitLab URL to ``scheme://host``.

    Args:
        gitlab_url (str): URL as configured, possibly without a scheme or with a path.

    Returns:
        str: Normalized base URL.
    """
    url = gitlab_url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        url = "http://" + url
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def project_ref(project: Project) -> str:
    """Numeric project id when known, otherwise the URL-encoded path."""
    if project.gitlab_project_id is not None:
        return str(project.gitlab_project_id)
    return quote(project.name, safe="")


class GitLabMiner(RepositoryMiner):
    """
    GitLabMiner is responsible for mining review data from GitLab projects.
    It maps API responses onto Pydantic models and transport failures onto
    the sync error taxonomy.
    """

    def __init__(
        self,
        timeout: float = 10,
        page_size: int = 100,
        max_requests: int = 300,
        rate_period: float = 60,
        retry_attempts: int = 3,
        retry_wait: float = 1,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the GitLab miner.

        Args:
            timeout (float): Timeout for a single request in seconds.
            page_size (int): Items requested per page.
            max_requests (int): Requests allowed per rate period, per operation.
            rate_period (float): Rate limit window in seconds.
            retry_attempts (int): Attempts for transient failures.
            retry_wait (float): Base of the exponential wait between attempts.
            client (Optional[httpx.AsyncClient]): Preconfigured HTTP client.
        """
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.page_size = page_size
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait
        self.limiters: Dict[str, RateLimiter] = {
            operation: RateLimiter(max_requests, rate_period) for operation in OPERATIONS
        }

    @classmethod
    def from_settings(cls) -> "GitLabMiner":
        return cls(
            timeout=settings.gitlab_timeout,
            page_size=settings.gitlab_page_size,
            max_requests=settings.gitlab_max_requests,
            rate_period=settings.gitlab_rate_period,
            retry_attempts=settings.gitlab_retry_attempts,
        )

    def _url(self, project: Project, path: str) -> str:
        base = normalize_base_url(project.gitlab_url)
        return f"{base}/api/v4/projects/{project_ref(project)}{path}"

    async def _send(
        self, url: str, headers: Dict[str, str], params: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        try:
            response = await self.client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"GitLab request timed out: {url}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailable(f"GitLab unreachable: {url}: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise Unauthorized(
                f"GitLab rejected the access token ({status})", status_code=status
            )
        if status == 404:
            raise ProjectNotFound(f"GitLab resource not found: {url}", status_code=status)
        if status >= 500:
            raise RemoteUnavailable(f"GitLab server error ({status})", status_code=status)
        if status >= 400:
            raise SyncError(f"GitLab request failed ({status})", status_code=status)
        return response

    async def _request(
        self,
        project: Project,
        operation: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send one rate-limited GET, retrying transient failures."""
        url = self._url(project, path)
        headers = {
            "Authorization": f"Bearer {project.access_token.get_secret_value()}",
            "Accept": "application/json",
        }
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(
                multiplier=self.retry_wait, min=self.retry_wait, max=self.retry_wait * 10
            ),
            retry=retry_if_exception_type(RemoteUnavailable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self.limiters[operation].acquire()
                response = await self._send(url, headers, params)
        return response

    @staticmethod
    def _json_list(response: httpx.Response) -> List[Any]:
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            # An HTML page here usually means the GitLab URL points somewhere else
            raise SyncError(
                f"Expected JSON from GitLab, got {content_type or 'no content type'}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise SyncError(f"Invalid JSON from GitLab: {e}") from e
        if not isinstance(data, list):
            raise SyncError(f"Expected a list from GitLab, got {type(data).__name__}")
        return data

    async def _get_paginated(
        self,
        project: Project,
        operation: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Fetch pages until the last page or ``limit`` items.

        Args:
            project (Project): Project the endpoint belongs to.
            operation (str): Rate limiter to use.
            path (str): Path below the project endpoint.
            params (Optional[Dict[str, Any]]): Query parameters.
            limit (Optional[int]): Maximum number of items to return.

        Returns:
            List[Any]: Raw items from all fetched pages.
        """
        per_page = min(self.page_size, limit) if limit else self.page_size
        query = dict(params or {})
        query["per_page"] = per_page
        results: List[Any] = []
        page = 1

        while True:
            query["page"] = page
            response = await self._request(project, operation, path, query)
            data = self._json_list(response)
            results.extend(data)

            if limit and len(results) >= limit:
                return results[:limit]

            next_page = response.headers.get("x-next-page")
            if next_page is not None:
                if not next_page.strip():
                    break
                try:
                    page = int(next_page)
                except ValueError:
                    raise SyncError(f"Invalid x-next-page header: {next_page!r}") from None
            elif len(data) < per_page:
                break
            else:
                page += 1

        return results

    @staticmethod
    def _parse(model: type, items: List[Any]) -> List[BaseModel]:
        try:
            return TypeAdapter(List[model]).validate_python(items)
        except ValidationError as e:
            raise SyncError(f"Unexpected {model.__name__} payload: {e}") from e

    async def fetch_commits(
        self, project: Project, since: datetime, ref_name: Optional[str] = None
    ) -> List[GitLabCommit]:
        params: Dict[str, Any] = {"since": since.isoformat()}
        if ref_name:
            params["ref_name"] = ref_name
        items = await self._get_paginated(
            project, "commits", "/repository/commits", params, limit=project.max_commits
        )
        commits = self._parse(GitLabCommit, items)
        logger.debug(
            {
                "message": "Fetched commits",
                "project": project.name,
                "since": since.isoformat(),
                "ref_name": ref_name,
                "count": len(commits),
            }
        )
        return commits

    async def fetch_comments(self, project: Project, commit_id: str) -> List[GitLabComment]:
        items = await self._get_paginated(
            project, "comments", f"/repository/commits/{commit_id}/comments"
        )
        return self._parse(GitLabComment, items)

    async def fetch_branches(self, project: Project) -> List[GitLabBranch]:
        items = await self._get_paginated(project, "branches", "/repository/branches")
        return self._parse(GitLabBranch, items)

    async def fetch_members(self, project: Project) -> List[GitLabMember]:
        items = await self._get_paginated(project, "members", "/members/all")
        return self._parse(GitLabMember, items)

    async def close(self) -> None:
        await self.client.aclose()
