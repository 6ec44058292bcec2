"""Fetch single files from hosted repositories through their content APIs (no clone)."""

from __future__ import annotations

from urllib.parse import quote

import httpx
import structlog

from npvm.models import RemoteRepoInfo

log = structlog.get_logger("npvm.remote")

GITHUB_API = "https://api.github.com"
GITLAB_API = "https://gitlab.com/api/v4"


class RepoFileFetcher:
    """Read raw file content from GitHub or GitLab.

    A non-2xx response or a transport error yields ``None``: callers treat a
    missing file as "not present", never as an error.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        github_token: str | None = None,
        gitlab_token: str | None = None,
    ) -> None:
        self._client = client
        self._github_token = github_token
        self._gitlab_token = gitlab_token

    async def fetch(self, repo: RemoteRepoInfo, path: str) -> str | None:
        if repo.platform == "github":
            return await self._fetch_github(repo, path)
        return await self._fetch_gitlab(repo, path)

    async def _fetch_github(self, repo: RemoteRepoInfo, path: str) -> str | None:
        url = f"{GITHUB_API}/repos/{repo.owner}/{repo.repo}/contents/{quote(path)}"
        headers = {"Accept": "application/vnd.github.raw+json"}
        if self._github_token:
            headers["Authorization"] = f"token {self._github_token}"
        # Without a ref GitHub serves the default branch.
        params = {"ref": repo.branch} if repo.branch else None
        return await self._get_text(url, headers=headers, params=params)

    async def _fetch_gitlab(self, repo: RemoteRepoInfo, path: str) -> str | None:
        project = quote(f"{repo.owner}/{repo.repo}", safe="")
        url = f"{GITLAB_API}/projects/{project}/repository/files/{quote(path, safe='')}/raw"
        headers = {}
        if self._gitlab_token:
            headers["PRIVATE-TOKEN"] = self._gitlab_token
        return await self._get_text(url, headers=headers, params={"ref": repo.branch or "HEAD"})

    async def _get_text(
        self,
        url: str,
        *,
        headers: dict[str, str],
        params: dict[str, str] | None,
    ) -> str | None:
        try:
            resp = await self._client.get(url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            log.debug("remote.fetch_error", url=url, error=str(exc))
            return None
        if not resp.is_success:
            log.debug("remote.fetch_miss", url=url, status=resp.status_code)
            return None
        return resp.text
