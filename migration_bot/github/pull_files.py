"""GitHub REST access to the files changed by a pull request."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import requests

logger = logging.getLogger(__name__)


class PullRequestFilesClient:
    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        per_page: int = 100,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.per_page = max(1, int(per_page))

    def iter_changed_files(self, owner: str, repo: str, number: int) -> Iterator[str]:
        """Yield file names page by page until GitHub returns an empty page."""

        page = 0
        while True:
            page += 1
            rows = self._request(
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                params={"per_page": str(self.per_page), "page": str(page)},
            )
            if not isinstance(rows, list) or not rows:
                return
            for row in rows:
                if isinstance(row, dict) and row.get("filename"):
                    yield str(row["filename"])

    def list_changed_files(self, owner: str, repo: str, number: int) -> list[str]:
        files = list(self.iter_changed_files(owner, repo, number))
        logger.debug("All changed files in %s/%s#%s: %s", owner, repo, number, files)
        return files

    def _request(self, path: str, params: dict[str, str] | None = None) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = self.session.request(
            method="GET",
            url=f"{self.base_url}{path}",
            headers=headers,
            params=params,
            timeout=15,
        )
        response.raise_for_status()
        if not response.content:
            return []
        return response.json()
