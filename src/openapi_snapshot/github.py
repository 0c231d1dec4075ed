# src/openapi_snapshot/github.py
from __future__ import annotations

from typing import Any

import httpx

from openapi_snapshot.errors import ReportingError

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


class GitHubClient:
    """
    The three issue-comment calls the reporter needs, nothing else.

    Pass `transport` to run against an in-memory transport in tests.
    """

    def __init__(
        self,
        token: str,
        repository: str,
        *,
        api_url: str = GITHUB_API_URL,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ):
        owner, _, repo = repository.partition("/")
        if not owner or not repo:
            raise ReportingError(f"Cannot determine owner/repo from {repository!r}.")
        self.owner = owner
        self.repo = repo
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise ReportingError(f"GitHub API request failed: {e}") from e
        if resp.status_code >= 400:
            raise ReportingError(
                f"GitHub API {method} {resp.request.url.path} failed with status {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    def list_issue_comments(self, issue_number: int) -> list[dict[str, Any]]:
        comments: list[dict[str, Any]] = []
        url: str | None = f"/repos/{self.owner}/{self.repo}/issues/{issue_number}/comments"
        params: dict[str, Any] | None = {"per_page": 100}
        while url:
            resp = self._request("GET", url, params=params)
            page = resp.json()
            if isinstance(page, list):
                comments.extend(c for c in page if isinstance(c, dict))
            # The next-page link already carries the query string.
            url = resp.links.get("next", {}).get("url")
            params = None
        return comments

    def create_issue_comment(self, issue_number: int, body: str) -> dict[str, Any]:
        resp = self._request(
            "POST",
            f"/repos/{self.owner}/{self.repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return resp.json()

    def update_issue_comment(self, comment_id: int, body: str) -> dict[str, Any]:
        resp = self._request(
            "PATCH",
            f"/repos/{self.owner}/{self.repo}/issues/comments/{comment_id}",
            json={"body": body},
        )
        return resp.json()
