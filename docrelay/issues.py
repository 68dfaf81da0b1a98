"""
DOCRELAY ← GitHub Issues

Files a single issue under the configured organization.
"""

from __future__ import annotations

import httpx
from loguru import logger

from docrelay.config_loader import GitHubConfig


class IssueFilingError(Exception):
    pass


class IssueFiler:
    """Creates tracked work items in GitHub."""

    def __init__(
        self,
        token: str,
        config: GitHubConfig,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.org = config.org
        self._http = httpx.Client(
            base_url=config.api_base,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            },
            timeout=timeout,
            transport=transport,
        )

    def file(self, repository: str, title: str, body: str) -> str:
        """Create an issue and return its html_url.

        Raises:
            IssueFilingError: On a non-2xx response, with the response body as detail.
        """
        response = self._http.post(
            f"/repos/{self.org}/{repository}/issues",
            json={"title": title, "body": body},
        )
        if not response.is_success:
            raise IssueFilingError(f"GitHub API error: {response.text}")

        url = response.json()["html_url"]
        logger.info(f"[GITHUB] Issue created in {self.org}/{repository}: {url}")
        return url

    def close(self) -> None:
        self._http.close()
