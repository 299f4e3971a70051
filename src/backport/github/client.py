"""Thin async client for the GitHub REST (v3) and GraphQL (v4) APIs."""

from __future__ import annotations

from typing import Any

import httpx

from backport.core.config import GithubConfig
from backport.core.log import Logger

USER_AGENT = "backport"

DEFAULT_BRANCH_QUERY = """
query DefaultBranch($repoOwner: String!, $repoName: String!) {
  repository(owner: $repoOwner, name: $repoName) {
    defaultBranchRef {
      name
    }
  }
}
"""


class GithubApiError(RuntimeError):
    """A GitHub API request failed.

    Not a HandledError: the raw API message is not something the user
    can act on without the log file.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[dict] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []

    def has_message(self, text: str) -> bool:
        """True when text occurs in the message or any error entry."""
        if text in str(self):
            return True
        return any(text in str(error.get("message", "")) for error in self.errors)


class GithubClient:
    """Authenticated GitHub API client.

    One httpx.AsyncClient is shared by every request of a run so
    concurrent calls reuse connections. Use as an async context manager,
    or call aclose() when done.
    """

    def __init__(
        self,
        config: GithubConfig,
        logger: Logger,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.logger = logger
        logger.redact(config.access_token)

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        if config.access_token:
            headers["Authorization"] = f"Bearer {config.access_token}"

        self._client = httpx.AsyncClient(
            headers=headers, timeout=60.0, transport=transport
        )

    async def __aenter__(self) -> GithubClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):  # noqa: U100
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a REST request and return the decoded JSON body.

        Raises:
            GithubApiError: On any 4xx/5xx response
        """
        url = self.config.api_base_url_v3.rstrip("/") + path
        self.logger.debug("GitHub REST request", method=method, path=path)
        response = await self._client.request(
            method, url, json=json, params=params
        )

        if response.status_code >= 400:
            body = _json_or_none(response) or {}
            message = body.get("message", response.text)
            errors = body.get("errors") or []
            self.logger.debug(
                "GitHub REST request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text,
            )
            raise GithubApiError(
                f"{method} {path} failed ({response.status_code}): {message}",
                status_code=response.status_code,
                errors=[e for e in errors if isinstance(e, dict)],
            )

        return _json_or_none(response)

    async def get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def graphql(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict:
        """Run a GraphQL query and return its `data` member.

        Raises:
            GithubApiError: On an HTTP error or when the response
                carries `errors`
        """
        self.logger.debug("GitHub GraphQL request", variables=str(variables))
        response = await self._client.post(
            self.config.api_base_url_v4,
            json={"query": query, "variables": variables or {}},
        )

        if response.status_code >= 400:
            raise GithubApiError(
                f"GraphQL request failed ({response.status_code}): "
                f"{response.text}",
                status_code=response.status_code,
            )

        body = response.json()
        if body.get("errors"):
            errors = body["errors"]
            messages = "; ".join(e.get("message", "") for e in errors)
            raise GithubApiError(
                f"{messages} (Unhandled Github v4 error)",
                status_code=response.status_code,
                errors=errors,
            )

        return body.get("data") or {}

    async def fetch_authenticated_username(self) -> str:
        data = await self.graphql("query AuthenticatedUser { viewer { login } }")
        return data["viewer"]["login"]

    async def fetch_default_branch(self, owner: str, name: str) -> str:
        """Name of the branch a repository checks out by default."""
        data = await self.graphql(DEFAULT_BRANCH_QUERY, {
            "repoOwner": owner,
            "repoName": name,
        })
        repository = data.get("repository") or {}
        branch = repository.get("defaultBranchRef") or {}
        if not branch.get("name"):
            raise GithubApiError(
                f"Could not find the default branch of {owner}/{name}"
            )
        return branch["name"]


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


__all__ = ["GithubApiError", "GithubClient"]
