"""Backport pull requests: titles, bodies and the REST calls that open
and decorate them."""

from __future__ import annotations

from typing import Protocol

from backport.core.config import Config
from backport.core.log import Logger
from backport.core.models import (
    BackportResponse,
    Commit,
    PullRequestPayload,
    TargetPullRequest,
)
from backport.git.naming import first_line
from backport.github.client import GithubApiError, GithubClient

DEFAULT_TITLE = "[{targetBranch}] {commitMessages}"
PULL_REQUEST_EXISTS = "A pull request already exists"

ENABLE_AUTO_MERGE_MUTATION = """
mutation EnablePullRequestAutoMerge(
  $pullRequestId: ID!
  $mergeMethod: PullRequestMergeMethod!
) {
  enablePullRequestAutoMerge(
    input: { pullRequestId: $pullRequestId, mergeMethod: $mergeMethod }
  ) {
    pullRequest { number }
  }
}
"""


class PullRequestPublisher(Protocol):
    """Where backport pull requests are opened."""

    async def create(self, payload: PullRequestPayload) -> TargetPullRequest:
        ...

    async def add_labels(self, pull_number: int, labels: list[str]) -> None:
        ...

    async def add_assignees(
        self, pull_number: int, assignees: list[str]
    ) -> None:
        ...

    async def add_reviewers(
        self, pull_number: int, reviewers: list[str]
    ) -> None:
        ...

    async def enable_auto_merge(self, pull_number: int) -> None:
        ...

    async def create_status_comment(self, response: BackportResponse) -> None:
        ...


def get_title(config: Config, commits: list[Commit], target_branch: str) -> str:
    """Pull request title from the pr_title template.

    {targetBranch} is the target branch; {commitMessages} the first
    lines of all commit messages joined with " | ".
    """
    commit_messages = " | ".join(
        first_line(commit.original_message) for commit in commits
    )
    template = config.backport.pr_title or DEFAULT_TITLE
    return (
        template
        .replace("{targetBranch}", target_branch)
        .replace("{commitMessages}", commit_messages)
    )


def get_pull_request_body(
    config: Config, commits: list[Commit], target_branch: str
) -> str:
    commit_messages = "\n".join(
        f" - {first_line(commit.original_message)}" for commit in commits
    )
    default_description = (
        f"# Backport\n\n"
        f"This is an automatic backport to `{target_branch}` of:\n"
        f"{commit_messages}"
    )
    template = config.backport.pr_description or "{defaultPrDescription}"
    return (
        template
        .replace("{defaultPrDescription}", default_description)
        .replace("{commitMessages}", commit_messages)
    )


def _table_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def get_status_comment_body(response: BackportResponse, pull_number: int) -> str:
    """Markdown summary of a run, posted on the source pull request.

    A run that failed as a whole gets its error message; otherwise
    there is one table row per target branch. Any failure adds the
    command that retries the backport by hand.
    """
    manual = (
        f"\n\n### Manual backport\n"
        f"To create the backport manually run:\n"
        f"```\n"
        f"backport run --config.backport.pull_number {pull_number}\n"
        f"```"
    )

    if response.status == "failure":
        return (
            f"## \N{BROKEN HEART} Backport failed\n\n"
            f"{response.error_message or ''}{manual}"
        )

    failed = [r for r in response.results if r.status != "success"]
    if not failed:
        header = "## \N{GREEN HEART} All backports created successfully"
    elif len(failed) == len(response.results):
        header = "## \N{BROKEN HEART} All backports failed"
    else:
        header = "## \N{BROKEN HEART} Some backports could not be created"

    rows = []
    for result in response.results:
        if result.status == "success":
            rows.append(
                f"| \N{WHITE HEAVY CHECK MARK} | {result.target_branch} "
                f"| [#{result.pull_request_number}]({result.pull_request_url}) |"
            )
        else:
            rows.append(
                f"| \N{CROSS MARK} | {result.target_branch} "
                f"| {_table_cell(result.error_message or '')} |"
            )

    body = (
        f"{header}\n\n"
        f"| Status | Branch | Result |\n"
        f"|:------:|:------:|:------|\n"
        + "\n".join(rows)
    )
    return body + manual if failed else body


class GithubPullRequestPublisher:
    """PullRequestPublisher backed by the REST and GraphQL APIs.

    Only create() fails the backport. Labels, assignees, reviewers,
    auto-merge and status comments are decorations: a failure is logged
    and reported on the console, and the run goes on.
    """

    def __init__(self, client: GithubClient, config: Config, logger: Logger):
        self.client = client
        self.config = config
        self.logger = logger

    @property
    def _repo_path(self) -> str:
        github = self.config.github
        return f"/repos/{github.repo_owner}/{github.repo_name}"

    async def create(self, payload: PullRequestPayload) -> TargetPullRequest:
        """Open the pull request, or reuse the open one for the same head.

        Returns:
            TargetPullRequest with did_update=True when a pull request
            for the branch already existed (the force push updated it)
        """
        self.logger.info(
            "Creating pull request", head=payload.head, base=payload.base
        )
        try:
            data = await self.client.post(
                f"/repos/{payload.owner}/{payload.repo}/pulls",
                json={
                    "title": payload.title,
                    "body": payload.body,
                    "head": payload.head,
                    "base": payload.base,
                },
            )
        except GithubApiError as e:
            if e.status_code == 422 and e.has_message(PULL_REQUEST_EXISTS):
                return await self._find_existing(payload)
            raise

        return TargetPullRequest(url=data["html_url"], number=data["number"])

    async def _find_existing(
        self, payload: PullRequestPayload
    ) -> TargetPullRequest:
        pulls = await self.client.get(
            f"/repos/{payload.owner}/{payload.repo}/pulls",
            params={"head": payload.head, "state": "open"},
        )
        if not pulls:
            raise GithubApiError(
                f"A pull request for {payload.head} exists but could not "
                f"be found"
            )
        existing = pulls[0]
        self.logger.info(
            "Pull request already exists", number=existing["number"]
        )
        return TargetPullRequest(
            url=existing["html_url"],
            number=existing["number"],
            did_update=True,
        )

    async def _decorate(self, what: str, pull_number: int, coro) -> None:
        try:
            await coro
        except GithubApiError as e:
            self.logger.warn(
                f"Could not add {what}",
                pull_number=pull_number,
                error=str(e),
            )
            self.logger.echo(
                f"Could not add {what} to #{pull_number}: {e}", fg="yellow"
            )

    async def add_labels(self, pull_number: int, labels: list[str]) -> None:
        await self._decorate("labels", pull_number, self.client.post(
            f"{self._repo_path}/issues/{pull_number}/labels",
            json={"labels": labels},
        ))

    async def add_assignees(
        self, pull_number: int, assignees: list[str]
    ) -> None:
        await self._decorate("assignees", pull_number, self.client.post(
            f"{self._repo_path}/issues/{pull_number}/assignees",
            json={"assignees": assignees},
        ))

    async def add_reviewers(
        self, pull_number: int, reviewers: list[str]
    ) -> None:
        await self._decorate("reviewers", pull_number, self.client.post(
            f"{self._repo_path}/pulls/{pull_number}/requested_reviewers",
            json={"reviewers": reviewers},
        ))

    async def enable_auto_merge(self, pull_number: int) -> None:
        await self._decorate(
            "auto-merge", pull_number, self._enable_auto_merge(pull_number)
        )

    async def create_status_comment(self, response: BackportResponse) -> None:
        """Comment the outcome on every source pull request of the run."""
        if not self.config.backport.publish_status_comment:
            return

        pull_numbers = dict.fromkeys(
            commit.pull_number for commit in response.commits
            if commit.pull_number is not None
        )
        for pull_number in pull_numbers:
            body = get_status_comment_body(response, pull_number)
            await self._decorate("status comment", pull_number, self.client.post(
                f"{self._repo_path}/issues/{pull_number}/comments",
                json={"body": body},
            ))

    async def _enable_auto_merge(self, pull_number: int) -> None:
        pull_request = await self.client.get(
            f"{self._repo_path}/pulls/{pull_number}"
        )
        await self.client.graphql(
            ENABLE_AUTO_MERGE_MUTATION,
            {
                "pullRequestId": pull_request["node_id"],
                "mergeMethod": self.config.backport.auto_merge_method.upper(),
            },
        )


__all__ = [
    "GithubPullRequestPublisher",
    "PullRequestPublisher",
    "get_pull_request_body",
    "get_status_comment_body",
    "get_title",
]
