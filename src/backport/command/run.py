"""Run command - backport commits to one or more target branches."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING

import click
from pydantic import BaseModel, Field

from backport.core.errors import ConfigurationError, HandledError
from backport.core.log import Logger
from backport.core.models import (
    BackportResponse,
    Commit,
    TargetPullRequestState,
)
from backport.git.gateway import GitGateway
from backport.git.naming import first_line, short_sha
from backport.github.client import GithubClient
from backport.github.commits import CommitSource, GithubCommitSource
from backport.github.pulls import GithubPullRequestPublisher
from backport.sequencer import run_sequentially
from backport.workflow.deps import BackportDeps, load_auto_fix_hook
from backport.workflow.graph import create_operation, run_backport_operation

if TYPE_CHECKING:
    from backport.core.config import Config, State

# Expected pull requests in these states still need a backport
OUTSTANDING_STATES = (
    TargetPullRequestState.MISSING,
    TargetPullRequestState.CLOSED,
)


def get_target_branches(config: Config, commits: list[Commit]) -> list[str]:
    """Configured target branches, else every branch where one of the
    commits is expected but not yet backported.

    Raises:
        HandledError: If there is no branch to backport to
    """
    if config.backport.target_branches:
        return list(config.backport.target_branches)

    branches: list[str] = []
    for commit in commits:
        for expectation in commit.expected_target_pull_requests:
            if (
                expectation.state in OUTSTANDING_STATES
                and expectation.branch not in branches
            ):
                branches.append(expectation.branch)

    if not branches:
        raise HandledError(
            "There are no branches to backport to. Set "
            "--config.backport.target_branches or a branch_label_mapping "
            "that matches the source pull request labels."
        )
    return branches


def format_commit_choice(index: int, commit: Commit) -> str:
    ref = f"#{commit.pull_number}" if commit.pull_number else short_sha(commit.sha)
    return f"{index}. {first_line(commit.original_message)} ({ref})"


def parse_selection(answer: str, count: int) -> list[int]:
    """Turn "1,3" into zero-based indexes, ignoring out of range values.

    Raises:
        ValueError: If an entry is not a number
    """
    indexes = []
    for part in answer.split(","):
        part = part.strip()
        if not part:
            continue
        index = int(part) - 1
        if 0 <= index < count and index not in indexes:
            indexes.append(index)
    return indexes


async def select_commits(
    commits: list[Commit], ci: bool, logger: Logger
) -> list[Commit]:
    """Let the user choose which of the fetched commits to backport.

    In CI mode there is nobody to ask, and the newest commit is used.
    """
    if ci or len(commits) == 1:
        return commits[:1]

    logger.echo("Select commits to backport:", bold=True)
    for index, commit in enumerate(commits, start=1):
        logger.echo(format_commit_choice(index, commit))

    answer = await asyncio.to_thread(
        click.prompt, "Commits (comma separated)", default="1"
    )
    try:
        indexes = parse_selection(answer, len(commits))
    except ValueError as e:
        raise ConfigurationError(f'Invalid selection "{answer}"') from e
    if not indexes:
        raise ConfigurationError("No commits selected")

    # Oldest first so they apply in history order
    return sorted(
        (commits[i] for i in indexes), key=lambda c: c.committed_date
    )


async def fetch_commits(
    config: Config, commit_source: CommitSource, logger: Logger
) -> list[Commit]:
    backport = config.backport
    if backport.pull_number is not None:
        return [await commit_source.fetch_commit_by_pull_number(
            backport.pull_number
        )]
    if backport.sha:
        return [await commit_source.fetch_commit_by_sha(backport.sha)]

    commits = await commit_source.fetch_commits_by_author(
        author=backport.author,
        commit_paths=backport.commit_paths,
        max_number=backport.max_number,
        source_branch=backport.source_branch,
    )
    return await select_commits(commits, backport.ci, logger)


async def resolve_github_defaults(
    config: Config, client: GithubClient, logger: Logger
) -> None:
    """Fill in the username and source branch when not configured."""
    github = config.github
    if not github.authenticated_username:
        github.authenticated_username = (
            await client.fetch_authenticated_username()
        )
    if not config.backport.source_branch:
        config.backport.source_branch = await client.fetch_default_branch(
            github.repo_owner, github.repo_name
        )
    logger.info(
        "Authenticated",
        username=github.authenticated_username,
        source_branch=config.backport.source_branch,
    )


class RunCommand(BaseModel):
    """Cherry-pick commits onto target branches and open pull requests.

    Commits are chosen with --config.backport.pull_number,
    --config.backport.sha, or interactively from the latest commits
    (optionally --config.backport.author and
    --config.backport.commit_paths).
    """

    clone_progress_step: int = Field(
        default=10,
        description="Print clone progress every N percent",
    )

    async def run_workflow(self, state: State) -> int:
        """Run the backport.

        Returns:
            Exit code: 0 when every target branch succeeded, 1 otherwise
        """
        config = state.config
        logger = config.logger
        logger.redact(config.github.access_token)
        logger.setup(config.log_root, config.run_name)

        try:
            response = await self.backport(state)
        except HandledError as e:
            logger.info("Backport failed", kind=e.kind, error=e.message)
            logger.echo(e.message, fg="red")
            response = BackportResponse(
                status="failure", error_message=e.message
            )
        except Exception as e:
            logger.error("Unhandled error", error=str(e), _exc_info=e)
            logger.echo(f"An unhandled error occurred: {e}", fg="red")
            if logger.log_file:
                logger.echo(
                    f"Please refer to the logs for more detailed output: "
                    f"{logger.log_file}"
                )
            return 1

        state.runtime.run.results = response.results
        failed = response.status == "failure" or any(
            result.status != "success" for result in response.results
        )
        return 1 if failed else 0

    async def backport(self, state: State) -> BackportResponse:
        config = state.config
        logger = config.logger

        if not config.github.access_token:
            raise ConfigurationError(
                "Please provide a GitHub access token with "
                "--config.github.access_token or "
                "BACKPORT_CONFIG__GITHUB__ACCESS_TOKEN"
            )

        async with GithubClient(config.github, logger) as client:
            publisher = GithubPullRequestPublisher(client, config, logger)
            commits: list[Commit] = []
            try:
                await resolve_github_defaults(config, client, logger)

                commit_source = GithubCommitSource(client, config, logger)
                commits = await fetch_commits(config, commit_source, logger)
                target_branches = get_target_branches(config, commits)
                state.runtime.run.commits = commits
                state.runtime.run.target_branches = target_branches

                gateway = GitGateway(config, logger)
                await gateway.setup_repo(self._clone_progress(logger))

                deps = BackportDeps(
                    config=config,
                    logger=logger,
                    gateway=gateway,
                    commit_source=commit_source,
                    publisher=publisher,
                    auto_fix=load_auto_fix_hook(config),
                )
                results = await run_sequentially(
                    commits,
                    target_branches,
                    partial(create_operation, config),
                    partial(run_backport_operation, deps=deps),
                    logger,
                )
            except Exception as e:
                # A failed run is only commented on in CI mode
                if config.backport.ci:
                    await publisher.create_status_comment(BackportResponse(
                        status="failure",
                        commits=commits,
                        error_message=str(e),
                    ))
                raise

            response = BackportResponse(
                status="success", commits=commits, results=results
            )
            await publisher.create_status_comment(response)

        return response

    def _clone_progress(self, logger: Logger):
        step = max(self.clone_progress_step, 1)
        reported: set[int] = set()

        def report(percent: str) -> None:
            bucket = int(percent) // step
            if bucket not in reported:
                reported.add(bucket)
                logger.echo(f"Cloning repository: {percent}%")

        return report


__all__ = [
    "RunCommand",
    "fetch_commits",
    "get_target_branches",
    "parse_selection",
    "resolve_github_defaults",
    "select_commits",
]
