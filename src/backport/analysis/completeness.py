"""Earlier commits that should have reached a branch before this one.

When a cherry-pick conflicts, the usual cause is an older commit that
touched the same files and was never backported. Listing those commits
gives the user a better fix than resolving the conflict by hand.
"""

from __future__ import annotations

import asyncio

from backport.core.errors import NoCommitsFoundError
from backport.core.log import Logger
from backport.core.models import (
    Commit,
    CommitWithoutBackport,
    TargetPullRequestExpectation,
    TargetPullRequestState,
)
from backport.git.gateway import GitGateway
from backport.git.naming import first_line
from backport.github.commits import CommitSource

MAX_CANDIDATES = 50


def format_commit_without_backport(
    commit: Commit, expectation: TargetPullRequestExpectation
) -> str:
    """One hint line, plus the most useful URL on an indented line.

    Examples:
         - Add emoji (#5) (backport pending)
           https://github.com/foo/bar/pull/6
         - Add emoji (#5) (backport missing)
           https://github.com/foo/bar/pull/5
    """
    is_pending = expectation.state == TargetPullRequestState.OPEN
    status = "backport pending" if is_pending else "backport missing"
    line = f" - {first_line(commit.original_message)} ({status})"

    url = expectation.url if is_pending else commit.pull_url
    if url:
        line += f"\n   {url}"
    return line


async def get_commits_without_backports(
    commit_source: CommitSource,
    gateway: GitGateway,
    commit: Commit,
    target_branch: str,
    conflicting_files: list[str],
    logger: Logger | None = None,
) -> list[CommitWithoutBackport]:
    """Older commits on the same files that are not merged to
    target_branch.

    Args:
        commit_source: Where the candidate commits are fetched from
        gateway: Used to skip candidates already in the working branch
        commit: The commit whose cherry-pick conflicted
        target_branch: Branch being backported to
        conflicting_files: Repository-relative paths of the conflicts

    Returns:
        Formatted hints, newest candidate first
    """
    try:
        candidates = await commit_source.fetch_commits_by_author(
            author=None,
            commit_paths=conflicting_files,
            max_number=MAX_CANDIDATES,
            source_branch=commit.source_branch,
        )
    except NoCommitsFoundError:
        return []

    pending = []
    for candidate in candidates:
        # ISO 8601 strings from one API sort chronologically
        if not candidate.committed_date < commit.committed_date:
            continue
        expectation = candidate.expectation_for(target_branch)
        if expectation is None:
            continue
        if expectation.state == TargetPullRequestState.MERGED:
            continue
        pending.append((candidate, expectation))

    # Read-only ancestry checks, safe to run side by side
    in_branch = await asyncio.gather(*(
        gateway.get_is_commit_in_branch(candidate.sha)
        for candidate, _ in pending
    ))

    results = [
        CommitWithoutBackport(
            commit=candidate,
            formatted=format_commit_without_backport(candidate, expectation),
        )
        for (candidate, expectation), is_ancestor in zip(pending, in_branch)
        if not is_ancestor
    ]

    if logger:
        logger.debug(
            "Commits without backports",
            target_branch=target_branch,
            candidates=len(candidates),
            missing=len(results),
        )
    return results


__all__ = [
    "MAX_CANDIDATES",
    "format_commit_without_backport",
    "get_commits_without_backports",
]
