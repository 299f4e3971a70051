"""Backport branch names and short commit identifiers."""

from __future__ import annotations

from collections.abc import Iterable

from backport.core.models import Commit

BRANCH_PREFIX = "backport"
MAX_REFS_LENGTH = 200


def short_sha(sha: str) -> str:
    return sha[:8]


def first_line(message: str) -> str:
    return message.split("\n", 1)[0].strip()


def commit_ref(commit: Commit) -> str:
    if commit.pull_number:
        return f"pr-{commit.pull_number}"
    return f"commit-{short_sha(commit.sha)}"


def backport_branch_name(target_branch: str, commits: Iterable[Commit]) -> str:
    """Name of the branch that carries the cherry-picks.

    The same commits and target branch always give the same name, so a
    re-run force-pushes over the previous attempt.

    Examples:
        backport/7.x/pr-1234
        backport/7.x/commit-abcdef12
        backport/7.x/pr-1234_commit-abcdef12

    The refs segment is cut at 200 characters, which can split the last
    ref in the middle.
    """
    refs = "_".join(commit_ref(commit) for commit in commits)
    return f"{BRANCH_PREFIX}/{target_branch}/{refs[:MAX_REFS_LENGTH]}"
