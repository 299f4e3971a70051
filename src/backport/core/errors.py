"""Error taxonomy.

HandledError subclasses are expected failures: the message is shown to
the user as-is, without a traceback, and a multi-branch run moves on to
the next target branch. Anything else is unhandled and is reported with
a pointer to the log file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backport.core.models import CommitWithoutBackport


class HandledError(Exception):
    """Expected failure with a user-facing message."""

    kind = "handled"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidBranchError(HandledError):
    kind = "invalid-branch"

    def __init__(self, branch: str):
        super().__init__(
            f'The branch "{branch}" is invalid or doesn\'t exist'
        )
        self.branch = branch


class CherrypickMergeCommitError(HandledError):
    kind = "cherrypick-merge-commit"

    def __init__(self):
        super().__init__(
            "Cherrypick failed because the selected commit was a merge "
            "commit. Please try again by specifying the parent with the "
            "`--mainline` argument (passed on to `git cherry-pick "
            "--mainline <parent-number>`):\n\n"
            "> backport run --config.backport.mainline 1\n\n"
            "Or refer to the git documentation for more information: "
            "https://git-scm.com/docs/git-cherry-pick"
            "#Documentation/git-cherry-pick.txt---mainlineparent-number"
        )


class CherrypickEmptyError(HandledError):
    kind = "cherrypick-empty"

    def __init__(self, short_sha: str):
        super().__init__(
            f"Cherrypick failed because the selected commit ({short_sha}) "
            f"is empty. Did you already backport this commit?"
        )


class IdentityMissingError(HandledError):
    kind = "identity-missing"

    def __init__(self, diagnostic: str):
        super().__init__(f"Cherrypick failed:\n{diagnostic}")


class CommitNotFoundError(HandledError):
    kind = "commit-not-found"

    def __init__(self, sha: str):
        super().__init__(
            f'Cherrypick failed because commit "{sha}" was not found'
        )
        self.sha = sha


class ForkMissingError(HandledError):
    kind = "fork-missing"

    def __init__(
        self, fork_owner: str, repo_owner: str, repo_name: str,
        git_hostname: str = "github.com",
    ):
        super().__init__(
            f"Error pushing to https://{git_hostname}/{fork_owner}/"
            f"{repo_name}. Repository does not exist. Either fork the "
            f"source repository (https://{git_hostname}/{repo_owner}/"
            f"{repo_name}) or disable fork mode "
            f"(--config.backport.fork false)."
        )
        self.fork_owner = fork_owner


class ConflictsPresentError(HandledError):
    """Unattended run hit a conflict it cannot resolve on its own."""

    kind = "commits-without-backports"

    def __init__(
        self, commits_without_backports: list[CommitWithoutBackport]
    ):
        super().__init__(
            "Commit could not be cherrypicked due to conflicts"
        )
        self.commits_without_backports = commits_without_backports


class AbortedError(HandledError):
    kind = "aborted"

    def __init__(self):
        super().__init__("Aborted")


class SourceBranchNotFoundError(HandledError):
    kind = "source-branch-not-found"

    def __init__(self, branch: str):
        super().__init__(
            f'The upstream branch "{branch}" does not exist. Try '
            f"specifying a different branch with "
            f'"--config.backport.source_branch <your-branch>"'
        )


class NoCommitsFoundError(HandledError):
    kind = "no-commits"


class PullRequestNotMergedError(HandledError):
    kind = "pull-request-not-merged"

    def __init__(self, pull_number: int):
        super().__init__(
            f"The PR #{pull_number} is not merged"
        )


class ConfigurationError(HandledError):
    kind = "configuration"


class RetryLimitExceededError(RuntimeError):
    """Conflict resolution loop ran past its cap. Not user-actionable."""

    def __init__(self, max_retries: int):
        super().__init__(
            f"Maximum number of retries ({max_retries}) exceeded"
        )
        self.max_retries = max_retries


__all__ = [
    "AbortedError",
    "CherrypickEmptyError",
    "CherrypickMergeCommitError",
    "CommitNotFoundError",
    "ConfigurationError",
    "ConflictsPresentError",
    "ForkMissingError",
    "HandledError",
    "IdentityMissingError",
    "InvalidBranchError",
    "NoCommitsFoundError",
    "PullRequestNotMergedError",
    "RetryLimitExceededError",
    "SourceBranchNotFoundError",
]
