"""GitHub API access: commits and pull requests."""

from backport.github.client import GithubApiError, GithubClient
from backport.github.commits import CommitSource, GithubCommitSource
from backport.github.pulls import GithubPullRequestPublisher, PullRequestPublisher

__all__ = [
    "CommitSource",
    "GithubApiError",
    "GithubClient",
    "GithubCommitSource",
    "GithubPullRequestPublisher",
    "PullRequestPublisher",
]
