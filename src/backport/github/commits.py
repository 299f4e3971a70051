"""Source commits fetched from the GitHub GraphQL API.

Each commit carries the pull requests it is expected to have on other
branches, derived from two places:

- pull requests that cross-reference the source pull request and whose
  commits mention the source sha (existing backports, any state)
- labels of the source pull request mapped to branch names through
  branch_label_mapping; a mapped branch without a backport pull
  request is MISSING
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Protocol

from backport.core.config import Config
from backport.core.errors import (
    NoCommitsFoundError,
    PullRequestNotMergedError,
    SourceBranchNotFoundError,
)
from backport.core.log import Logger
from backport.core.models import (
    Commit,
    TargetPullRequestExpectation,
    TargetPullRequestState,
)
from backport.github.client import GithubClient

SOURCE_COMMIT_FRAGMENT = """
fragment SourceCommitWithTargetPullRequest on Commit {
  repository {
    name
    owner { login }
  }
  oid
  message
  committedDate
  associatedPullRequests(first: 1) {
    edges {
      node {
        url
        number
        baseRefName
        labels(first: 50) { nodes { name } }
        mergeCommit { oid }
        timelineItems(last: 20, itemTypes: CROSS_REFERENCED_EVENT) {
          edges {
            node {
              ... on CrossReferencedEvent {
                source {
                  __typename
                  ... on PullRequest {
                    url
                    number
                    state
                    baseRefName
                    repository {
                      name
                      owner { login }
                    }
                    mergeCommit { oid message }
                    commits(first: 20) {
                      edges { node { commit { oid message } } }
                    }
                  }
                }
              }
            }
          }
        }
      }
    }
  }
}
"""

COMMITS_BY_AUTHOR_QUERY = """
query CommitsByAuthor(
  $repoOwner: String!
  $repoName: String!
  $maxNumber: Int!
  $sourceBranch: String!
  $authorId: ID
  $commitPath: String
) {
  repository(owner: $repoOwner, name: $repoName) {
    ref(qualifiedName: $sourceBranch) {
      target {
        ... on Commit {
          history(
            first: $maxNumber
            author: { id: $authorId }
            path: $commitPath
          ) {
            edges { node { ...SourceCommitWithTargetPullRequest } }
          }
        }
      }
    }
  }
}
""" + SOURCE_COMMIT_FRAGMENT

COMMIT_BY_PULL_NUMBER_QUERY = """
query CommitByPullNumber(
  $repoOwner: String!
  $repoName: String!
  $pullNumber: Int!
) {
  repository(owner: $repoOwner, name: $repoName) {
    pullRequest(number: $pullNumber) {
      merged
      mergeCommit { ...SourceCommitWithTargetPullRequest }
    }
  }
}
""" + SOURCE_COMMIT_FRAGMENT

COMMIT_BY_SHA_QUERY = """
query CommitBySha($repoOwner: String!, $repoName: String!, $sha: String!) {
  repository(owner: $repoOwner, name: $repoName) {
    object(expression: $sha) {
      ...SourceCommitWithTargetPullRequest
    }
  }
}
""" + SOURCE_COMMIT_FRAGMENT

AUTHOR_ID_QUERY = """
query AuthorId($author: String!) {
  user(login: $author) { id }
}
"""


class CommitSource(Protocol):
    """Where source commits come from."""

    async def fetch_commits_by_author(
        self,
        author: str | None,
        commit_paths: list[str],
        max_number: int,
        source_branch: str,
    ) -> list[Commit]:
        ...

    async def fetch_commit_by_pull_number(self, pull_number: int) -> Commit:
        ...

    async def fetch_commit_by_sha(self, sha: str) -> Commit:
        ...


def branch_from_label(
    label: str, branch_label_mapping: dict[str, str]
) -> str | None:
    """Map a pull request label to a target branch.

    Patterns are tried in order; the first match wins. Replacements
    may refer to groups as $1 or \\1.

    Example:
        >>> branch_from_label("v7.9.0", {r"^v(\\d+).(\\d+).\\d+$": "$1.$2"})
        '7.9'
    """
    for pattern, replacement in branch_label_mapping.items():
        match = re.match(pattern, label)
        if match:
            return match.expand(re.sub(r"\$(\d+)", r"\\\1", replacement))
    return None


def _same_repository(node: dict, repo_owner: str, repo_name: str) -> bool:
    repository = node.get("repository") or {}
    return (
        repository.get("name") == repo_name
        and (repository.get("owner") or {}).get("login") == repo_owner
    )


def _mentions_sha(pull_request: dict, sha: str) -> bool:
    messages = [(pull_request.get("mergeCommit") or {}).get("message") or ""]
    for edge in (pull_request.get("commits") or {}).get("edges") or []:
        commit = (edge.get("node") or {}).get("commit") or {}
        messages.append(commit.get("message") or "")
    return any(sha in message for message in messages)


def _existing_target_pull_requests(
    source_pull_request: dict, sha: str, repo_owner: str, repo_name: str
) -> list[TargetPullRequestExpectation]:
    expectations = []
    timeline = source_pull_request.get("timelineItems") or {}
    for edge in timeline.get("edges") or []:
        source = (edge.get("node") or {}).get("source") or {}
        if source.get("__typename") != "PullRequest":
            continue
        if not _same_repository(source, repo_owner, repo_name):
            continue
        if not _mentions_sha(source, sha):
            continue
        expectations.append(
            TargetPullRequestExpectation(
                branch=source["baseRefName"],
                state=TargetPullRequestState(source["state"]),
                number=source["number"],
                url=source["url"],
            )
        )
    return expectations


def parse_source_commit(node: dict[str, Any], config: Config) -> Commit:
    """Build a Commit from a SourceCommitWithTargetPullRequest node."""
    github = config.github
    sha = node["oid"]
    message = node["message"]

    edges = (node.get("associatedPullRequests") or {}).get("edges") or []
    pull_request = edges[0]["node"] if edges else None
    # Only the pull request that produced this commit counts as its source
    if pull_request and (pull_request.get("mergeCommit") or {}).get("oid") != sha:
        pull_request = None

    if not pull_request:
        return Commit(
            sha=sha,
            original_message=message,
            committed_date=node["committedDate"],
            source_branch=config.backport.source_branch,
        )

    source_branch = pull_request["baseRefName"]
    existing = _existing_target_pull_requests(
        pull_request, sha, github.repo_owner, github.repo_name
    )
    by_branch = {}
    for expectation in existing:
        by_branch.setdefault(expectation.branch, expectation)

    labels = [
        label["name"]
        for label in (pull_request.get("labels") or {}).get("nodes") or []
    ]
    for label in labels:
        branch = branch_from_label(label, config.backport.branch_label_mapping)
        if branch and branch != source_branch and branch not in by_branch:
            by_branch[branch] = TargetPullRequestExpectation(
                branch=branch, state=TargetPullRequestState.MISSING
            )

    return Commit(
        sha=sha,
        original_message=message,
        committed_date=node["committedDate"],
        source_branch=source_branch,
        pull_number=pull_request["number"],
        pull_url=pull_request["url"],
        expected_target_pull_requests=tuple(by_branch.values()),
    )


class GithubCommitSource:
    """CommitSource backed by the GraphQL API."""

    def __init__(self, client: GithubClient, config: Config, logger: Logger):
        self.client = client
        self.config = config
        self.logger = logger

    @property
    def _repo_variables(self) -> dict:
        return {
            "repoOwner": self.config.github.repo_owner,
            "repoName": self.config.github.repo_name,
        }

    async def fetch_author_id(self, author: str | None) -> str | None:
        if not author:
            return None
        data = await self.client.graphql(AUTHOR_ID_QUERY, {"author": author})
        return (data.get("user") or {}).get("id")

    async def _fetch_by_commit_path(
        self,
        author_id: str | None,
        commit_path: str | None,
        max_number: int,
        source_branch: str,
    ) -> dict | None:
        data = await self.client.graphql(
            COMMITS_BY_AUTHOR_QUERY,
            {
                **self._repo_variables,
                "maxNumber": max_number,
                "sourceBranch": source_branch,
                "authorId": author_id,
                "commitPath": commit_path,
            },
        )
        return data["repository"]["ref"]

    async def fetch_commits_by_author(
        self,
        author: str | None,
        commit_paths: list[str],
        max_number: int,
        source_branch: str,
    ) -> list[Commit]:
        """Latest commits on source_branch, newest first.

        With commit_paths, one history query runs per path and the
        results are merged.

        Raises:
            SourceBranchNotFoundError: If source_branch doesn't exist
            NoCommitsFoundError: If no commit matched
        """
        author_id = await self.fetch_author_id(author)
        paths: list[str | None] = list(commit_paths) or [None]
        refs = await asyncio.gather(*(
            self._fetch_by_commit_path(
                author_id, path, max_number, source_branch
            )
            for path in paths
        ))

        # Every query targets the same ref, so the first one is enough
        if refs[0] is None:
            raise SourceBranchNotFoundError(source_branch)

        commits = [
            parse_source_commit(edge["node"], self.config)
            for ref in refs
            if ref
            for edge in ref["target"]["history"]["edges"]
        ]

        if not commits:
            path_text = (
                f' touching files in path: "{",".join(commit_paths)}"'
                if commit_paths else ""
            )
            if author:
                raise NoCommitsFoundError(
                    f'There are no commits by "{author}" in this '
                    f"repository{path_text}. Try with "
                    f"`--config.backport.author <username>` for commits "
                    f"from a specific user"
                )
            raise NoCommitsFoundError(
                f"There are no commits in this repository{path_text}"
            )

        unique = list({commit.sha: commit for commit in reversed(commits)}.values())
        unique.sort(key=lambda commit: commit.committed_date, reverse=True)
        self.logger.debug(
            "Fetched commits",
            source_branch=source_branch,
            count=len(unique),
        )
        return unique

    async def fetch_commit_by_pull_number(self, pull_number: int) -> Commit:
        """Merge commit of a merged pull request.

        Raises:
            PullRequestNotMergedError: If the pull request isn't merged
        """
        data = await self.client.graphql(
            COMMIT_BY_PULL_NUMBER_QUERY,
            {**self._repo_variables, "pullNumber": pull_number},
        )
        pull_request = data["repository"]["pullRequest"]
        if not pull_request["merged"] or not pull_request["mergeCommit"]:
            raise PullRequestNotMergedError(pull_number)
        return parse_source_commit(pull_request["mergeCommit"], self.config)

    async def fetch_commit_by_sha(self, sha: str) -> Commit:
        data = await self.client.graphql(
            COMMIT_BY_SHA_QUERY, {**self._repo_variables, "sha": sha}
        )
        node = data["repository"]["object"]
        if not node:
            raise NoCommitsFoundError(f'No commit found with sha "{sha}"')
        return parse_source_commit(node, self.config)


__all__ = [
    "CommitSource",
    "GithubCommitSource",
    "branch_from_label",
    "parse_source_commit",
]
