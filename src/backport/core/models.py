"""Domain models for commits, cherry-picks and pull requests."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TargetPullRequestState(str, Enum):
    """Where a source commit stands on a branch it should land on."""

    OPEN = "OPEN"
    MERGED = "MERGED"
    CLOSED = "CLOSED"
    # A branch label asked for a backport but no pull request exists
    MISSING = "MISSING"


class TargetPullRequestExpectation(BaseModel):
    model_config = ConfigDict(frozen=True)

    branch: str
    state: TargetPullRequestState
    number: int | None = None
    url: str | None = None


class Commit(BaseModel):
    """A source commit as returned by the commit source.

    committed_date is kept as the raw ISO string from the API; it is
    compared as a string, which matches chronological order as long as
    every date comes from the same source in the same format.
    """

    model_config = ConfigDict(frozen=True)

    sha: str
    original_message: str
    committed_date: str
    source_branch: str
    pull_number: int | None = None
    pull_url: str | None = None
    expected_target_pull_requests: tuple[TargetPullRequestExpectation, ...] = ()

    def __hash__(self) -> int:
        return hash(self.sha)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Commit) and other.sha == self.sha

    def expectation_for(
        self, branch: str
    ) -> TargetPullRequestExpectation | None:
        for expectation in self.expected_target_pull_requests:
            if expectation.branch == branch:
                return expectation
        return None


class ConflictFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    absolute: str
    relative: str


class CherrypickResult(BaseModel):
    conflicting_files: list[ConflictFile] = Field(default_factory=list)
    unstaged_files: list[str] = Field(default_factory=list)
    needs_resolving: bool = False


class PullRequestPayload(BaseModel):
    owner: str
    repo: str
    title: str
    body: str
    # "<fork owner>:<backport branch>"
    head: str
    base: str


class TargetPullRequest(BaseModel):
    url: str
    number: int
    did_update: bool = False


class BackportOperation(BaseModel):
    """Everything needed to backport one set of commits to one branch.

    Lives for the duration of one target branch and is dropped once the
    pull request is published.
    """

    target_branch: str
    backport_branch_name: str
    commits: list[Commit]
    pull_request_payload: PullRequestPayload


class CommitWithoutBackport(BaseModel):
    commit: Commit
    formatted: str


class BackportResult(BaseModel):
    target_branch: str
    status: Literal["success", "handled-error"]
    pull_request_number: int | None = None
    pull_request_url: str | None = None
    did_update: bool = False
    error_kind: str | None = None
    error_message: str | None = None
    commits_without_backports: list[CommitWithoutBackport] = Field(
        default_factory=list
    )


class BackportResponse(BaseModel):
    status: Literal["success", "failure"]
    commits: list[Commit] = Field(default_factory=list)
    results: list[BackportResult] = Field(default_factory=list)
    error_message: str | None = None
