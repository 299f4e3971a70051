"""Tests for the missing-backport hint."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import make_commit

from backport.analysis.completeness import (
    MAX_CANDIDATES,
    get_commits_without_backports,
)
from backport.core.errors import NoCommitsFoundError
from backport.core.models import (
    TargetPullRequestExpectation,
    TargetPullRequestState,
)

CURRENT_DATE = "2020-08-20T10:00:00Z"
EARLIER_DATE = "2020-08-10T10:00:00Z"
LATER_DATE = "2020-08-25T10:00:00Z"


def expectation(state, url="https://www.github.com/foo/bar/pull/456"):
    return TargetPullRequestExpectation(
        branch="7.x",
        state=TargetPullRequestState(state),
        number=456,
        url=url,
    )


def candidate(state="CLOSED", committed_date=EARLIER_DATE, **kwargs):
    kwargs.setdefault("pull_url", "https://www.github.com/foo/bar/pull/123")
    return make_commit(
        sha=kwargs.pop("sha", "c" * 40),
        message="First commit (#1)",
        committed_date=committed_date,
        pull_number=1,
        expected_target_pull_requests=[expectation(state)],
        **kwargs,
    )


def run_analysis(candidates, in_branch=False):
    commit_source = Mock()
    commit_source.fetch_commits_by_author = AsyncMock(return_value=candidates)
    gateway = Mock()
    gateway.get_is_commit_in_branch = AsyncMock(return_value=in_branch)

    commit = make_commit(sha="a" * 40, committed_date=CURRENT_DATE)
    results = asyncio.run(get_commits_without_backports(
        commit_source, gateway, commit, "7.x", ["src/file.ts"]
    ))
    return results, commit_source, gateway


def test_fetches_candidates_touching_conflicting_files():
    _, commit_source, _ = run_analysis([])

    commit_source.fetch_commits_by_author.assert_awaited_once_with(
        author=None,
        commit_paths=["src/file.ts"],
        max_number=MAX_CANDIDATES,
        source_branch="main",
    )


def test_closed_backport_is_missing():
    results, _, _ = run_analysis([candidate("CLOSED")])

    assert [r.formatted for r in results] == [
        " - First commit (#1) (backport missing)\n"
        "   https://www.github.com/foo/bar/pull/123"
    ]


def test_missing_backport_is_missing():
    results, _, _ = run_analysis([candidate("MISSING")])

    assert results[0].formatted == (
        " - First commit (#1) (backport missing)\n"
        "   https://www.github.com/foo/bar/pull/123"
    )


def test_open_backport_is_pending_with_target_url():
    results, _, _ = run_analysis([candidate("OPEN")])

    assert results[0].formatted == (
        " - First commit (#1) (backport pending)\n"
        "   https://www.github.com/foo/bar/pull/456"
    )


def test_url_line_is_omitted_without_pull_request():
    results, _, _ = run_analysis([candidate("MISSING", pull_url=None)])

    assert results[0].formatted == " - First commit (#1) (backport missing)"


def test_merged_backport_is_not_listed():
    results, _, _ = run_analysis([candidate("MERGED")])
    assert results == []


def test_newer_commits_are_not_listed():
    results, _, _ = run_analysis([
        candidate("CLOSED", committed_date=LATER_DATE),
        candidate("CLOSED", committed_date=CURRENT_DATE, sha="d" * 40),
    ])
    assert results == []


def test_commits_without_expectation_for_branch_are_not_listed():
    other_branch = make_commit(
        sha="e" * 40,
        committed_date=EARLIER_DATE,
        expected_target_pull_requests=[TargetPullRequestExpectation(
            branch="6.x", state=TargetPullRequestState.MISSING
        )],
    )
    results, _, _ = run_analysis([other_branch])
    assert results == []


def test_commits_already_in_branch_are_not_listed():
    results, _, gateway = run_analysis([candidate("CLOSED")], in_branch=True)

    assert results == []
    gateway.get_is_commit_in_branch.assert_awaited_once_with("c" * 40)


@pytest.mark.parametrize("state", ["OPEN", "CLOSED", "MISSING"])
def test_result_carries_the_commit(state):
    results, _, _ = run_analysis([candidate(state)])
    assert results[0].commit.sha == "c" * 40


def test_no_candidates_at_all():
    commit_source = Mock()
    commit_source.fetch_commits_by_author = AsyncMock(
        side_effect=NoCommitsFoundError("There are no commits")
    )
    commit = make_commit(committed_date=CURRENT_DATE)

    results = asyncio.run(get_commits_without_backports(
        commit_source, Mock(), commit, "7.x", ["src/file.ts"]
    ))

    assert results == []
