"""Tests for pull request titles, bodies and the publisher."""

import asyncio
import json

import httpx
import pytest
from conftest import make_commit

from backport.core.models import (
    BackportResponse,
    BackportResult,
    PullRequestPayload,
)
from backport.github.client import GithubApiError, GithubClient
from backport.github.pulls import (
    GithubPullRequestPublisher,
    get_pull_request_body,
    get_status_comment_body,
    get_title,
)

PAYLOAD = PullRequestPayload(
    owner="elastic",
    repo="kibana",
    title="[7.x] Add feature (#10)",
    body="# Backport",
    head="sqren:backport/7.x/pr-10",
    base="7.x",
)


class FakeGithub:
    """httpx transport answering requests by (method, path)."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}

    def route(self, method, path, status_code=200, json=None):
        self.routes[(method, path)] = httpx.Response(status_code, json=json)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        return response or httpx.Response(200, json={})

    def bodies(self):
        return [json.loads(r.content) if r.content else None
                for r in self.requests]


@pytest.fixture
def github():
    return FakeGithub()


@pytest.fixture
def publisher(config, logger, github):
    client = GithubClient(
        config.github, logger, transport=httpx.MockTransport(github.handler)
    )
    return GithubPullRequestPublisher(client, config, logger)


# ============================================================
# Title and body
# ============================================================

def test_default_title(config):
    commits = [
        make_commit(message="Add feature (#10)\n\nMore text"),
        make_commit(sha="b" * 40, message="Fix bug (#11)"),
    ]
    assert get_title(config, commits, "7.x") == (
        "[7.x] Add feature (#10) | Fix bug (#11)"
    )


def test_custom_title(config):
    config.backport.pr_title = "{commitMessages} backport for {targetBranch}"
    assert get_title(config, [make_commit()], "6.8") == (
        "Add feature (#10) backport for 6.8"
    )


def test_default_body(config):
    commits = [make_commit(), make_commit(sha="b" * 40, message="Fix bug (#11)")]
    assert get_pull_request_body(config, commits, "7.x") == (
        "# Backport\n\n"
        "This is an automatic backport to `7.x` of:\n"
        " - Add feature (#10)\n"
        " - Fix bug (#11)"
    )


def test_custom_body(config):
    config.backport.pr_description = (
        "{defaultPrDescription}\n\nCommits:\n{commitMessages}"
    )
    body = get_pull_request_body(config, [make_commit()], "7.x")

    assert body.startswith("# Backport\n\nThis is an automatic backport")
    assert body.endswith("Commits:\n - Add feature (#10)")


def test_title_placeholders_are_not_format_fields(config):
    config.backport.pr_title = "{unknown} [{targetBranch}]"
    assert get_title(config, [make_commit()], "7.x") == "{unknown} [7.x]"


# ============================================================
# Publisher
# ============================================================

def test_create_pull_request(publisher, github):
    github.route(
        "POST", "/repos/elastic/kibana/pulls", 201,
        {"html_url": "https://github.com/elastic/kibana/pull/99", "number": 99},
    )

    target = asyncio.run(publisher.create(PAYLOAD))

    assert target.number == 99
    assert target.url == "https://github.com/elastic/kibana/pull/99"
    assert target.did_update is False
    assert github.bodies() == [{
        "title": "[7.x] Add feature (#10)",
        "body": "# Backport",
        "head": "sqren:backport/7.x/pr-10",
        "base": "7.x",
    }]
    assert github.requests[0].headers["Authorization"] == "Bearer myAccessToken"


def test_existing_pull_request_is_reused(publisher, github):
    github.route(
        "POST", "/repos/elastic/kibana/pulls", 422,
        {
            "message": "Validation Failed",
            "errors": [{
                "resource": "PullRequest",
                "code": "custom",
                "message": "A pull request already exists for "
                           "sqren:backport/7.x/pr-10.",
            }],
        },
    )
    github.route(
        "GET", "/repos/elastic/kibana/pulls", 200,
        [{"html_url": "https://github.com/elastic/kibana/pull/42",
          "number": 42}],
    )

    target = asyncio.run(publisher.create(PAYLOAD))

    assert target.number == 42
    assert target.did_update is True
    lookup = github.requests[1]
    assert lookup.url.params["head"] == "sqren:backport/7.x/pr-10"
    assert lookup.url.params["state"] == "open"


def test_other_validation_errors_are_raised(publisher, github):
    github.route(
        "POST", "/repos/elastic/kibana/pulls", 422,
        {"message": "Validation Failed",
         "errors": [{"message": "No commits between 7.x and backport"}]},
    )

    with pytest.raises(GithubApiError) as exc_info:
        asyncio.run(publisher.create(PAYLOAD))

    assert exc_info.value.status_code == 422
    assert exc_info.value.has_message("No commits between")


def test_add_labels(publisher, github):
    asyncio.run(publisher.add_labels(99, ["backport"]))

    assert github.requests[0].url.path == "/repos/elastic/kibana/issues/99/labels"
    assert github.bodies() == [{"labels": ["backport"]}]


def test_add_assignees_and_reviewers(publisher, github):
    asyncio.run(publisher.add_assignees(99, ["sqren"]))
    asyncio.run(publisher.add_reviewers(99, ["reviewer"]))

    assert [r.url.path for r in github.requests] == [
        "/repos/elastic/kibana/issues/99/assignees",
        "/repos/elastic/kibana/pulls/99/requested_reviewers",
    ]
    assert github.bodies() == [
        {"assignees": ["sqren"]},
        {"reviewers": ["reviewer"]},
    ]


def test_decoration_failure_is_not_raised(publisher, github):
    github.route(
        "POST", "/repos/elastic/kibana/issues/99/labels", 403,
        {"message": "Resource not accessible by integration"},
    )

    asyncio.run(publisher.add_labels(99, ["backport"]))

    assert len(github.requests) == 1


def test_enable_auto_merge(publisher, github, config):
    config.backport.auto_merge_method = "squash"
    github.route(
        "GET", "/repos/elastic/kibana/pulls/99", 200, {"node_id": "PR_abc"}
    )
    github.route("POST", "/graphql", 200, {"data": {}})

    asyncio.run(publisher.enable_auto_merge(99))

    mutation = github.bodies()[1]
    assert "enablePullRequestAutoMerge" in mutation["query"]
    assert mutation["variables"] == {
        "pullRequestId": "PR_abc",
        "mergeMethod": "SQUASH",
    }


def test_auto_merge_graphql_error_is_not_raised(publisher, github):
    github.route(
        "GET", "/repos/elastic/kibana/pulls/99", 200, {"node_id": "PR_abc"}
    )
    github.route(
        "POST", "/graphql", 200,
        {"errors": [{"message": "Pull request is in clean status"}]},
    )

    asyncio.run(publisher.enable_auto_merge(99))

    assert len(github.requests) == 2


# ============================================================
# Status comments
# ============================================================

def success(branch, number):
    return BackportResult(
        target_branch=branch,
        status="success",
        pull_request_number=number,
        pull_request_url=f"https://github.com/elastic/kibana/pull/{number}",
    )


def handled_error(branch, message):
    return BackportResult(
        target_branch=branch,
        status="handled-error",
        error_kind="commits-without-backports",
        error_message=message,
    )


def test_status_comment_all_successful():
    response = BackportResponse(
        status="success",
        commits=[make_commit()],
        results=[success("7.x", 11), success("6.8", 12)],
    )

    body = get_status_comment_body(response, 10)

    assert body.startswith("## \N{GREEN HEART} All backports created successfully")
    assert "| 7.x | [#11](https://github.com/elastic/kibana/pull/11) |" in body
    assert "| 6.8 | [#12](https://github.com/elastic/kibana/pull/12) |" in body
    assert "Manual backport" not in body


def test_status_comment_partial_failure():
    response = BackportResponse(
        status="success",
        commits=[make_commit()],
        results=[
            success("7.x", 11),
            handled_error("6.8", "Conflicts | in\nfiles"),
        ],
    )

    body = get_status_comment_body(response, 10)

    assert body.startswith("## \N{BROKEN HEART} Some backports could not be created")
    assert "| 6.8 | Conflicts \\| in files |" in body
    assert "backport run --config.backport.pull_number 10" in body


def test_status_comment_all_failed():
    response = BackportResponse(
        status="success",
        commits=[make_commit()],
        results=[handled_error("7.x", "Conflicts")],
    )

    assert get_status_comment_body(response, 10).startswith(
        "## \N{BROKEN HEART} All backports failed"
    )


def test_status_comment_failed_run():
    response = BackportResponse(
        status="failure",
        commits=[make_commit()],
        error_message="There are no branches to backport to.",
    )

    body = get_status_comment_body(response, 10)

    assert body.startswith("## \N{BROKEN HEART} Backport failed\n\n")
    assert "There are no branches to backport to." in body
    assert "backport run --config.backport.pull_number 10" in body


def test_create_status_comment(publisher, github):
    response = BackportResponse(
        status="success",
        commits=[
            make_commit(),
            make_commit(sha="b" * 40, pull_number=10),
            make_commit(sha="c" * 40, pull_number=None),
        ],
        results=[success("7.x", 11)],
    )

    asyncio.run(publisher.create_status_comment(response))

    assert [(r.method, r.url.path) for r in github.requests] == [
        ("POST", "/repos/elastic/kibana/issues/10/comments"),
    ]
    assert github.bodies()[0] == {"body": get_status_comment_body(response, 10)}


def test_status_comment_disabled(publisher, github, config):
    config.backport.publish_status_comment = False
    response = BackportResponse(status="success", commits=[make_commit()])

    asyncio.run(publisher.create_status_comment(response))

    assert github.requests == []


def test_status_comment_failure_is_not_raised(publisher, github, capsys):
    github.route(
        "POST", "/repos/elastic/kibana/issues/10/comments", 403,
        {"message": "Resource not accessible by integration"},
    )
    response = BackportResponse(status="success", commits=[make_commit()])

    asyncio.run(publisher.create_status_comment(response))

    assert "Could not add status comment to #10" in capsys.readouterr().out
