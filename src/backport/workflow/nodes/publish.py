"""PublishPullRequest node - open and decorate the pull request."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic_graph import BaseNode, End, GraphRunContext

from backport.core.config import BackportState
from backport.core.models import TargetPullRequest
from backport.workflow.deps import BackportDeps


@dataclass
class PublishPullRequest(
    BaseNode[BackportState, BackportDeps, TargetPullRequest]
):
    """Create the pull request, then add assignees, reviewers, labels
    and auto-merge."""

    async def run(
        self, ctx: GraphRunContext[BackportState, BackportDeps]
    ) -> End[TargetPullRequest]:
        config = ctx.deps.config
        backport = config.backport
        publisher = ctx.deps.publisher
        operation = ctx.state.operation

        target = await publisher.create(operation.pull_request_payload)

        if backport.auto_assign and config.github.authenticated_username:
            assignees = [config.github.authenticated_username]
        else:
            assignees = backport.assignees
        if assignees:
            await publisher.add_assignees(target.number, assignees)

        if backport.reviewers:
            await publisher.add_reviewers(target.number, backport.reviewers)

        if backport.target_pr_labels:
            await publisher.add_labels(target.number, backport.target_pr_labels)

        if backport.auto_merge:
            await publisher.enable_auto_merge(target.number)

        if backport.source_pr_labels:
            await asyncio.gather(*(
                publisher.add_labels(commit.pull_number, backport.source_pr_labels)
                for commit in operation.commits
                if commit.pull_number
            ))

        ctx.deps.logger.echo(f"View pull request: {target.url}")
        ctx.deps.logger.info(
            "Published pull request",
            number=target.number,
            url=target.url,
            did_update=target.did_update,
        )
        ctx.state.status = "published"
        ctx.state.operation = None
        return End(target)
