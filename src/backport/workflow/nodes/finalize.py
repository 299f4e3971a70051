"""Finalize node - push the backport branch and clean up locally."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_graph import BaseNode, GraphRunContext

from backport.core.config import BackportState
from backport.core.models import TargetPullRequest
from backport.workflow.deps import BackportDeps


@dataclass
class Finalize(BaseNode[BackportState, BackportDeps, TargetPullRequest]):
    """Optionally re-author, force push, then delete the local branch."""

    async def run(
        self, ctx: GraphRunContext[BackportState, BackportDeps]
    ) -> PublishPullRequest:
        config = ctx.deps.config
        gateway = ctx.deps.gateway
        branch = ctx.state.operation.backport_branch_name

        if config.backport.reset_author:
            username = config.github.authenticated_username
            if username:
                await gateway.set_commit_author(username)

        ctx.deps.logger.info("Pushing backport branch", branch=branch)
        await gateway.push_backport_branch(branch)
        await gateway.delete_backport_branch(branch)
        ctx.state.status = "pushed"

        from backport.workflow.nodes.publish import PublishPullRequest
        return PublishPullRequest()
