"""CreateBranch node - start the backport branch at the target branch."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_graph import BaseNode, GraphRunContext

from backport.core.config import BackportState
from backport.core.models import TargetPullRequest
from backport.workflow.deps import BackportDeps


@dataclass
class CreateBranch(BaseNode[BackportState, BackportDeps, TargetPullRequest]):
    """Reset the clone and check out a fresh backport branch."""

    async def run(
        self, ctx: GraphRunContext[BackportState, BackportDeps]
    ) -> PickCommit | Finalize:
        operation = ctx.state.operation
        if operation is None:
            raise ValueError("No backport operation in state")

        ctx.deps.logger.echo(
            f"\nBackporting to {operation.target_branch}:", bold=True
        )
        ctx.deps.logger.info(
            "Creating backport branch",
            target_branch=operation.target_branch,
            backport_branch=operation.backport_branch_name,
        )
        await ctx.deps.gateway.create_backport_branch(
            operation.target_branch, operation.backport_branch_name
        )
        ctx.state.status = "branch-created"

        from backport.workflow.nodes.finalize import Finalize
        from backport.workflow.nodes.pick_commit import PickCommit

        if not operation.commits:
            return Finalize()
        return PickCommit(index=0)
