"""PickCommit node - cherry-pick one commit onto the backport branch."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_graph import BaseNode, GraphRunContext

from backport.core.config import BackportState
from backport.core.models import TargetPullRequest
from backport.git.naming import first_line
from backport.workflow.deps import BackportDeps


def next_node(state: BackportState, index: int) -> PickCommit | Finalize:
    """Node after commits[index] has been applied."""
    from backport.workflow.nodes.finalize import Finalize

    state.picked.append(state.operation.commits[index].sha)
    if index + 1 < len(state.operation.commits):
        return PickCommit(index=index + 1)
    return Finalize()


@dataclass
class PickCommit(BaseNode[BackportState, BackportDeps, TargetPullRequest]):
    """Apply commits[index]; commits are applied in the order given."""

    index: int

    async def run(
        self, ctx: GraphRunContext[BackportState, BackportDeps]
    ) -> PickCommit | ResolveConflicts | Finalize:
        commit = ctx.state.operation.commits[self.index]
        backport = ctx.deps.config.backport
        logger = ctx.deps.logger
        ctx.state.status = "picking"

        logger.echo(f"Cherry-picking: {first_line(commit.original_message)}")
        with logger.span("Cherry-pick", sha=commit.sha):
            await ctx.deps.gateway.fetch_branch(commit.source_branch)
            result = await ctx.deps.gateway.cherrypick(
                commit.sha,
                mainline=backport.mainline,
                include_origin_reference=backport.cherrypick_ref,
            )

        if result.needs_resolving:
            logger.info(
                "Cherry-pick needs resolving",
                sha=commit.sha,
                conflicting_files=len(result.conflicting_files),
                unstaged_files=len(result.unstaged_files),
            )
            from backport.workflow.nodes.resolve_conflicts import (
                ResolveConflicts,
            )
            return ResolveConflicts(
                index=self.index,
                conflicting_files=result.conflicting_files,
                unstaged_files=result.unstaged_files,
            )

        return next_node(ctx.state, self.index)
