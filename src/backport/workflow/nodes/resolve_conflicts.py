"""ResolveConflicts node - get a conflicted cherry-pick committed."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic_graph import BaseNode, GraphRunContext

from backport.analysis.completeness import get_commits_without_backports
from backport.core.config import BackportState
from backport.core.errors import ConflictsPresentError
from backport.core.models import ConflictFile, TargetPullRequest
from backport.workflow.deps import BackportDeps
from backport.workflow.nodes.pick_commit import next_node
from backport.workflow.resolution import ConflictResolutionLoop

# Keeps the history query for the hint small
MAX_HINT_PATHS = 50


@dataclass
class ResolveConflicts(BaseNode[BackportState, BackportDeps, TargetPullRequest]):
    """Resolve a cherry-pick that stopped on conflicts.

    Order of attempts:
    1. The auto-fix hook, when configured
    2. In CI mode, fail with the list of missing backports
    3. Otherwise hint at missing backports, open the editor and wait
       for the user to fix and stage everything
    """

    index: int
    conflicting_files: list[ConflictFile] = field(default_factory=list)
    unstaged_files: list[str] = field(default_factory=list)

    async def run(
        self, ctx: GraphRunContext[BackportState, BackportDeps]
    ) -> PickCommit | Finalize:
        deps = ctx.deps
        logger = deps.logger
        operation = ctx.state.operation
        commit = operation.commits[self.index]
        target_branch = operation.target_branch
        ctx.state.status = "resolving"

        if deps.auto_fix is not None:
            logger.echo("Attempting to resolve conflicts automatically")
            did_auto_fix = await deps.auto_fix(
                files=[f.absolute for f in self.conflicting_files],
                directory=deps.repo_path,
                target_branch=target_branch,
                logger=logger,
            )
            if did_auto_fix:
                logger.info("Conflicts resolved automatically", sha=commit.sha)
                await deps.gateway.commit_changes(commit)
                return next_node(ctx.state, self.index)
            logger.echo("Could not resolve conflicts automatically", fg="red")

        commits_without_backports = await get_commits_without_backports(
            deps.commit_source,
            deps.gateway,
            commit,
            target_branch,
            [f.relative for f in self.conflicting_files][:MAX_HINT_PATHS],
            logger,
        )

        if deps.config.backport.ci:
            raise ConflictsPresentError(commits_without_backports)

        logger.echo(
            "\nThe commit could not be backported due to conflicts\n",
            bold=True,
        )
        if commits_without_backports:
            logger.echo(
                f"Hint: Before fixing the conflicts manually you should "
                f"consider backporting the following commits to "
                f'"{target_branch}":',
                italic=True,
            )
            logger.echo(
                "\n".join(c.formatted for c in commits_without_backports)
                + "\n\n"
            )

        if deps.config.backport.editor:
            await deps.gateway.open_editor(deps.config.backport.editor)

        loop = ConflictResolutionLoop(deps.gateway, deps.confirm, logger)
        ctx.state.resolution_attempts = await loop.run(
            [f.absolute for f in self.conflicting_files],
            self.unstaged_files,
        )

        logger.echo("Finalizing cherrypick")
        await deps.gateway.commit_changes(commit)
        return next_node(ctx.state, self.index)
