"""Cherry-pick graph definition and runner."""

from __future__ import annotations

from pydantic_graph import Graph

from backport.core.config import BackportState, Config
from backport.core.models import (
    BackportOperation,
    Commit,
    PullRequestPayload,
    TargetPullRequest,
)
from backport.git.naming import backport_branch_name
from backport.github.pulls import get_pull_request_body, get_title
from backport.workflow.deps import BackportDeps


def create_workflow() -> Graph:
    """Create the cherry-pick graph for one target branch.

    CreateBranch -> PickCommit[0] -> (ResolveConflicts[0]) ->
        PickCommit[1] ... -> Finalize -> PublishPullRequest -> End

    Returns:
        Graph with BackportState as state and BackportDeps as deps
    """
    # Imported here so the nodes' forward references resolve
    from backport.workflow.nodes.create_branch import CreateBranch
    from backport.workflow.nodes.finalize import Finalize
    from backport.workflow.nodes.pick_commit import PickCommit
    from backport.workflow.nodes.publish import PublishPullRequest
    from backport.workflow.nodes.resolve_conflicts import ResolveConflicts

    return Graph(
        nodes=(
            CreateBranch,
            PickCommit,
            ResolveConflicts,
            Finalize,
            PublishPullRequest,
        ),
        state_type=BackportState,
        name="backport",
    )


def create_operation(
    config: Config, commits: list[Commit], target_branch: str
) -> BackportOperation:
    """Everything the graph needs to backport commits to target_branch."""
    branch_name = backport_branch_name(target_branch, commits)
    payload = PullRequestPayload(
        owner=config.github.repo_owner,
        repo=config.github.repo_name,
        title=get_title(config, commits, target_branch),
        body=get_pull_request_body(config, commits, target_branch),
        head=f"{config.fork_owner}:{branch_name}",
        base=target_branch,
    )
    return BackportOperation(
        target_branch=target_branch,
        backport_branch_name=branch_name,
        commits=commits,
        pull_request_payload=payload,
    )


async def run_backport_operation(
    operation: BackportOperation, deps: BackportDeps
) -> TargetPullRequest:
    """Run the graph for one target branch with fresh state."""
    from backport.workflow.nodes.create_branch import CreateBranch

    workflow = create_workflow()
    state = BackportState(operation=operation)

    with deps.logger.span(
        "Backport", target_branch=operation.target_branch
    ):
        async with workflow.iter(CreateBranch(), state=state, deps=deps) as run:
            async for node in run:
                deps.logger.debug(
                    "Graph step", node=type(node).__name__, status=state.status
                )

    return run.result.output
