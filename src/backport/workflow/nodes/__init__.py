"""Workflow nodes for the cherry-pick graph."""

from backport.workflow.nodes.create_branch import CreateBranch
from backport.workflow.nodes.finalize import Finalize
from backport.workflow.nodes.pick_commit import PickCommit
from backport.workflow.nodes.publish import PublishPullRequest
from backport.workflow.nodes.resolve_conflicts import ResolveConflicts

__all__ = [
    "CreateBranch",
    "PickCommit",
    "ResolveConflicts",
    "Finalize",
    "PublishPullRequest",
]
