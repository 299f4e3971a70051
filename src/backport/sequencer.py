"""Run the cherry-pick graph for each target branch, one at a time."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from backport.core.errors import ConflictsPresentError, HandledError
from backport.core.log import Logger
from backport.core.models import (
    BackportOperation,
    BackportResult,
    Commit,
    TargetPullRequest,
)

CreateOperation = Callable[[list[Commit], str], BackportOperation]
RunOperation = Callable[[BackportOperation], Awaitable[TargetPullRequest]]


async def run_sequentially(
    commits: list[Commit],
    target_branches: list[str],
    create_operation: CreateOperation,
    run_operation: RunOperation,
    logger: Logger,
) -> list[BackportResult]:
    """Backport commits to every target branch in order.

    Branches share one working directory, so they never run in
    parallel. A HandledError fails only its own branch: it is recorded
    as a "handled-error" result and the next branch starts. Any other
    error stops the run.

    Returns:
        One result per target branch, in target_branches order
    """
    results: list[BackportResult] = []
    for target_branch in target_branches:
        operation = create_operation(commits, target_branch)
        try:
            target = await run_operation(operation)
        except HandledError as e:
            logger.info(
                "Backport failed with handled error",
                target_branch=target_branch,
                kind=e.kind,
                error=e.message,
            )
            logger.echo(e.message, fg="red")
            missing = []
            if isinstance(e, ConflictsPresentError):
                missing = e.commits_without_backports
                if missing:
                    logger.echo(
                        f"Hint: Consider backporting the following commits "
                        f'to "{target_branch}" first:',
                        italic=True,
                    )
                    logger.echo("\n".join(c.formatted for c in missing))
            results.append(BackportResult(
                target_branch=target_branch,
                status="handled-error",
                error_kind=e.kind,
                error_message=e.message,
                commits_without_backports=missing,
            ))
            continue
        except Exception as e:
            logger.error(
                "Backport failed with unhandled error",
                target_branch=target_branch,
                error=str(e),
                _exc_info=e,
            )
            raise

        results.append(BackportResult(
            target_branch=target_branch,
            status="success",
            pull_request_number=target.number,
            pull_request_url=target.url,
            did_update=target.did_update,
        ))

    return results


__all__ = ["run_sequentially"]
