"""Reset command - deletes the local clone of the repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from backport.git.gateway import GitGateway

if TYPE_CHECKING:
    from backport.core.config import State


class ResetCommand(BaseModel):
    """Delete the local clone so the next run starts from a fresh one.

    Useful when the clone is left in a broken state (an interrupted
    cherry-pick, a corrupted index). Pushed backport branches and pull
    requests are not touched.
    """

    async def run_workflow(self, state: State) -> int:
        """Run reset.

        Returns:
            Exit code (0=success)
        """
        config = state.config
        logger = config.logger
        logger.setup(config.log_root, config.run_name)

        gateway = GitGateway(config, logger)
        if not gateway.repo_exists():
            logger.echo(f"Nothing to reset: {gateway.repo_path} does not exist")
            return 0

        gateway.delete_repo()
        logger.echo(f"Deleted {gateway.repo_path}")
        logger.info("Reset complete")
        return 0
