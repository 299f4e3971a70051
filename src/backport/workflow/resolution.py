"""Manual conflict resolution: prompt until the working tree is clean."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from backport.core.errors import AbortedError, RetryLimitExceededError
from backport.core.log import Logger
from backport.git.gateway import GitGateway
from backport.workflow.deps import ConfirmPrompt

MAX_RETRIES = 100
DIVIDER = "\n----------------------------------------\n"


@dataclass
class ResolutionState:
    """What is still left to fix after `attempt` confirmations."""

    attempt: int = 0
    conflicting_files: list[str] = field(default_factory=list)
    unstaged_files: list[str] = field(default_factory=list)

    @property
    def has_conflicting_files(self) -> bool:
        return bool(self.conflicting_files)

    @property
    def has_unstaged_files(self) -> bool:
        # Conflicting files are unstaged too; only report the others
        return bool(set(self.unstaged_files) - set(self.conflicting_files))

    @property
    def needs_resolving(self) -> bool:
        return self.has_conflicting_files or self.has_unstaged_files


def format_prompt(state: ResolutionState) -> str:
    conflict_section = ""
    if state.has_conflicting_files:
        conflict_section = "Conflicting files:\n" + "\n".join(
            f" - {path}" for path in state.conflicting_files
        )

    unstaged_section = ""
    if state.has_unstaged_files:
        unstaged_section = "Unstaged files:\n" + "\n".join(
            f" - {path}" for path in state.unstaged_files
        )

    return (
        f"Fix the following conflicts manually:\n\n"
        f"{conflict_section}\n"
        f"{unstaged_section}\n\n"
        f"Press ENTER when the conflicts are resolved and files are staged"
    )


class ConflictResolutionLoop:
    """Asks the user to fix conflicts and re-checks the working tree.

    Both file lists are read again from the working tree after every
    confirmation, never carried over. The loop gives up with
    RetryLimitExceededError once more than max_retries confirmations
    still left work behind; declining a prompt raises AbortedError.
    """

    def __init__(
        self,
        gateway: GitGateway,
        confirm: ConfirmPrompt,
        logger: Logger,
        max_retries: int = MAX_RETRIES,
    ):
        self.gateway = gateway
        self.confirm = confirm
        self.logger = logger
        self.max_retries = max_retries

    async def run(
        self, conflicting_files: list[str], unstaged_files: list[str]
    ) -> int:
        """Loop until nothing is left to resolve.

        Args:
            conflicting_files: Absolute paths with conflict markers
            unstaged_files: Absolute paths with unstaged changes

        Returns:
            Number of prompts the user confirmed
        """
        state = ResolutionState(
            conflicting_files=list(conflicting_files),
            unstaged_files=list(unstaged_files),
        )

        while state.needs_resolving:
            if state.attempt > 0:
                self.logger.echo(DIVIDER)

            self.logger.debug(
                "Waiting for manual conflict resolution",
                attempt=state.attempt,
                conflicting_files=len(state.conflicting_files),
                unstaged_files=len(state.unstaged_files),
            )
            if not await self.confirm(format_prompt(state)):
                raise AbortedError()

            if state.attempt > self.max_retries:
                raise RetryLimitExceededError(self.max_retries)

            conflicting, unstaged = await self._inspect()
            state = ResolutionState(
                attempt=state.attempt + 1,
                conflicting_files=conflicting,
                unstaged_files=unstaged,
            )

        return state.attempt

    async def _inspect(self) -> tuple[list[str], list[str]]:
        conflicting, unstaged = await asyncio.gather(
            self.gateway.get_conflicting_files(),
            self.gateway.get_unstaged_files(),
        )
        return [f.absolute for f in conflicting], unstaged


__all__ = [
    "ConflictResolutionLoop",
    "MAX_RETRIES",
    "ResolutionState",
    "format_prompt",
]
