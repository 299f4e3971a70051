"""CLI command modules for backport."""

from backport.command.reset import ResetCommand
from backport.command.run import RunCommand

__all__ = ["ResetCommand", "RunCommand"]
