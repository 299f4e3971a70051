#!/usr/bin/env python3
"""Backport CLI - cherry-pick commits onto release branches."""

import asyncio
import sys

from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from backport.command.reset import ResetCommand
from backport.command.run import RunCommand
from backport.core.config import State


class CliState(State):
    """Backport commits to release branches.

    Each selected commit is cherry-picked onto a fresh branch per
    target branch, pushed (to your fork by default) and opened as a
    pull request. Conflicts are resolved by an auto-fix hook, or by you
    with a hint listing older commits that were never backported.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.backport.pull_number 123)
    2. backport.yaml in the current directory, then the user config
       directory, plus --include files
    3. .env file for secrets
    4. Environment variables
       (BACKPORT_CONFIG__GITHUB__ACCESS_TOKEN=value)

    The [JSON] options allow setting multiple values at once:
      --config.backport '{"target_branches": ["7.x", "7.17"]}'
    """

    run: CliSubCommand[RunCommand]
    reset: CliSubCommand[ResetCommand]

    def cli_cmd(self):
        """Dispatch to active subcommand, or show help if none
        provided."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            CliApp.run(CliState, cli_args=['--help'])
            sys.exit(1)

        # Closing the logger flushes the log file and OTLP exporters
        with self.config.logger:
            exit_code = asyncio.run(subcommand.run_workflow(self))
        raise SystemExit(exit_code)


def main():
    """Main entry point for CLI."""
    CliApp.run(CliState)


if __name__ == "__main__":
    main()
