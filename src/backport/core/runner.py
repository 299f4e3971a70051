"""Command execution using the invoke library."""

import shlex
from pathlib import Path
from typing import IO

from invoke import Context, Result
from invoke.exceptions import CommandTimedOut


class ExecError(Exception):
    """A command exited with a non-zero status.

    Carries the exact command string so callers can tell which
    invocation failed, plus both output streams for diagnostic
    matching.
    """

    def __init__(self, cmd: str, exited: int, stdout: str, stderr: str):
        self.cmd = cmd
        self.exited = exited
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        super().__init__(
            f"Command failed with exit code {exited}: {cmd}\n{detail}"
        )

    @classmethod
    def from_result(cls, command: str, result: Result) -> "ExecError":
        return cls(command, result.exited, result.stdout, result.stderr)


class Runner(Context):
    """invoke.Context with a single execute() entry point.

    execute() is safe to call from several worker threads at once:
    the working directory is prefixed to each command instead of going
    through Context.cd(), which mutates shared state.
    """

    def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: int | None = None,
        check: bool = True,
        env: dict[str, str] | None = None,
        err_stream: IO[str] | None = None,
    ) -> Result:
        """Execute a command and capture its output.

        Args:
            command: Command string to execute
            cwd: Working directory for command execution
            timeout: Maximum execution time in seconds
            check: If True, raise ExecError on non-zero exit code
            env: Environment variables to add to os.environ
            err_stream: Receives stderr while the command runs
                (stderr is still captured in the result)

        Returns:
            invoke.Result with stdout, stderr and exited

        Raises:
            ExecError: If check=True and the command exits non-zero
        """
        kwargs = {
            "hide": True,
            "warn": True,
            "in_stream": False,
        }
        if timeout:
            kwargs["timeout"] = timeout
        if env:
            kwargs["env"] = env
        if err_stream is not None:
            kwargs["hide"] = "stdout"
            kwargs["err_stream"] = err_stream

        full_command = command
        if cwd:
            full_command = f"cd {shlex.quote(str(cwd))} && {command}"

        try:
            result = self.run(full_command, **kwargs)
        except CommandTimedOut as e:
            result = e.result
            result.exited = -1

        if check and result.exited != 0:
            raise ExecError.from_result(command, result)

        return result
