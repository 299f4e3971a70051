"""Workspace and file tools for LLM conflict resolution."""

from __future__ import annotations

import json
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic_ai import RunContext
from pydantic_ai.exceptions import ModelRetry

from backport.core.log import Logger
from backport.core.runner import ExecError, Runner

CONFLICT_MARKERS = ('<<<<<<<', '=======', '>>>>>>>')
LARGE_READ_LINES = 200

# Index stages of a conflicted path during a cherry-pick
STAGES = {
    'base': 1,
    'ours': 2,    # the target branch
    'theirs': 3,  # the commit being picked
}


@dataclass
class Workspace:
    """Working directory of a cherry-pick that stopped on conflicts.

    Attributes:
        workdir: Repository root
        conflict_files: Conflicted paths, relative to workdir
        target_branch: Branch the commit is being backported to
    """

    workdir: Path
    conflict_files: list[str]
    target_branch: str
    logger: Logger
    runner: Runner = field(default_factory=Runner)

    def resolve(self, filepath: str) -> Path:
        """Absolute path of filepath; paths outside workdir are refused.

        Raises:
            ModelRetry: If filepath escapes the workspace
        """
        path = (self.workdir / filepath).resolve()
        if not path.is_relative_to(self.workdir.resolve()):
            raise ModelRetry(
                f"'{filepath}' is outside the workspace. Use paths "
                f"relative to the repository root."
            )
        return path


def has_conflict_markers(content: str) -> bool:
    return any(
        line.startswith(CONFLICT_MARKERS) for line in content.splitlines()
    )


def read_file(
    ctx: RunContext[Workspace],
    filepath: str,
    start_line: int = 1,
    num_lines: int = 50,
    confirm_large: bool = False
) -> str:
    """Read file with line numbers.

    Args:
        filepath: Path to file (relative to workspace)
        start_line: First line to read (1-indexed)
        num_lines: Number of lines to read (default 50, use -1
            for entire file)
        confirm_large: Confirm reading >200 lines

    Returns:
        File content with line numbers: "1: content\\n2: content\\n..."

    Raises:
        ModelRetry: If file not found or cannot be read
    """
    file_path = ctx.deps.resolve(filepath)

    if not file_path.is_file():
        raise ModelRetry(
            f"File '{filepath}' not found in workspace. Conflicted files: "
            f"{', '.join(ctx.deps.conflict_files)}"
        )

    try:
        lines = file_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ModelRetry(f"Failed to read '{filepath}': {e}") from e

    if num_lines == -1:
        selected = lines[start_line - 1:]
    else:
        selected = lines[start_line - 1:start_line - 1 + num_lines]

    if len(selected) > LARGE_READ_LINES and not confirm_large:
        raise ModelRetry(
            f"File '{filepath}' has {len(lines)} total lines. You "
            f"requested {len(selected)} lines. If you really need this, "
            f"call read_file with confirm_large=True, or read the section "
            f"around the conflict markers."
        )

    return "\n".join(
        f"{i}: {line}" for i, line in enumerate(selected, start=start_line)
    )


def show_version(
    ctx: RunContext[Workspace],
    filepath: str,
    version: str,
) -> str:
    """Show one side of a conflicted file.

    Args:
        filepath: Path to a conflicted file (relative to workspace)
        version: 'ours' (the target branch), 'theirs' (the commit
            being backported) or 'base' (their common ancestor)

    Returns:
        The file content at that version

    Raises:
        ModelRetry: If the version is unknown or doesn't exist
    """
    if version not in STAGES:
        raise ModelRetry(
            f"Unknown version '{version}'. Use one of: "
            f"{', '.join(STAGES)}"
        )
    ctx.deps.resolve(filepath)

    command = f"git show :{STAGES[version]}:{shlex.quote(filepath)}"
    try:
        result = ctx.deps.runner.execute(command, cwd=ctx.deps.workdir)
    except ExecError as e:
        raise ModelRetry(
            f"No '{version}' version of '{filepath}': {e.stderr.strip()}"
        ) from e
    return result.stdout


def write_file(
    ctx: RunContext[Workspace],
    filepath: str,
    content: str,
) -> str:
    """Create or completely replace a file.

    Args:
        filepath: Path to file (relative to workspace)
        content: File content to write

    Returns:
        Confirmation message with file size

    Raises:
        ModelRetry: If file cannot be written
    """
    file_path = ctx.deps.resolve(filepath)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        file_path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ModelRetry(f"Failed to write '{filepath}': {e}") from e

    line_count = len(content.splitlines())
    byte_count = len(content.encode('utf-8'))
    return f"Wrote {byte_count} bytes ({line_count} lines) to {filepath}"


def submit_resolution(
    ctx: RunContext[Workspace],
    filepath: str,
    confirm_empty: bool = False,
    skip_syntax_check: bool = False
) -> str:
    """Submit a resolved file after validating it.

    Checks that no conflict markers remain, that the file isn't
    accidentally empty, and that JSON/YAML/Python files still parse.

    Args:
        filepath: Path to resolved file
        confirm_empty: Confirm an empty file is intentional
        skip_syntax_check: Skip syntax validation

    Returns:
        Confirmation message

    Raises:
        ModelRetry: If validation fails, with fix instructions
    """
    file_path = ctx.deps.resolve(filepath)

    if not file_path.exists():
        return f"File {filepath} does not exist (deleted)."

    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ModelRetry(f"Failed to read '{filepath}': {e}") from e

    if has_conflict_markers(content):
        raise ModelRetry(
            f"'{filepath}' still contains conflict markers. Remove all "
            f"of them before submitting."
        )

    if not content.strip() and not confirm_empty:
        raise ModelRetry(
            f"Resolution file '{filepath}' is empty. If intentional, call "
            f"submit_resolution with confirm_empty=True."
        )

    if not skip_syntax_check:
        _check_syntax(filepath, content)

    line_count = len(content.splitlines())
    return f"Resolution validated for {filepath}: {line_count} lines."


def _check_syntax(filepath: str, content: str) -> None:
    if filepath.endswith('.py'):
        try:
            compile(content, filepath, 'exec')
        except SyntaxError as e:
            raise ModelRetry(
                f"Python syntax error at line {e.lineno}: {e.msg}"
            ) from e

    elif filepath.endswith('.json'):
        try:
            json.loads(content)
        except json.JSONDecodeError as e:
            raise ModelRetry(
                f"JSON syntax error at line {e.lineno}: {e.msg}"
            ) from e

    elif filepath.endswith(('.yaml', '.yml')):
        try:
            yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ModelRetry(f"YAML syntax error: {e}") from e


__all__ = [
    "Workspace",
    "has_conflict_markers",
    "read_file",
    "show_version",
    "submit_resolution",
    "write_file",
]
