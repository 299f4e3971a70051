"""Tests for the conflict resolution workspace tools."""

from unittest.mock import Mock

import pytest
from pydantic_ai import RunContext
from pydantic_ai.exceptions import ModelRetry

from backport.tools import workspace_tools
from backport.tools.workspace import (
    Workspace,
    has_conflict_markers,
    read_file,
    show_version,
    submit_resolution,
    write_file,
)

CONFLICTED = (
    "before\n<<<<<<< HEAD\nours\n=======\ntheirs\n"
    ">>>>>>> abcdef1 (Add feature)\nafter\n"
)


@pytest.fixture
def workspace(tmp_path, logger, runner):
    (tmp_path / "test.py").write_text("line 1\nline 2\nline 3\n")
    (tmp_path / "conflict.py").write_text(CONFLICTED)
    return Workspace(
        workdir=tmp_path,
        conflict_files=["conflict.py"],
        target_branch="7.x",
        logger=logger,
        runner=runner,
    )


@pytest.fixture
def ctx(workspace):
    ctx = Mock(spec=RunContext)
    ctx.deps = workspace
    return ctx


def test_read_file_numbers_lines(ctx):
    assert read_file(ctx, "test.py") == "1: line 1\n2: line 2\n3: line 3"


def test_read_file_range(ctx):
    assert read_file(ctx, "test.py", start_line=2, num_lines=1) == "2: line 2"


def test_read_missing_file_lists_conflicts(ctx):
    with pytest.raises(ModelRetry, match="conflict.py"):
        read_file(ctx, "missing.py")


def test_read_large_file_needs_confirmation(ctx, workspace):
    (workspace.workdir / "big.txt").write_text(
        "\n".join(f"line {i}" for i in range(300))
    )

    with pytest.raises(ModelRetry, match="confirm_large"):
        read_file(ctx, "big.txt", num_lines=-1)

    output = read_file(ctx, "big.txt", num_lines=-1, confirm_large=True)
    assert output.endswith("300: line 299")


def test_paths_outside_workspace_are_refused(ctx):
    with pytest.raises(ModelRetry, match="outside the workspace"):
        read_file(ctx, "../etc/passwd")


def test_show_version_reads_index_stage(ctx, runner, workspace):
    runner.on("git show :3:conflict.py", stdout="theirs\n")

    assert show_version(ctx, "conflict.py", "theirs") == "theirs\n"
    assert runner.calls == ["git show :3:conflict.py"]
    assert runner.cwds == [workspace.workdir]


def test_show_version_unknown(ctx):
    with pytest.raises(ModelRetry, match="ours, theirs"):
        show_version(ctx, "conflict.py", "mine")


def test_show_version_missing_stage(ctx, runner):
    runner.on(
        "git show :1:",
        stderr="fatal: path 'conflict.py' is in the index, but not at stage 1",
        exited=128,
    )

    with pytest.raises(ModelRetry, match="No 'base' version"):
        show_version(ctx, "conflict.py", "base")


def test_write_file(ctx, workspace):
    message = write_file(ctx, "sub/new.txt", "a\nb\n")

    assert (workspace.workdir / "sub" / "new.txt").read_text() == "a\nb\n"
    assert message == "Wrote 4 bytes (2 lines) to sub/new.txt"


def test_submit_with_markers_is_rejected(ctx):
    with pytest.raises(ModelRetry, match="conflict markers"):
        submit_resolution(ctx, "conflict.py")


def test_submit_resolved_file(ctx):
    write_file(ctx, "conflict.py", "before\nours\ntheirs\nafter\n")
    assert submit_resolution(ctx, "conflict.py") == (
        "Resolution validated for conflict.py: 4 lines."
    )


def test_submit_empty_file_needs_confirmation(ctx):
    write_file(ctx, "conflict.py", "")

    with pytest.raises(ModelRetry, match="confirm_empty"):
        submit_resolution(ctx, "conflict.py")

    assert "validated" in submit_resolution(ctx, "conflict.py", confirm_empty=True)


@pytest.mark.parametrize("filepath,content", [
    ("bad.py", "def broken(:\n"),
    ("bad.json", "{\"a\": }"),
    ("bad.yaml", "a: [1, 2\n"),
])
def test_submit_checks_syntax(ctx, filepath, content):
    write_file(ctx, filepath, content)

    with pytest.raises(ModelRetry, match="syntax error"):
        submit_resolution(ctx, filepath)

    assert "validated" in submit_resolution(
        ctx, filepath, skip_syntax_check=True
    )


def test_submit_deleted_file(ctx):
    assert "deleted" in submit_resolution(ctx, "gone.py")


def test_conflict_markers_only_at_line_start():
    assert has_conflict_markers(CONFLICTED)
    assert not has_conflict_markers("x = '<<<<<<< not a marker'\n")


def test_tools_keep_their_names_and_docs():
    names = [tool.__name__ for tool in workspace_tools]
    assert names == [
        "read_file", "show_version", "write_file", "submit_resolution",
    ]
    assert all(tool.__doc__ for tool in workspace_tools)


def test_logged_tool_reraises_model_retry(ctx):
    logged_read_file = workspace_tools[0]

    assert logged_read_file(ctx, "test.py", num_lines=1) == "1: line 1"
    with pytest.raises(ModelRetry):
        logged_read_file(ctx, "missing.py")
