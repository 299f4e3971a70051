"""Tests for the LLM conflict auto-fix hook."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from pydantic_ai.exceptions import UnexpectedModelBehavior

from backport.core.config import LLMConfig
from backport.model.resolver import ConflictResolver, create_llm_auto_fix

CONFLICTED = "a\n<<<<<<< HEAD\nours\n=======\ntheirs\n>>>>>>> abcdef1\nb\n"


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.ts").write_text(CONFLICTED)
    return tmp_path


def run_hook(repo, logger, runner, resolve):
    hook = create_llm_auto_fix(LLMConfig(model="test"), runner=runner)
    with patch.object(ConflictResolver, "resolve", resolve):
        return asyncio.run(hook(
            files=[str(repo / "src" / "a.ts")],
            directory=repo,
            target_branch="7.x",
            logger=logger,
        ))


def test_resolved_files_are_staged(repo, logger, runner):
    async def resolve(self, workspace):
        assert workspace.conflict_files == ["src/a.ts"]
        assert workspace.target_branch == "7.x"
        (workspace.workdir / "src" / "a.ts").write_text("a\nours\nb\n")
        return "done"

    assert run_hook(repo, logger, runner, resolve) is True
    assert runner.calls == ["git add -A -- src/a.ts"]
    assert runner.cwds == [repo]


def test_remaining_markers_fail_the_hook(repo, logger, runner):
    assert run_hook(repo, logger, runner, AsyncMock(return_value="gave up")) is False
    assert runner.calls == []


def test_agent_errors_fail_the_hook(repo, logger, runner):
    resolve = AsyncMock(side_effect=UnexpectedModelBehavior("too many retries"))

    assert run_hook(repo, logger, runner, resolve) is False
    assert runner.calls == []


def test_staging_failure_fails_the_hook(repo, logger, runner):
    runner.on("git add", stderr="fatal: index.lock exists", exited=128)

    async def resolve(self, workspace):
        (workspace.workdir / "src" / "a.ts").write_text("a\nb\n")

    assert run_hook(repo, logger, runner, resolve) is False


def test_api_key_is_redacted(logger):
    ConflictResolver(LLMConfig(model="test", api_key="sk-secret"), logger)
    assert logger.scrub("key sk-secret") == "key <REDACTED>"
