"""Pytest configuration and fixtures for backport tests."""

import sys
from pathlib import Path

import logfire
import pytest
from invoke import Result

from backport.core.config import BackportConfig, Config, GithubConfig
from backport.core.log import ConsoleSink, FileSink, Logger, OTLPSink
from backport.core.models import Commit
from backport.core.runner import ExecError


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Configure logfire once, without console output or cloud export."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture
def logger():
    """Logger with every sink disabled; echo() still prints."""
    return Logger(
        console=ConsoleSink(enabled=False),
        file=FileSink(enabled=False),
        otlp=OTLPSink(enabled=False),
        logfire={"enabled": False},
    )


@pytest.fixture
def config(tmp_path, logger):
    """Config for elastic/kibana with a fork owned by 'sqren'."""
    return Config(
        logger=logger,
        github=GithubConfig(
            repo_owner="elastic",
            repo_name="kibana",
            access_token="myAccessToken",
            authenticated_username="sqren",
        ),
        backport=BackportConfig(
            source_branch="main",
            repositories_dir=tmp_path / "repositories",
        ),
        log_root=tmp_path / "logs",
    )


@pytest.fixture
def mock_argv():
    """Save and restore sys.argv."""
    original = sys.argv.copy()
    yield
    sys.argv = original


def make_commit(
    sha: str = "abcdef1234567890",
    message: str = "Add feature (#10)",
    committed_date: str = "2020-08-15T12:40:19Z",
    pull_number: int | None = 10,
    **kwargs,
) -> Commit:
    """Commit with sensible defaults for tests."""
    return Commit(
        sha=sha,
        original_message=message,
        committed_date=committed_date,
        source_branch=kwargs.pop("source_branch", "main"),
        pull_number=pull_number,
        pull_url=kwargs.pop(
            "pull_url",
            f"https://github.com/elastic/kibana/pull/{pull_number}"
            if pull_number else None,
        ),
        **kwargs,
    )


class FakeRunner:
    """Runner stand-in that answers commands from canned results.

    Responses are matched by command prefix, most recently added first,
    so a test can override a default. Unmatched commands succeed with
    empty output. Every executed command is recorded in `calls`.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.cwds: list[Path | None] = []
        self._responses: list[tuple[str, list[tuple[str, str, int]]]] = []

    def on(self, prefix: str, stdout: str = "", stderr: str = "",
           exited: int = 0) -> "FakeRunner":
        """Answer commands starting with prefix.

        Calling on() again with the same prefix queues another answer;
        the last queued answer repeats once the others are used.
        """
        for existing_prefix, answers in self._responses:
            if existing_prefix == prefix:
                answers.append((stdout, stderr, exited))
                return self
        self._responses.insert(0, (prefix, [(stdout, stderr, exited)]))
        return self

    def execute(self, command, cwd=None, timeout=None, check=True,
                env=None, err_stream=None):
        self.calls.append(command)
        self.cwds.append(cwd)

        stdout, stderr, exited = "", "", 0
        for prefix, answers in self._responses:
            if command.startswith(prefix):
                stdout, stderr, exited = (
                    answers.pop(0) if len(answers) > 1 else answers[0]
                )
                break

        if err_stream is not None and stderr:
            err_stream.write(stderr)

        result = Result(stdout=stdout, stderr=stderr, exited=exited)
        if check and exited != 0:
            raise ExecError.from_result(command, result)
        return result


@pytest.fixture
def runner():
    return FakeRunner()
