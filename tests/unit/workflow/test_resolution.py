"""Tests for the manual conflict resolution loop."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from backport.core.errors import AbortedError, RetryLimitExceededError
from backport.core.models import ConflictFile
from backport.workflow.resolution import (
    MAX_RETRIES,
    ConflictResolutionLoop,
    ResolutionState,
    format_prompt,
)


def conflict(path):
    return ConflictFile(absolute=f"/repo/{path}", relative=path)


def make_gateway(conflicting=(), unstaged=()):
    """Gateway whose working tree reports the given lists, in turn.

    Each argument is a list of per-check answers; the last one repeats.
    """
    gateway = Mock()
    gateway.get_conflicting_files = AsyncMock(side_effect=_repeat_last(
        [[conflict(p) for p in answer] for answer in conflicting] or [[]]
    ))
    gateway.get_unstaged_files = AsyncMock(side_effect=_repeat_last(
        [list(answer) for answer in unstaged] or [[]]
    ))
    return gateway


def _repeat_last(answers):
    answers = list(answers)

    def next_answer(*args, **kwargs):
        return answers.pop(0) if len(answers) > 1 else answers[0]

    return next_answer


def test_nothing_to_resolve_does_not_prompt(logger):
    confirm = AsyncMock(return_value=True)
    loop = ConflictResolutionLoop(make_gateway(), confirm, logger)

    attempts = asyncio.run(loop.run([], []))

    assert attempts == 0
    confirm.assert_not_awaited()


def test_conflicting_files_are_not_reported_as_unstaged():
    state = ResolutionState(
        conflicting_files=["/repo/a"], unstaged_files=["/repo/a"]
    )
    assert state.has_unstaged_files is False
    assert state.needs_resolving is True


def test_unstaged_files_alone_need_resolving():
    state = ResolutionState(conflicting_files=[], unstaged_files=["/repo/b"])
    assert state.has_conflicting_files is False
    assert state.needs_resolving is True


def test_prompts_until_clean(logger):
    gateway = make_gateway(conflicting=[["a.txt"], []], unstaged=[["/repo/b"], []])
    confirm = AsyncMock(return_value=True)
    loop = ConflictResolutionLoop(gateway, confirm, logger)

    attempts = asyncio.run(loop.run(["/repo/a.txt"], ["/repo/a.txt"]))

    assert attempts == 2
    assert confirm.await_count == 2
    assert gateway.get_conflicting_files.await_count == 2
    assert gateway.get_unstaged_files.await_count == 2


def test_lists_are_read_again_after_each_confirmation(logger):
    gateway = make_gateway(conflicting=[["new.txt"], []])
    confirm = AsyncMock(return_value=True)
    loop = ConflictResolutionLoop(gateway, confirm, logger)

    asyncio.run(loop.run(["/repo/old.txt"], []))

    first_prompt = confirm.await_args_list[0].args[0]
    second_prompt = confirm.await_args_list[1].args[0]
    assert " - /repo/old.txt" in first_prompt
    assert " - /repo/new.txt" in second_prompt
    assert "old.txt" not in second_prompt


def test_declining_aborts(logger):
    confirm = AsyncMock(return_value=False)
    loop = ConflictResolutionLoop(make_gateway(), confirm, logger)

    with pytest.raises(AbortedError) as exc_info:
        asyncio.run(loop.run(["/repo/a.txt"], []))

    assert exc_info.value.message == "Aborted"


def test_gives_up_after_max_retries(logger):
    gateway = make_gateway(conflicting=[["a.txt"]])
    confirm = AsyncMock(return_value=True)
    loop = ConflictResolutionLoop(gateway, confirm, logger, max_retries=3)

    with pytest.raises(RetryLimitExceededError) as exc_info:
        asyncio.run(loop.run(["/repo/a.txt"], []))

    assert str(exc_info.value) == "Maximum number of retries (3) exceeded"
    # Confirmations 0..3 re-check the tree; the fifth one trips the cap
    assert confirm.await_count == 5
    assert gateway.get_conflicting_files.await_count == 4


def test_retry_limit_is_not_a_handled_error():
    from backport.core.errors import HandledError

    assert not issubclass(RetryLimitExceededError, HandledError)
    assert MAX_RETRIES == 100


def test_prompt_text():
    state = ResolutionState(
        conflicting_files=["/repo/a.txt"],
        unstaged_files=["/repo/a.txt", "/repo/b.txt"],
    )

    assert format_prompt(state) == (
        "Fix the following conflicts manually:\n\n"
        "Conflicting files:\n"
        " - /repo/a.txt\n"
        "Unstaged files:\n"
        " - /repo/a.txt\n"
        " - /repo/b.txt\n\n"
        "Press ENTER when the conflicts are resolved and files are staged"
    )


def test_prompt_text_without_unstaged_section():
    state = ResolutionState(
        conflicting_files=["/repo/a.txt"], unstaged_files=["/repo/a.txt"]
    )
    prompt = format_prompt(state)

    assert "Unstaged files" not in prompt
    assert "Conflicting files:\n - /repo/a.txt" in prompt
