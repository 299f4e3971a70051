"""Collaborators shared by every node of the cherry-pick graph."""

from __future__ import annotations

import asyncio
import importlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import click

from backport.core.config import Config
from backport.core.errors import ConfigurationError
from backport.core.log import Logger
from backport.git.gateway import GitGateway
from backport.github.commits import CommitSource
from backport.github.pulls import PullRequestPublisher

# async (text) -> bool; False aborts the backport
ConfirmPrompt = Callable[[str], Awaitable[bool]]

# async (files=, directory=, target_branch=, logger=) -> bool
AutoFixHook = Callable[..., Awaitable[bool]]

LLM_AUTO_FIX = "llm"


async def click_confirm(text: str) -> bool:
    """Ask on the terminal without blocking the event loop."""
    return await asyncio.to_thread(click.confirm, text, default=True)


def load_auto_fix_hook(config: Config) -> AutoFixHook | None:
    """Resolve backport.auto_fix_conflicts to a callable.

    Accepts "llm" for the built-in resolver or "package.module:function".

    Raises:
        ConfigurationError: If the hook cannot be loaded
    """
    hook_path = config.backport.auto_fix_conflicts
    if not hook_path:
        return None

    if hook_path == LLM_AUTO_FIX:
        if config.llm is None:
            raise ConfigurationError(
                "auto_fix_conflicts is 'llm' but no llm section is "
                "configured (--config.llm.model provider:model)"
            )
        from backport.model.resolver import create_llm_auto_fix
        return create_llm_auto_fix(config.llm)

    module_name, _, attribute = hook_path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            f'Invalid auto_fix_conflicts "{hook_path}": expected '
            f'"package.module:function"'
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f'Could not import auto_fix_conflicts module "{module_name}": {e}'
        ) from e

    hook = getattr(module, attribute, None)
    if not callable(hook):
        raise ConfigurationError(
            f'"{attribute}" in "{module_name}" is not callable'
        )
    return hook


@dataclass
class BackportDeps:
    """Dependencies of the cherry-pick graph (pydantic-graph deps)."""

    config: Config
    logger: Logger
    gateway: GitGateway
    commit_source: CommitSource
    publisher: PullRequestPublisher
    confirm: ConfirmPrompt = click_confirm
    auto_fix: AutoFixHook | None = None

    @property
    def repo_path(self) -> Path:
        return self.config.repo_path


__all__ = [
    "AutoFixHook",
    "BackportDeps",
    "ConfirmPrompt",
    "click_confirm",
    "load_auto_fix_hook",
]
