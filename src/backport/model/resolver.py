"""Conflict auto-fix hook backed by a pydantic-ai agent."""

from __future__ import annotations

import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic_ai import Agent, providers
from pydantic_ai.exceptions import AgentRunError

from backport.core.config import LLMConfig
from backport.core.log import Logger
from backport.core.runner import ExecError, Runner
from backport.tools import workspace_tools
from backport.tools.workspace import Workspace, has_conflict_markers

DEFAULT_SYSTEM_PROMPT = (
    "You resolve git cherry-pick conflicts while backporting a commit to "
    "an older release branch. 'ours' is the release branch, 'theirs' is "
    "the commit being backported. Keep the intent of the backported "
    "commit while staying compatible with the release branch. Remove "
    "every conflict marker and call submit_resolution for each file."
)


@contextmanager
def inject_provider_params(llm_config: LLMConfig) -> Iterator[None]:
    """Pass api_key/base_url to the provider pydantic-ai infers.

    pydantic-ai builds providers from the model name alone; this
    temporarily swaps its infer_provider so the configured key and
    endpoint reach the provider constructor.
    """
    kwargs = {}
    if llm_config.api_key:
        kwargs['api_key'] = llm_config.api_key
    if llm_config.base_url:
        kwargs['base_url'] = llm_config.base_url

    if not kwargs:
        yield
        return

    original_infer_provider = providers.infer_provider

    def patched_infer_provider(provider_name: str):
        provider_class = providers.infer_provider_class(provider_name)
        return provider_class(**kwargs)

    try:
        providers.infer_provider = patched_infer_provider
        yield
    finally:
        providers.infer_provider = original_infer_provider


class ConflictResolver:
    """Runs the resolver agent over a workspace."""

    def __init__(self, llm_config: LLMConfig, logger: Logger):
        self.llm_config = llm_config
        self.logger = logger
        logger.redact(llm_config.api_key)

    def _create_agent(self) -> Agent:
        with inject_provider_params(self.llm_config):
            return Agent(
                self.llm_config.model,
                deps_type=Workspace,
                tools=workspace_tools,
                system_prompt=(
                    self.llm_config.system_prompt or DEFAULT_SYSTEM_PROMPT
                ),
                retries=self.llm_config.retries,
            )

    @staticmethod
    def _build_prompt(workspace: Workspace) -> str:
        files = ', '.join(workspace.conflict_files)
        return (
            f"Backporting to {workspace.target_branch}. Resolve the "
            f"conflicts in these files: {files}"
        )

    def _log_message_history(self, messages: list) -> None:
        self.logger.debug(
            f"LLM conversation: {len(messages)} messages",
            message_count=len(messages),
        )
        for i, message in enumerate(messages, 1):
            for part in getattr(message, 'parts', []):
                self.logger.trace(
                    f"Message {i} {type(part).__name__}",
                    content=str(getattr(part, 'content', ''))[:2000],
                    tool_name=getattr(part, 'tool_name', None) or '',
                )

    async def resolve(self, workspace: Workspace) -> str:
        """Run the agent until it stops calling tools.

        Returns:
            The agent's final answer

        Raises:
            AgentRunError: If the model misbehaves or runs out of retries
        """
        prompt = self._build_prompt(workspace)
        self.logger.info(
            "Sending prompt to LLM",
            model=self.llm_config.model,
            prompt=prompt,
        )
        agent = self._create_agent()
        result = await agent.run(prompt, deps=workspace)
        self._log_message_history(result.all_messages())
        return result.output


def _stage(workspace: Workspace) -> None:
    paths = ' '.join(shlex.quote(f) for f in workspace.conflict_files)
    workspace.runner.execute(f"git add -A -- {paths}", cwd=workspace.workdir)


def _relative(files: list[str], directory: Path) -> list[str]:
    relative = []
    for f in files:
        path = Path(f)
        if path.is_absolute():
            path = path.relative_to(directory)
        relative.append(str(path))
    return relative


def create_llm_auto_fix(llm_config: LLMConfig, runner: Runner | None = None):
    """Build an auto-fix hook that asks an LLM to resolve conflicts.

    The hook reports success only when every conflicted file is free of
    conflict markers afterwards; the files are then staged.
    """

    async def auto_fix(
        files: list[str],
        directory: Path,
        target_branch: str,
        logger: Logger,
    ) -> bool:
        directory = Path(directory)
        workspace = Workspace(
            workdir=directory,
            conflict_files=_relative(files, directory),
            target_branch=target_branch,
            logger=logger,
            runner=runner or Runner(),
        )

        with logger.span("LLM conflict resolution", target_branch=target_branch):
            try:
                await ConflictResolver(llm_config, logger).resolve(workspace)
            except AgentRunError as e:
                logger.warn("LLM could not resolve conflicts", error=str(e))
                return False

        unresolved = [
            f for f in workspace.conflict_files
            if (directory / f).is_file()
            and has_conflict_markers((directory / f).read_text(encoding="utf-8"))
        ]
        if unresolved:
            logger.warn("Conflict markers remain", files=unresolved)
            return False

        try:
            _stage(workspace)
        except ExecError as e:
            logger.warn("Could not stage resolved files", stderr=e.stderr)
            return False
        return True

    return auto_fix


__all__ = ["ConflictResolver", "create_llm_auto_fix", "inject_provider_params"]
