"""Application state and configuration."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from backport.core.base import BaseConfig, BaseState
from backport.core.log import Logger
from backport.core.models import BackportOperation, BackportResult, Commit
from backport.core.yaml_settings import YamlWithIncludesSettingsSource

# Usage in YAML: {platformdirs.user_data_dir}, {os.getcwd}, {Path.cwd}
TEMPLATE_NAMESPACE = {
    'os': os,
    'platformdirs': platformdirs,
    'Path': Path,
}


# ============================================================
# CONFIG MODELS (loaded from YAML/env/CLI)
# ============================================================

class GithubConfig(BaseConfig):
    """Repository coordinates and GitHub credentials."""

    repo_owner: str = Field(
        description="Owner of the upstream repository (e.g. 'elastic')"
    )
    repo_name: str = Field(
        description="Name of the upstream repository (e.g. 'kibana')"
    )
    access_token: str | None = Field(
        default=None,
        description=(
            "GitHub personal access token. Used for the API and embedded "
            "in git remote URLs; it is redacted from all output."
        ),
    )
    authenticated_username: str | None = Field(
        default=None,
        description=(
            "Login of the token owner. Looked up through the API when "
            "not set."
        ),
    )
    git_hostname: str = Field(
        default="github.com",
        description="Hostname used in git remote URLs",
    )
    api_base_url_v3: str = Field(
        default="https://api.github.com",
        description="REST API base URL",
    )
    api_base_url_v4: str = Field(
        default="https://api.github.com/graphql",
        description="GraphQL API URL",
    )


class BackportConfig(BaseConfig):
    """Every option that changes how a backport runs."""

    source_branch: str | None = Field(
        default=None,
        description=(
            "Branch the commits are taken from; the repository's "
            "default branch when unset"
        ),
    )
    target_branches: list[str] = Field(
        default_factory=list,
        description=(
            "Branches to backport to. When empty, branches with a "
            "missing backport (see branch_label_mapping) are used."
        ),
    )
    branch_label_mapping: dict[str, str] = Field(
        default_factory=dict,
        description=(
            "Regex of a source pull request label mapped to a target "
            "branch; the replacement may use groups (e.g. "
            "'^v(\\d+).(\\d+).\\d+$': '$1.$2')"
        ),
    )
    author: str | None = Field(
        default=None,
        description="Only consider commits by this GitHub login",
    )
    max_number: int = Field(
        default=10,
        description="Number of commits to fetch when selecting by author",
    )
    pull_number: int | None = Field(
        default=None,
        description="Backport the merge commit of this pull request",
    )
    sha: str | None = Field(
        default=None,
        description="Backport this commit",
    )
    commit_paths: list[str] = Field(
        default_factory=list,
        description="Only consider commits touching these paths",
    )
    mainline: int | None = Field(
        default=None,
        description="Parent number to use when cherry-picking merges",
    )
    cherrypick_ref: bool = Field(
        default=True,
        description=(
            "Append '(cherry picked from commit ...)' to messages (-x)"
        ),
    )
    ci: bool = Field(
        default=False,
        description=(
            "Unattended mode: never prompt, fail on unresolved conflicts"
        ),
    )
    fork: bool = Field(
        default=True,
        description="Push backport branches to the user's fork",
    )
    no_verify: bool = Field(
        default=True,
        description="Skip commit hooks when finalizing a cherry-pick",
    )
    reset_author: bool = Field(
        default=False,
        description="Set the authenticated user as author of the result",
    )
    editor: str | None = Field(
        default=None,
        description="Editor command opened on the repository on conflict",
    )
    auto_fix_conflicts: str | None = Field(
        default=None,
        description=(
            "Import path 'package.module:function' of an async conflict "
            "auto-fix hook; 'llm' uses the built-in LLM resolver"
        ),
    )
    assignees: list[str] = Field(default_factory=list)
    auto_assign: bool = Field(
        default=False,
        description="Assign the authenticated user to the pull request",
    )
    reviewers: list[str] = Field(default_factory=list)
    target_pr_labels: list[str] = Field(
        default_factory=list,
        description="Labels added to the backport pull request",
    )
    source_pr_labels: list[str] = Field(
        default_factory=list,
        description="Labels added to the source pull requests",
    )
    auto_merge: bool = Field(
        default=False,
        description="Enable auto-merge on the backport pull request",
    )
    auto_merge_method: Literal["merge", "rebase", "squash"] = Field(
        default="merge",
    )
    publish_status_comment: bool = Field(
        default=True,
        description=(
            "Comment the backport results on the source pull request"
        ),
    )
    pr_title: str = Field(
        default="[{targetBranch}] {commitMessages}",
        description="Pull request title template",
    )
    pr_description: str | None = Field(
        default=None,
        description=(
            "Pull request body template; {defaultPrDescription} and "
            "{commitMessages} are substituted"
        ),
    )
    repositories_dir: Path = Field(
        default_factory=lambda: (
            Path(platformdirs.user_data_dir("backport", appauthor=False))
            / "repositories"
        ),
        description="Directory holding the local clones",
    )


class LLMConfig(BaseConfig):
    """LLM used by the built-in conflict auto-fix hook."""

    model: str = Field(
        description=(
            "Model in 'provider:model' form (e.g. openai:gpt-4o)"
        )
    )
    api_key: str | None = Field(
        default=None,
        description=(
            "API key; providers fall back to their own environment "
            "variables (OPENAI_API_KEY, ...)"
        ),
    )
    base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints",
    )
    retries: int = Field(
        default=5,
        description="Tool retries the agent may use",
    )
    system_prompt: str | None = Field(default=None)


class Config(BaseConfig):
    """Application configuration loaded from YAML/env/CLI."""

    logger: Logger = Field(
        default_factory=Logger,
        description="Logger configuration and runtime instance",
    )
    github: GithubConfig = Field(
        description="Repository and credentials"
    )
    backport: BackportConfig = Field(
        default_factory=BackportConfig,
        description="Backport behaviour",
    )
    llm: LLMConfig | None = Field(
        default=None,
        description="LLM settings for auto_fix_conflicts: llm",
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir(
                "backport", appauthor=False
            ))
        ),
        description="Root directory for log files",
    )

    @property
    def repo_owner_path(self) -> Path:
        return self.backport.repositories_dir / self.github.repo_owner

    @property
    def repo_path(self) -> Path:
        """Working directory of the local clone."""
        return self.repo_owner_path / self.github.repo_name

    @property
    def fork_owner(self) -> str:
        """Owner of the repository backport branches are pushed to."""
        if self.backport.fork and self.github.authenticated_username:
            return self.github.authenticated_username
        return self.github.repo_owner

    @property
    def run_name(self) -> str:
        return f"backport-{self.github.repo_owner}-{self.github.repo_name}"


# ============================================================
# RUNTIME STATE MODELS (mutable during workflow execution)
# ============================================================

class BackportState(BaseState):
    """State of the target branch currently being processed.

    This is the state object of the cherry-pick graph. A fresh
    instance is used for every target branch.
    """

    operation: BackportOperation | None = Field(
        default=None,
        description="Operation owning the working directory",
    )
    status: str = Field(
        default="pending",
        description=(
            "pending, branch-created, picking, resolving, pushed, "
            "published"
        ),
    )
    picked: list[str] = Field(
        default_factory=list,
        description="Shas applied so far, in order",
    )
    resolution_attempts: int = Field(
        default=0,
        description="Prompts shown by the last conflict resolution",
    )

    model_config = ConfigDict(arbitrary_types_allowed=True)


class RunState(BaseState):
    """State of a whole `backport run` invocation."""

    commits: list[Commit] = Field(default_factory=list)
    target_branches: list[str] = Field(default_factory=list)
    results: list[BackportResult] = Field(default_factory=list)


class Runtime(BaseModel):
    """Container for runtime state, one section per command."""

    run: RunState = Field(default_factory=RunState)


# ============================================================
# STATE (config + runtime combined)
# ============================================================

class State(BaseSettings):
    """Complete application state: configuration and runtime.

    Loads from YAML files, environment variables (BACKPORT_ prefix,
    '__' for nesting) and CLI arguments, validating everything on
    load.
    """

    config: Config = Field(
        description="Application configuration (from YAML/env/CLI)"
    )
    runtime: Runtime = Field(
        default_factory=Runtime,
        description="Runtime state",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to include and merge "
            "(--include on CLI or include: in YAML files)"
        ),
    )

    model_config = SettingsConfigDict(
        yaml_file="backport.yaml",
        env_file=".env",
        env_prefix="BACKPORT_",
        env_nested_delimiter="__",
        cli_parse_args=True,
        cli_implicit_flags=True,
        cli_use_class_docs_for_groups=True,
        arbitrary_types_allowed=True,
        extra='ignore'
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority, highest first: init kwargs, YAML, .env, env,
        file secrets."""
        return (
            init_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def substitute_templates(self) -> "State":
        """Replace {config.…} and {platformdirs.…} templates in every
        string and Path field."""
        self._substitute_recursive(self)
        return self

    def _substitute_recursive(self, obj: Any) -> None:
        if isinstance(obj, BaseModel):
            for field_name in obj.__class__.model_fields:
                value = getattr(obj, field_name)
                new_value = self._substitute_value(value)
                if new_value is not value and new_value != value:
                    setattr(obj, field_name, new_value)
        elif isinstance(obj, dict):
            for key in obj:
                obj[key] = self._substitute_value(obj[key])
        elif isinstance(obj, list):
            for i in range(len(obj)):
                obj[i] = self._substitute_value(obj[i])

    def _substitute_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._substitute_string(value)
        elif isinstance(value, Path):
            substituted = self._substitute_string(str(value))
            return value if substituted == str(value) else Path(substituted)
        elif isinstance(value, (BaseModel, dict, list)):
            self._substitute_recursive(value)
        return value

    def _substitute_string(self, value: str) -> str:
        """Examples:
            "{config.backport.repositories_dir}/extra"
            "{platformdirs.user_cache_dir}"
        """
        def replace_template(match):
            parts = match.group(1).split(".")

            if parts[0] in TEMPLATE_NAMESPACE:
                obj = TEMPLATE_NAMESPACE[parts[0]]
                parts = parts[1:]
            else:
                obj = self

            try:
                for part in parts:
                    obj = getattr(obj, part)

                if callable(obj):
                    obj = obj('backport', appauthor=False)

                return str(obj)
            except (AttributeError, TypeError):
                return match.group(0)

        return re.sub(r'\{([a-z_]+(?:\.[a-z_]+)+)\}', replace_template, value)


__all__ = [
    "BackportConfig",
    "BackportState",
    "Config",
    "GithubConfig",
    "LLMConfig",
    "RunState",
    "State",
]
