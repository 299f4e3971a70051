"""Git primitives against the single local clone of a repository.

Every primitive runs in the same working directory, so callers must not
run two of them at the same time. The one exception is inspecting the
result of a single cherry-pick, where the conflict and unstaged file
listings are read-only and run concurrently.

Git reports most failures only as free text. Known failures are
recognised by matching diagnostic substrings (see the pattern tables
below) and turned into HandledError subclasses. This is a heuristic:
a git release that rewords a message silently turns a handled error
into a raw ExecError. The tables are covered by tests so such a change
shows up there.
"""

from __future__ import annotations

import asyncio
import re
import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from io import TextIOBase
from pathlib import Path

from invoke import Result

from backport.core.config import Config
from backport.core.errors import (
    CherrypickEmptyError,
    CherrypickMergeCommitError,
    CommitNotFoundError,
    ForkMissingError,
    HandledError,
    IdentityMissingError,
    InvalidBranchError,
)
from backport.core.log import Logger
from backport.core.models import CherrypickResult, Commit, ConflictFile
from backport.core.runner import ExecError, Runner
from backport.git.naming import short_sha

# `git diff --check` exits with 2 when it finds conflict markers
DIFF_CHECK_CONFLICT_EXIT_CODE = 2


@dataclass(frozen=True)
class DiagnosticPattern:
    """A known git diagnostic and the error it stands for.

    `substring` may contain {sha}, filled in with the commit being
    picked before matching.
    """

    substring: str
    build: Callable[[str, str], HandledError]
    ignore_case: bool = False

    def matches(self, text: str, sha: str = "") -> bool:
        needle = self.substring.format(sha=sha)
        if self.ignore_case:
            return needle.lower() in text.lower()
        return needle in text


CHERRYPICK_ERROR_PATTERNS: tuple[DiagnosticPattern, ...] = (
    DiagnosticPattern(
        "is a merge but no -m option was given",
        lambda sha, text: CherrypickMergeCommitError(),
    ),
    DiagnosticPattern(
        "The previous cherry-pick is now empty",
        lambda sha, text: CherrypickEmptyError(short_sha(sha)),
    ),
    DiagnosticPattern(
        "Please tell me who you are",
        lambda sha, text: IdentityMissingError(text),
    ),
    DiagnosticPattern(
        "bad object {sha}",
        lambda sha, text: CommitNotFoundError(sha),
    ),
)

BRANCH_ERROR_PATTERNS: tuple[DiagnosticPattern, ...] = (
    DiagnosticPattern(
        "couldn't find remote ref",
        lambda branch, text: InvalidBranchError(branch),
        ignore_case=True,
    ),
    DiagnosticPattern(
        "invalid refspec",
        lambda branch, text: InvalidBranchError(branch),
        ignore_case=True,
    ),
)

PUSH_REPOSITORY_NOT_FOUND = "repository not found"
NOTHING_TO_COMMIT = "nothing to commit"
EMPTY_COMMIT_MESSAGE = "Aborting commit due to empty commit message"


def classify(
    patterns: tuple[DiagnosticPattern, ...], text: str, subject: str
) -> HandledError | None:
    """Return the error for the first pattern found in text, if any."""
    for pattern in patterns:
        if pattern.matches(text, subject):
            return pattern.build(subject, text)
    return None


def diagnostic_text(error: ExecError) -> str:
    return "\n".join(part for part in (error.stderr, error.stdout) if part)


class CloneProgress(TextIOBase):
    """Stream that picks 'Receiving objects: NN%' out of git clone.

    git rewrites the progress line with carriage returns, so both \\r
    and \\n end a line here.
    """

    _pattern = re.compile(r"^Receiving objects:\s+(\d+)%")

    def __init__(self, callback: Callable[[str], None]):
        super().__init__()
        self._callback = callback
        self._buffer = ""

    def write(self, text: str) -> int:
        self._buffer += text
        *lines, self._buffer = re.split(r"[\r\n]", self._buffer)
        for line in lines:
            match = self._pattern.match(line)
            if match:
                self._callback(match.group(1))
        return len(text)


class GitGateway:
    """Git operations on the local clone of one repository.

    The clone lives at <repositories_dir>/<repo_owner>/<repo_name>.
    All methods are coroutines; the blocking git call runs in a worker
    thread.
    """

    def __init__(self, config: Config, logger: Logger, runner: Runner | None = None):
        self.config = config
        self.logger = logger
        self.runner = runner or Runner()
        logger.redact(config.github.access_token)

    @property
    def repo_path(self) -> Path:
        return self.config.repo_path

    @property
    def fork_owner(self) -> str:
        return self.config.fork_owner

    async def _exec(
        self, command: str, cwd: Path | None = None, **kwargs
    ) -> Result:
        self.logger.debug("Running git command", command=command)
        try:
            result = await asyncio.to_thread(
                self.runner.execute,
                command,
                cwd=cwd or self.repo_path,
                check=True,
                **kwargs,
            )
        except ExecError as e:
            self.logger.debug(
                "Git command failed",
                command=command,
                exited=e.exited,
                stdout=e.stdout,
                stderr=e.stderr,
            )
            raise
        self.logger.spew("Git command output", stdout=result.stdout)
        return result

    # --------------------------------------------------------
    # Repository setup
    # --------------------------------------------------------

    def remote_url(self, remote_owner: str) -> str:
        github = self.config.github
        credentials = (
            f"x-access-token:{github.access_token}@"
            if github.access_token else ""
        )
        return (
            f"https://{credentials}{github.git_hostname}/"
            f"{remote_owner}/{github.repo_name}.git"
        )

    def repo_exists(self) -> bool:
        return self.repo_path.is_dir()

    def delete_repo(self) -> None:
        if self.repo_exists():
            self.logger.info("Deleting local clone", path=str(self.repo_path))
            shutil.rmtree(self.repo_path)

    async def clone_repo(
        self, progress_callback: Callable[[str], None] | None = None
    ) -> None:
        owner_path = self.config.repo_owner_path
        owner_path.mkdir(parents=True, exist_ok=True)
        kwargs = {}
        if progress_callback:
            kwargs["err_stream"] = CloneProgress(progress_callback)
        await self._exec(
            f"git clone {shlex.quote(self.remote_url(self.config.github.repo_owner))}"
            f" --progress",
            cwd=owner_path,
            **kwargs,
        )

    async def setup_repo(
        self, progress_callback: Callable[[str], None] | None = None
    ) -> None:
        """Clone when missing and point remotes at owner and fork."""
        if not self.repo_exists():
            self.logger.info("Cloning repository", path=str(self.repo_path))
            await self.clone_repo(progress_callback)

        await self.delete_remote("origin")
        await self.delete_remote(self.config.github.repo_owner)
        await self.add_remote(self.config.github.repo_owner)
        if self.fork_owner != self.config.github.repo_owner:
            await self.delete_remote(self.fork_owner)
            await self.add_remote(self.fork_owner)

    async def add_remote(self, remote_name: str) -> None:
        """Add a remote named after its owner. Failures are ignored:
        the usual cause is that the remote already exists."""
        try:
            await self._exec(
                f"git remote add {shlex.quote(remote_name)} "
                f"{shlex.quote(self.remote_url(remote_name))}"
            )
        except ExecError as e:
            self.logger.debug(
                "Could not add remote", remote=remote_name, stderr=e.stderr
            )

    async def delete_remote(self, remote_name: str) -> None:
        """Remove a remote; a remote that doesn't exist is not an error."""
        try:
            await self._exec(f"git remote rm {shlex.quote(remote_name)}")
        except ExecError as e:
            if e.exited <= 0:
                raise
            self.logger.debug(
                "Could not remove remote", remote=remote_name, stderr=e.stderr
            )

    # --------------------------------------------------------
    # Branches
    # --------------------------------------------------------

    async def fetch_branch(self, branch: str) -> None:
        owner = shlex.quote(self.config.github.repo_owner)
        refspec = shlex.quote(f"{branch}:{branch}")
        await self._exec(f"git fetch {owner} {refspec} --force")

    async def create_backport_branch(
        self, target_branch: str, backport_branch: str
    ) -> None:
        """Start a fresh backport branch at the upstream target branch.

        How the commits flow:
            source branch -> backport branch     -> target branch
            main          -> backport/7.x/pr-123 -> 7.x

        Raises:
            InvalidBranchError: If the target branch doesn't exist
                upstream
        """
        owner = self.config.github.repo_owner
        target = shlex.quote(target_branch)
        upstream = shlex.quote(f"{owner}/{target_branch}")
        try:
            await self._exec(
                f"git reset --hard && git clean -d --force && "
                f"git fetch {shlex.quote(owner)} {target} && "
                f"git checkout -B {shlex.quote(backport_branch)} {upstream} "
                f"--no-track"
            )
        except ExecError as e:
            error = classify(BRANCH_ERROR_PATTERNS, e.stderr, target_branch)
            if error:
                raise error from e
            raise

    async def delete_backport_branch(self, backport_branch: str) -> None:
        """Delete the local branch. The pushed branch stays."""
        source_branch = shlex.quote(self.config.backport.source_branch)
        await self._exec(
            f"git reset --hard && "
            f"git checkout {source_branch} && "
            f"git branch -D {shlex.quote(backport_branch)}"
        )

    async def push_backport_branch(self, backport_branch: str) -> None:
        """Force push; a backport branch is disposable.

        Raises:
            ForkMissingError: If the fork repository doesn't exist
        """
        refspec = shlex.quote(f"{backport_branch}:{backport_branch}")
        try:
            await self._exec(
                f"git push {shlex.quote(self.fork_owner)} {refspec} --force"
            )
        except ExecError as e:
            if PUSH_REPOSITORY_NOT_FOUND in e.stderr.lower():
                raise ForkMissingError(
                    self.fork_owner,
                    self.config.github.repo_owner,
                    self.config.github.repo_name,
                    self.config.github.git_hostname,
                ) from e
            raise

    async def get_is_commit_in_branch(self, sha: str) -> bool:
        """True when sha is an ancestor of HEAD."""
        try:
            await self._exec(f"git merge-base --is-ancestor {sha} HEAD")
            return True
        except ExecError as e:
            if e.exited <= 0:
                raise
            return False

    # --------------------------------------------------------
    # Cherry-picking
    # --------------------------------------------------------

    @staticmethod
    def cherrypick_command(
        sha: str,
        mainline: int | None = None,
        include_origin_reference: bool = True,
    ) -> str:
        reference_arg = " -x" if include_origin_reference else ""
        mainline_arg = f" --mainline {mainline}" if mainline is not None else ""
        return f"git cherry-pick{reference_arg}{mainline_arg} {sha}"

    async def cherrypick(
        self,
        sha: str,
        mainline: int | None = None,
        include_origin_reference: bool = True,
    ) -> CherrypickResult:
        """Cherry-pick one commit onto the current branch.

        Returns:
            CherrypickResult with needs_resolving=True when the pick
            stopped on conflicts or left unstaged changes

        Raises:
            HandledError: For diagnostics in CHERRYPICK_ERROR_PATTERNS
            ExecError: When the pick failed for any other reason
        """
        command = self.cherrypick_command(sha, mainline, include_origin_reference)
        try:
            await self._exec(command)
            return CherrypickResult()
        except ExecError as e:
            error = classify(
                CHERRYPICK_ERROR_PATTERNS, diagnostic_text(e), sha
            )
            if error:
                raise error from e

            if e.cmd == command:
                conflicting_files, unstaged_files = await asyncio.gather(
                    self.get_conflicting_files(),
                    self.get_unstaged_files(),
                )
                if conflicting_files or unstaged_files:
                    return CherrypickResult(
                        conflicting_files=conflicting_files,
                        unstaged_files=unstaged_files,
                        needs_resolving=True,
                    )

            raise

    async def get_conflicting_files(self) -> list[ConflictFile]:
        """Files that still contain conflict markers."""
        try:
            await self._exec("git --no-pager diff --check")
            return []
        except ExecError as e:
            if e.exited != DIFF_CHECK_CONFLICT_EXIT_CODE:
                raise
            return self._parse_diff_check(e.stdout)

    def _parse_diff_check(self, output: str) -> list[ConflictFile]:
        # Lines look like "path/to/file.txt:12: leftover conflict marker",
        # followed by the offending +/- diff lines
        files: list[str] = []
        for line in output.split("\n"):
            if not line.strip() or line.startswith(("+", "-")):
                continue
            filename = line.split(":", 1)[0].strip()
            if filename not in files:
                files.append(filename)

        return [
            ConflictFile(
                absolute=str(self.repo_path / relative),
                relative=relative,
            )
            for relative in files
        ]

    async def get_unstaged_files(self) -> list[str]:
        """Absolute paths of files with unstaged changes."""
        result = await self._exec("git --no-pager diff --name-only")
        files: list[str] = []
        for relative in result.stdout.split("\n"):
            if not relative:
                continue
            absolute = str(self.repo_path / relative)
            if absolute not in files:
                files.append(absolute)
        return files

    async def commit_changes(self, commit: Commit) -> None:
        """Finalize a cherry-pick after its conflicts were resolved.

        Nothing to commit means the user already committed by hand.
        An empty message happens when the user ran `git reset HEAD`
        during resolution, which drops the prepared message; the
        original message is then supplied explicitly, once.
        """
        no_verify = " --no-verify" if self.config.backport.no_verify else ""
        try:
            await self._exec(f"git commit --no-edit{no_verify}")
        except ExecError as e:
            if NOTHING_TO_COMMIT in e.stdout:
                self.logger.info(
                    "Could not run git commit; the changes were probably "
                    "committed manually",
                    sha=commit.sha,
                )
                return

            if EMPTY_COMMIT_MESSAGE in e.stderr:
                await self._exec(
                    f"git commit -m {shlex.quote(commit.original_message)}"
                    f"{no_verify}"
                )
                return

            raise

    async def set_commit_author(self, username: str) -> None:
        author = f"{username} <{username}@users.noreply.github.com>"
        await self._exec(
            f"git commit --amend --no-edit --author {shlex.quote(author)}"
        )

    async def open_editor(self, editor: str) -> None:
        await self._exec(f"{editor} {shlex.quote(str(self.repo_path))}")
