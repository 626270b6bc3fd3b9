"""
Auto-commit of changed markdown files to the source repository.

The version-control tool is reached through the narrow ``VersionControl``
interface so that the commit flow (probe, stage, check, commit, push with a
single upstream retry) can run against a fake in tests. ``GitCli`` is the
real implementation and shells out to ``git`` without blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import DispatchError
from .models import ChangeEvent

logger = logging.getLogger(__name__)

_MISSING_UPSTREAM_MARKERS = ("has no upstream branch", "no upstream branch", "--set-upstream")


class CommitOutcome(str, Enum):
    NOT_A_REPOSITORY = "not_a_repository"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    PUSHED = "pushed"
    PUSH_FAILED = "push_failed"
    FAILED = "failed"


class PushError(DispatchError):
    def __init__(self, message: str, missing_upstream: bool = False) -> None:
        super().__init__(message)
        self.missing_upstream = missing_upstream


class VersionControl(Protocol):
    async def probe_repo(self) -> bool: ...

    async def stage_file(self, path: Path) -> None: ...

    async def has_changes(self, path: Path) -> bool: ...

    async def commit(self, message: str) -> None: ...

    async def push(self) -> None: ...

    async def current_branch(self) -> str: ...

    async def push_with_upstream(self, branch: str) -> None: ...


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stderr.strip() or self.stdout.strip())


class GitCli:
    """``VersionControl`` backed by the ``git`` executable, run inside ``repo_root``."""

    def __init__(self, repo_root: Path, remote: str = "origin") -> None:
        self.repo_root = repo_root
        self.remote = remote

    async def _run(self, *args: str) -> CommandResult:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(self.repo_root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def probe_repo(self) -> bool:
        try:
            result = await self._run("rev-parse", "--is-inside-work-tree")
        except OSError:
            return False
        return result.ok and result.stdout.strip() == "true"

    async def stage_file(self, path: Path) -> None:
        result = await self._run("add", "--all", "--", str(path))
        if not result.ok:
            raise DispatchError(result.output or "git add failed")

    async def has_changes(self, path: Path) -> bool:
        result = await self._run("status", "--porcelain", "--", str(path))
        if not result.ok:
            raise DispatchError(result.output or "git status failed")
        return bool(result.stdout.strip())

    async def commit(self, message: str) -> None:
        result = await self._run("commit", "-m", message)
        if not result.ok:
            raise DispatchError(result.output or "git commit failed")

    async def push(self) -> None:
        result = await self._run("push")
        if not result.ok:
            output = result.output
            missing = any(marker in output for marker in _MISSING_UPSTREAM_MARKERS)
            raise PushError(output or "git push failed", missing_upstream=missing)

    async def current_branch(self) -> str:
        result = await self._run("rev-parse", "--abbrev-ref", "HEAD")
        if not result.ok:
            raise DispatchError(result.output or "could not determine current branch")
        return result.stdout.strip()

    async def push_with_upstream(self, branch: str) -> None:
        result = await self._run("push", "--set-upstream", self.remote, branch)
        if not result.ok:
            raise PushError(result.output or "git push --set-upstream failed")


def commit_message(event: ChangeEvent) -> str:
    return f"Auto-update: {event.change_type.value} {event.file_name}"


async def auto_commit(vcs: VersionControl, event: ChangeEvent, path: Path) -> CommitOutcome:
    """
    Commit and push a single changed file.

    Args:
        vcs: Version-control capability rooted at the repository
        event: The change being committed; supplies the commit message
        path: The changed file

    Returns:
        The outcome of the attempt. Failures are logged here and never raised.
    """
    if not await vcs.probe_repo():
        logger.debug("auto-commit: %s is not inside a git repository, skipping", path.parent)
        return CommitOutcome.NOT_A_REPOSITORY

    try:
        await vcs.stage_file(path)
        if not await vcs.has_changes(path):
            logger.info("auto-commit: no changes to commit for %s", event.file_name)
            return CommitOutcome.NOTHING_TO_COMMIT
        message = commit_message(event)
        await vcs.commit(message)
        logger.info("auto-commit: committed '%s'", message)
    except DispatchError as exc:
        logger.error("auto-commit: failed for %s: %s", event.file_name, exc)
        return CommitOutcome.FAILED

    try:
        await vcs.push()
    except PushError as exc:
        if not exc.missing_upstream:
            logger.error("auto-commit: push failed for %s: %s", event.file_name, exc)
            return CommitOutcome.PUSH_FAILED
        try:
            branch = await vcs.current_branch()
            logger.info("auto-commit: no upstream configured, pushing with --set-upstream to %s", branch)
            await vcs.push_with_upstream(branch)
        except DispatchError as retry_exc:
            logger.error("auto-commit: push with upstream failed for %s: %s", event.file_name, retry_exc)
            return CommitOutcome.PUSH_FAILED

    logger.info("auto-commit: pushed %s", event.file_name)
    return CommitOutcome.PUSHED
