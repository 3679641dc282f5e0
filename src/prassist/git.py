from __future__ import annotations

import asyncio
import os
import stat
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from prassist.config import STATE_DIRNAME
from prassist.errors import DirtyWorktreeError

ASKPASS_SCRIPT = """#!/bin/sh
case "$1" in
  *Username*) echo "x-access-token" ;;
  *Password*) echo "$PRASSIST_GIT_TOKEN" ;;
  *) echo "" ;;
esac
"""


class GitCommandError(RuntimeError):
    """Raised when a git invocation exits non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        super().__init__(f"Git command failed: git {' '.join(args)}\n{stderr}".rstrip())
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr


@dataclass(slots=True)
class GitResult:
    returncode: int
    stdout: str
    stderr: str


class GitRepository:
    """Async wrapper around the ``git`` executable for one working tree."""

    def __init__(
        self,
        root: Path,
        *,
        ignored_dirty_paths: Sequence[str] = (f"{STATE_DIRNAME}/",),
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.root = root.resolve()
        self.ignored_dirty_paths = tuple(ignored_dirty_paths)
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    @classmethod
    async def discover(cls, start: Path, **kwargs: Any) -> GitRepository:
        result = await _run_git(["rev-parse", "--show-toplevel"], cwd=start.resolve())
        return cls(Path(result.stdout.strip()), **kwargs)

    async def run(
        self,
        args: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> GitResult:
        result = await _run_git(args, cwd=self.root, env=env, check=check)
        self._emit({"event": "git_command", "args": list(args)[:3], "exit_code": result.returncode})
        return result

    @staticmethod
    def _status_line_path(status_line: str) -> str:
        candidate = status_line[3:].strip()
        if " -> " in candidate:
            candidate = candidate.split(" -> ", maxsplit=1)[1].strip()
        return candidate.strip('"')

    def _is_ignored_dirty_path(self, path: str) -> bool:
        for ignored in self.ignored_dirty_paths:
            if ignored.endswith("/"):
                if path == ignored or path == ignored.rstrip("/") or path.startswith(ignored):
                    return True
            elif path == ignored:
                return True
        return False

    async def dirty_paths(self) -> list[str]:
        proc = await self.run(["status", "--porcelain"])
        dirty: list[str] = []
        for line in proc.stdout.splitlines():
            if len(line) < 4:
                continue
            path = self._status_line_path(line)
            if path and not self._is_ignored_dirty_path(path):
                dirty.append(path)
        return dirty

    async def ensure_clean(self) -> None:
        dirty = await self.dirty_paths()
        if dirty:
            raise DirtyWorktreeError(dirty)

    async def current_branch(self) -> str:
        proc = await self.run(["rev-parse", "--abbrev-ref", "HEAD"])
        return proc.stdout.strip()

    async def create_branch(self, branch_name: str) -> None:
        await self.run(["checkout", "-b", branch_name])

    async def check_patch(self, patch_path: Path) -> None:
        await self.run(["apply", "--check", str(patch_path)])

    async def apply_patch(self, patch_path: Path) -> None:
        await self.run(["apply", "--whitespace=fix", str(patch_path)])

    async def apply_patch_three_way(self, patch_path: Path) -> None:
        await self.run(["apply", "--3way", "--whitespace=fix", str(patch_path)])

    async def stage_paths(self, paths: Sequence[str]) -> None:
        if paths:
            await self.run(["add", "-A", "--", *paths])

    async def reset_paths(self, paths: Sequence[str]) -> None:
        if paths:
            await self.run(["reset", "-q", "--", *paths], check=False)

    async def stage_all(self) -> None:
        """Stage every change except the paths the clean-tree check ignores."""

        excluded = {STATE_DIRNAME, *(path.rstrip("/") for path in self.ignored_dirty_paths)}
        await self.run(
            ["add", "-A", "--", ".", *(f":(exclude){path}" for path in sorted(excluded))]
        )

    async def commit(self, message: str) -> None:
        await self.run(["commit", "-m", message])

    async def push(self, branch_name: str) -> None:
        await self.run(["push", "-u", "origin", branch_name])

    async def push_with_token(self, branch_name: str, token: str) -> None:
        """Push over https, answering git's credential prompts from ``token``.

        The helper script lives outside the working tree and reads the token from
        the environment, so the secret never touches disk.
        """

        handle, script_path = tempfile.mkstemp(prefix="prassist-askpass-", suffix=".sh")
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as script:
                script.write(ASKPASS_SCRIPT)
            os.chmod(script_path, stat.S_IRWXU)
            await self.run(
                [
                    "-c",
                    "credential.helper=",
                    "-c",
                    "credential.useHttpPath=true",
                    "push",
                    "-u",
                    "origin",
                    branch_name,
                ],
                env={
                    "GIT_ASKPASS": script_path,
                    "GIT_TERMINAL_PROMPT": "0",
                    "PRASSIST_GIT_TOKEN": token,
                },
            )
        finally:
            Path(script_path).unlink(missing_ok=True)

    async def list_tracked_files(self) -> list[str]:
        proc = await self.run(["ls-files"])
        return [line for line in proc.stdout.splitlines() if line.strip()]

    async def list_worktree_files(self) -> list[str]:
        """Tracked files plus untracked, non-ignored ones created during this run."""

        proc = await self.run(["ls-files", "--cached", "--others", "--exclude-standard"])
        files: list[str] = []
        seen: set[str] = set()
        for line in proc.stdout.splitlines():
            if not line.strip() or line in seen or self._is_ignored_dirty_path(line):
                continue
            seen.add(line)
            files.append(line)
        return files

    async def diff_summary(self, *, cached: bool = True) -> str:
        scope = ["--cached"] if cached else []
        files = await self.run(["diff", *scope, "--name-only"])
        stats = await self.run(["diff", *scope, "--stat"])
        file_list = "\n".join(f"- {line}" for line in files.stdout.splitlines() if line.strip())
        stat_lines = f"{stats.stdout.rstrip()}\n" if stats.stdout.strip() else ""
        return f"{file_list}\n{stat_lines}".strip()

    async def has_staged_changes(self) -> bool:
        proc = await self.run(["diff", "--cached", "--quiet"], check=False)
        return proc.returncode != 0

    async def origin_url(self) -> str | None:
        proc = await self.run(["remote", "get-url", "origin"], check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    async def detect_base_branch(self) -> str | None:
        proc = await self.run(["symbolic-ref", "refs/remotes/origin/HEAD"], check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.strip().rsplit("/", 1)[-1] or None


async def _run_git(
    args: Sequence[str],
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
    check: bool = True,
) -> GitResult:
    process_env = {**os.environ, **env} if env else None
    process = await asyncio.create_subprocess_exec(
        "git",
        "--no-pager",
        *args,
        cwd=str(cwd),
        env=process_env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    result = GitResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )
    if check and result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr or result.stdout.strip())
    return result
