from __future__ import annotations

import subprocess
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from prassist.backends.base import AgentBackend, GenerationOptions


def run_git(repo: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", *args], cwd=repo, check=True, text=True, capture_output=True
    )
    return proc.stdout


def init_git_repo(repo: Path, files: dict[str, str] | None = None) -> Path:
    repo.mkdir(parents=True, exist_ok=True)
    run_git(repo, "init", "-b", "main")
    run_git(repo, "config", "user.email", "test@example.com")
    run_git(repo, "config", "user.name", "Test User")
    run_git(repo, "config", "commit.gpgsign", "false")
    for relative, content in (files or {"README.md": "seed\n"}).items():
        target = repo / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-m", "seed")
    return repo


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    return init_git_repo(tmp_path / "repo")


@pytest.fixture(autouse=True)
def isolated_credentials(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    config_home = tmp_path / "xdg-config"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    return config_home


class ScriptedBackend(AgentBackend):
    """Answers plan, patch and file-body requests from separate queues."""

    def __init__(
        self,
        patches: list[str] | None = None,
        files: list[str] | None = None,
        plans: list[str] | None = None,
    ) -> None:
        self.patches = list(patches or [])
        self.files = list(files or [])
        self.plans = list(plans or [])
        self.calls: list[tuple[str, str]] = []

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        _ = options
        self.calls.append((system_prompt, user_prompt))
        if "Return ONLY valid JSON" in system_prompt:
            queue = self.plans
        elif "full file contents" in system_prompt:
            queue = self.files
        else:
            queue = self.patches
        yield queue.pop(0) if queue else ""

    def _user_prompts(self, marker: str) -> list[str]:
        return [user for system, user in self.calls if marker in system]

    def plan_calls(self) -> list[str]:
        return self._user_prompts("Return ONLY valid JSON")

    def patch_calls(self) -> list[str]:
        return self._user_prompts("unified diff patch")

    def file_calls(self) -> list[str]:
        return self._user_prompts("full file contents")
