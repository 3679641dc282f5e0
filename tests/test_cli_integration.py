import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import ScriptedBackend, run_git
from prassist.backends import AnthropicBackend, ResilientBackend
from prassist.cli import _build_backend, cli
from prassist.config import CredentialStore, PrAssistConfig, load_config

README_PATCH = """diff --git a/README.md b/README.md
--- a/README.md
+++ b/README.md
@@ -1 +1,2 @@
 seed
+hello
"""


def _use_backend(monkeypatch: pytest.MonkeyPatch, backend: ScriptedBackend) -> None:
    monkeypatch.setattr(
        "prassist.cli._build_backend",
        lambda config, repo_root, credentials, event_hook=None: backend,
    )


def test_init_writes_config_and_state_dir(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(git_repo)

    result = CliRunner().invoke(
        cli, ["init", "--backend", "openai", "--repo", "acme/widgets", "--model", "gpt-4.1"]
    )

    assert result.exit_code == 0, result.output
    config = load_config(git_repo / "prassist.toml")
    assert config.backend.primary == "openai"
    assert config.backend.fallback == "openai"
    assert config.github.repo == "acme/widgets"
    assert config.generation.model == "gpt-4.1"
    assert (git_repo / ".prassist").is_dir()


def test_run_commits_locally_and_status_reports_it(
    git_repo: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(git_repo)
    backend = ScriptedBackend(patches=[README_PATCH])
    _use_backend(monkeypatch, backend)
    runner = CliRunner()

    assert runner.invoke(cli, ["init"]).exit_code == 0
    result = runner.invoke(cli, ["run", "Say hello in the readme", "--no-push"])

    assert result.exit_code == 0, result.output
    assert "Branch: llm/pr-" in result.output
    assert "Run ID: run-" in result.output
    assert "Tier: TIER_1 (single_shot, 1 step(s))" in result.output
    assert "Changes committed locally." in result.output
    assert "Creating branch" in result.output
    assert run_git(git_repo, "log", "-1", "--pretty=%s").strip() == "LLM: Say hello in the readme"
    assert "prassist.toml" not in run_git(git_repo, "show", "--name-only", "HEAD")

    status = runner.invoke(cli, ["status"])
    assert status.exit_code == 0, status.output
    payload = json.loads(status.output)
    assert payload["backend"] == "anthropic"
    assert payload["credentials"] == {"anthropic": False, "github": False, "openai": False}
    assert payload["last_run"]["last_event"] == "run_completed"
    assert payload["last_run"]["run_id"].startswith("run-")


def test_run_failure_is_reported_and_logged(
    git_repo: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(git_repo)
    (git_repo / "README.md").write_text("dirty\n", encoding="utf-8")
    _use_backend(monkeypatch, ScriptedBackend())

    result = CliRunner().invoke(cli, ["run", "Say hello", "--no-push"])

    assert result.exit_code != 0
    assert "uncommitted changes" in result.output
    runs = list((git_repo / ".prassist" / "runs").glob("*.jsonl"))
    assert len(runs) == 1
    last = json.loads(runs[0].read_text(encoding="utf-8").splitlines()[-1])
    assert last["event"] == "run_failed"
    assert last["type"] == "DirtyWorktreeError"


def test_run_rejects_blank_prompt(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(git_repo)

    result = CliRunner().invoke(cli, ["run", "   "])

    assert result.exit_code == 2
    assert "PROMPT must not be empty." in result.output


def test_classify_prints_sizing_decision(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(git_repo)

    result = CliRunner().invoke(cli, ["classify", "create 5 fixtures"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["tier"] == "TIER_2"
    assert payload["requested_count"] == 5
    assert "scope_keyword" in payload["signals"]


def test_classify_works_outside_a_repository(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    outside = tmp_path / "plain"
    outside.mkdir()
    monkeypatch.chdir(outside)

    result = CliRunner().invoke(cli, ["classify", "fix a typo"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["tier"] == "TIER_1"


def test_set_key_and_logout(git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(git_repo)
    runner = CliRunner()

    assert runner.invoke(cli, ["set-key", "github", "--value", "gh-secret"]).exit_code == 0
    assert CredentialStore().get("github_token") == "gh-secret"

    hidden = runner.invoke(cli, ["set-key", "anthropic"], input="sk-hidden\n")
    assert hidden.exit_code == 0, hidden.output
    assert "sk-hidden" not in hidden.output
    assert CredentialStore().get("anthropic_api_key") == "sk-hidden"

    logout = runner.invoke(cli, ["logout"])
    assert "GitHub token removed." in logout.output
    assert CredentialStore().get("github_token") == ""


def test_missing_api_key_is_a_readable_error(
    git_repo: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(git_repo)

    result = CliRunner().invoke(cli, ["run", "Say hello", "--no-push"])

    assert result.exit_code == 1
    assert "Anthropic API key is missing." in result.output


def test_build_backend_shares_primary_when_fallback_matches(tmp_path: Path) -> None:
    credentials = CredentialStore(tmp_path / "credentials.json")
    credentials.set("anthropic_api_key", "sk-test")

    backend = _build_backend(PrAssistConfig.default(), tmp_path, credentials)

    assert isinstance(backend, ResilientBackend)
    assert isinstance(backend.primary_backend, AnthropicBackend)
    assert backend.fallback_backend is backend.primary_backend
    assert backend.retry_policy.timeout_seconds is None
    assert backend.retry_policy.max_retries == 0
