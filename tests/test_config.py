import tomllib
from pathlib import Path

import pytest

from prassist import __version__
from prassist.config import CredentialStore, PrAssistConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "prassist.toml"
    config = PrAssistConfig.default()
    config.backend.primary = "openai"
    config.backend.max_retries = 3
    config.backend.timeout_seconds = 45.5
    config.generation.model = "gpt-4.1"
    config.planning.tier3_max_steps = 10
    config.workflow.branch_prefix = "bot/"
    config.workflow.push = False
    config.context.excerpt_files = ["README.md", "setup.cfg"]
    config.github.repo = "acme/widgets"
    config.indexer.port = 7000

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded == config
    assert loaded.backend.fallback == "anthropic"
    assert loaded.backend.timeout_seconds == 45.5


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "absent.toml") == PrAssistConfig.default()


def test_defaults_call_the_provider_once() -> None:
    backend = PrAssistConfig.default().backend

    assert backend.primary == backend.fallback == "anthropic"
    assert backend.max_retries == 0
    assert backend.timeout_seconds == 0.0


def test_toml_dump_contains_every_section() -> None:
    rendered = dumps_toml(PrAssistConfig.default())

    for section in ("backend", "generation", "planning", "workflow", "context", "github"):
        assert f"[{section}]" in rendered
    assert "fallback_max_steps = 4" in rendered
    assert 'branch_prefix = "llm/pr-"' in rendered
    assert tomllib.loads(rendered)["workflow"]["push"] is True


def test_credentials_prefer_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    store.set("github_token", "  stored-token \n")

    assert store.get("github_token") == "stored-token"
    assert (store.path.stat().st_mode & 0o777) == 0o600

    monkeypatch.setenv("GITHUB_TOKEN", "env-token")
    assert store.get("github_token") == "env-token"


def test_credentials_delete(tmp_path: Path) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    store.set("anthropic_api_key", "sk-test")

    assert store.delete("anthropic_api_key") is True
    assert store.delete("anthropic_api_key") is False
    assert store.get("anthropic_api_key") == ""


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
