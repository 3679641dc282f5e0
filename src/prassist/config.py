from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import click

BackendName = Literal["anthropic", "openai", "claude", "codex"]

CONFIG_FILENAME = "prassist.toml"
STATE_DIRNAME = ".prassist"


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "anthropic"
    fallback: BackendName = "anthropic"
    max_retries: int = 0
    retry_backoff_seconds: float = 0.5
    # 0 disables the timeout.
    timeout_seconds: float = 0.0


@dataclass(slots=True)
class GenerationConfig:
    model: str = "claude-3-5-sonnet-latest"
    temperature: float = 0.2
    patch_max_tokens: int = 3000
    plan_max_tokens: int = 800
    file_max_tokens: int = 3000
    patch_context_chars: int = 12000
    plan_context_chars: int = 6000
    file_context_chars: int = 6000
    existing_files_chars: int = 2000


@dataclass(slots=True)
class PlanningConfig:
    tier2_max_steps: int = 4
    tier3_max_steps: int = 8
    fallback_max_steps: int = 4


@dataclass(slots=True)
class WorkflowConfig:
    branch_prefix: str = "llm/pr-"
    commit_prefix: str = "LLM: "
    ignored_dirty_paths: list[str] = field(
        default_factory=lambda: [f"{STATE_DIRNAME}/", ".vscode/", CONFIG_FILENAME]
    )
    push: bool = True
    open_pull_request: bool = True


@dataclass(slots=True)
class ContextConfig:
    max_tracked_files: int = 200
    excerpt_files: list[str] = field(
        default_factory=lambda: ["README.md", "pyproject.toml", "package.json"]
    )
    excerpt_chars: int = 4000


@dataclass(slots=True)
class GitHubConfig:
    repo: str = ""
    base_branch: str = ""
    client_id: str = "Ov23lixQIJgRYTeNSsBp"
    api_url: str = "https://api.github.com"
    device_flow_timeout_seconds: float = 600.0


@dataclass(slots=True)
class IndexerConfig:
    binary_path: str = ""
    config_path: str = ""
    host: str = "127.0.0.1"
    port: int = 6333
    data_dir: str = ""


@dataclass(slots=True)
class PrAssistConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)

    @classmethod
    def default(cls) -> PrAssistConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> PrAssistConfig:
        return cls(
            backend=BackendConfig(**data.get("backend", {})),
            generation=GenerationConfig(**data.get("generation", {})),
            planning=PlanningConfig(**data.get("planning", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
            context=ContextConfig(**data.get("context", {})),
            github=GitHubConfig(**data.get("github", {})),
            indexer=IndexerConfig(**data.get("indexer", {})),
        )

    def to_dict(self) -> dict:
        return {
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "generation": {
                "model": self.generation.model,
                "temperature": self.generation.temperature,
                "patch_max_tokens": self.generation.patch_max_tokens,
                "plan_max_tokens": self.generation.plan_max_tokens,
                "file_max_tokens": self.generation.file_max_tokens,
                "patch_context_chars": self.generation.patch_context_chars,
                "plan_context_chars": self.generation.plan_context_chars,
                "file_context_chars": self.generation.file_context_chars,
                "existing_files_chars": self.generation.existing_files_chars,
            },
            "planning": {
                "tier2_max_steps": self.planning.tier2_max_steps,
                "tier3_max_steps": self.planning.tier3_max_steps,
                "fallback_max_steps": self.planning.fallback_max_steps,
            },
            "workflow": {
                "branch_prefix": self.workflow.branch_prefix,
                "commit_prefix": self.workflow.commit_prefix,
                "ignored_dirty_paths": list(self.workflow.ignored_dirty_paths),
                "push": self.workflow.push,
                "open_pull_request": self.workflow.open_pull_request,
            },
            "context": {
                "max_tracked_files": self.context.max_tracked_files,
                "excerpt_files": list(self.context.excerpt_files),
                "excerpt_chars": self.context.excerpt_chars,
            },
            "github": {
                "repo": self.github.repo,
                "base_branch": self.github.base_branch,
                "client_id": self.github.client_id,
                "api_url": self.github.api_url,
                "device_flow_timeout_seconds": self.github.device_flow_timeout_seconds,
            },
            "indexer": {
                "binary_path": self.indexer.binary_path,
                "config_path": self.indexer.config_path,
                "host": self.indexer.host,
                "port": self.indexer.port,
                "data_dir": self.indexer.data_dir,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: PrAssistConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = [
        "backend",
        "generation",
        "planning",
        "workflow",
        "context",
        "github",
        "indexer",
    ]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> PrAssistConfig:
    if not path.exists():
        return PrAssistConfig.default()
    return PrAssistConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: PrAssistConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")


CREDENTIAL_ENV_VARS = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "github_token": "GITHUB_TOKEN",
}


class CredentialStore:
    """Secrets kept outside the repository, one JSON file per user.

    Environment variables take precedence over stored values.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or Path(click.get_app_dir("prassist")) / "credentials.json"

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value) for key, value in payload.items() if value}

    def _write(self, payload: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def get(self, name: str) -> str:
        env_name = CREDENTIAL_ENV_VARS.get(name)
        if env_name:
            from_env = os.environ.get(env_name, "").strip()
            if from_env:
                return from_env
        return self._read().get(name, "").strip()

    def set(self, name: str, value: str) -> None:
        payload = self._read()
        payload[name] = value.strip()
        self._write(payload)

    def delete(self, name: str) -> bool:
        payload = self._read()
        if name not in payload:
            return False
        del payload[name]
        self._write(payload)
        return True
