from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Coroutine
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

import click

from prassist.backends import (
    AgentBackend,
    AnthropicBackend,
    BackendExecutionError,
    ClaudeCodeBackend,
    CodexBackend,
    OpenAIBackend,
    ResilientBackend,
    RetryPolicy,
)
from prassist.config import (
    CONFIG_FILENAME,
    STATE_DIRNAME,
    BackendName,
    CredentialStore,
    PrAssistConfig,
    load_config,
    save_config,
)
from prassist.context import build_repository_context
from prassist.errors import MissingCredentialError, PrAssistError, to_user_message
from prassist.git import GitCommandError, GitRepository
from prassist.github import GitHubDeviceFlow
from prassist.sidecar import IndexerSidecar
from prassist.sizing import assess_task_sizing
from prassist.state import RunLog, new_run_id
from prassist.supervisor import Supervisor

T = TypeVar("T")

CREDENTIAL_NAMES = {
    "anthropic": "anthropic_api_key",
    "openai": "openai_api_key",
    "github": "github_token",
}
HANDLED_ERRORS = (PrAssistError, BackendExecutionError, GitCommandError)


@dataclass(slots=True)
class Runtime:
    repo: GitRepository
    config_path: Path
    config: PrAssistConfig
    credentials: CredentialStore


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _run_async(coroutine: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coroutine)
    except HANDLED_ERRORS as exc:
        raise click.ClickException(to_user_message(exc)) from exc


def _require_credential(credentials: CredentialStore, name: str, label: str, hint: str) -> str:
    value = credentials.get(name)
    if not value:
        raise MissingCredentialError(label, hint)
    return value


def _build_single_backend(
    backend_name: BackendName, repo_root: Path, credentials: CredentialStore
) -> AgentBackend:
    if backend_name == "anthropic":
        api_key = _require_credential(
            credentials,
            "anthropic_api_key",
            "Anthropic API key",
            "Run 'prassist set-key anthropic'.",
        )
        return AnthropicBackend(api_key)
    if backend_name == "openai":
        api_key = _require_credential(
            credentials, "openai_api_key", "OpenAI API key", "Run 'prassist set-key openai'."
        )
        return OpenAIBackend(api_key)
    if backend_name == "codex":
        return CodexBackend(working_directory=repo_root)
    return ClaudeCodeBackend(working_directory=repo_root)


def _build_backend(
    config: PrAssistConfig,
    repo_root: Path,
    credentials: CredentialStore,
    event_hook: Callable[[dict[str, Any]], None] | None = None,
) -> AgentBackend:
    primary_name = config.backend.primary
    fallback_name = config.backend.fallback
    primary_backend = _build_single_backend(primary_name, repo_root, credentials)
    if fallback_name == primary_name:
        fallback_backend = primary_backend
    else:
        fallback_backend = _build_single_backend(fallback_name, repo_root, credentials)
    timeout = float(config.backend.timeout_seconds)
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=timeout if timeout > 0 else None,
    )
    return ResilientBackend(
        primary_name=primary_name,
        primary_backend=primary_backend,
        fallback_name=fallback_name,
        fallback_backend=fallback_backend,
        retry_policy=policy,
        event_hook=event_hook,
    )


async def _load_runtime(config_value: str) -> Runtime:
    discovered = await GitRepository.discover(Path.cwd())
    config_path = _resolve_config_path(discovered.root, config_value)
    config = load_config(config_path)
    repo = GitRepository(discovered.root, ignored_dirty_paths=config.workflow.ignored_dirty_paths)
    return Runtime(
        repo=repo,
        config_path=config_path,
        config=config,
        credentials=CredentialStore(),
    )


def _echo_progress(entry: dict[str, Any]) -> None:
    event = entry.get("event")
    if event == "run_step":
        click.echo(f"[{entry['at']}] {entry['message']}")
    elif event == "single_shot_fallback":
        click.echo(f"[{entry['at']}] Single-shot failed, switching to plan mode")
    elif event == "plan_step_start":
        click.echo(f"[{entry['at']}] Step {entry['index']}/{entry['total']}: {entry['title']}")
    elif event == "indexer_unavailable":
        click.echo(f"[{entry['at']}] Indexer unavailable: {entry['error']}")


@click.group()
def cli() -> None:
    """Turn a change request into a reviewed pull request."""


@cli.command("init")
@click.option(
    "--backend",
    type=click.Choice(["anthropic", "openai", "claude", "codex"]),
    default=None,
)
@click.option("--repo", "repo_slug", default=None, help="GitHub repository as owner/repo.")
@click.option("--base-branch", default=None)
@click.option("--model", default=None)
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def init_command(
    backend: str | None,
    repo_slug: str | None,
    base_branch: str | None,
    model: str | None,
    config_value: str,
) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = load_config(config_path)
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
        config.backend.fallback = backend  # type: ignore[assignment]
    if repo_slug:
        config.github.repo = repo_slug.strip()
    if base_branch:
        config.github.base_branch = base_branch.strip()
    if model:
        config.generation.model = model.strip()
    save_config(config_path, config)

    (repo_root / STATE_DIRNAME).mkdir(parents=True, exist_ok=True)

    click.echo(f"Initialized prassist in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.primary}")
    click.echo(f"Model: {config.generation.model}")


@cli.command("run")
@click.argument("prompt")
@click.option("--no-push", is_flag=True, default=False, help="Commit locally only.")
@click.option("--no-pr", is_flag=True, default=False, help="Skip the pull request.")
@click.option("--with-indexer", is_flag=True, default=False)
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def run_command(
    prompt: str, no_push: bool, no_pr: bool, with_indexer: bool, config_value: str
) -> None:
    if not prompt.strip():
        raise click.UsageError("PROMPT must not be empty.")

    async def _run() -> Any:
        runtime = await _load_runtime(config_value)
        run_log = RunLog.for_run(runtime.repo.root, new_run_id(), echo=_echo_progress)
        runtime.repo.event_hook = run_log.record
        backend = _build_backend(
            runtime.config, runtime.repo.root, runtime.credentials, event_hook=run_log.record
        )
        supervisor = Supervisor(
            runtime.repo,
            runtime.config,
            backend,
            credentials=runtime.credentials,
            event_hook=run_log.record,
        )
        indexer = IndexerSidecar(runtime.config.indexer, event_hook=run_log.record)
        try:
            return await supervisor.run(
                prompt,
                push=False if no_push else None,
                open_pull_request=False if no_pr else None,
                indexer=indexer if with_indexer else None,
                run_id=run_log.run_id,
            )
        except Exception as exc:
            run_log.record({"event": "run_failed", "error": str(exc), "type": type(exc).__name__})
            raise
        finally:
            await indexer.stop()

    summary = _run_async(_run())
    click.echo(f"Branch: {summary.branch}")
    click.echo(f"Run ID: {summary.run_id}")
    click.echo(f"Tier: {summary.tier.value} ({summary.mode}, {summary.steps} step(s))")
    if summary.change_summary:
        click.echo(summary.change_summary)
    if summary.pull_request_url:
        click.echo(f"PR created. Here's the link: {summary.pull_request_url}")
    elif summary.pushed:
        click.echo("Branch pushed.")
    else:
        click.echo("Changes committed locally.")


@cli.command("classify")
@click.argument("prompt")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def classify_command(prompt: str, config_value: str) -> None:
    async def _classify() -> Any:
        try:
            runtime = await _load_runtime(config_value)
        except GitCommandError:
            context = ""
        else:
            context = await build_repository_context(runtime.repo, runtime.config.context)
        return assess_task_sizing(prompt, context)

    decision = _run_async(_classify())
    payload = asdict(decision)
    payload["tier"] = decision.tier.value
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("login")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def login_command(config_value: str) -> None:
    config = load_config(_resolve_config_path(Path.cwd().resolve(), config_value))
    flow = GitHubDeviceFlow(
        config.github.client_id,
        timeout_seconds=config.github.device_flow_timeout_seconds,
    )

    async def _login() -> str:
        device = await flow.start()
        click.echo(f"GitHub login code: {device.user_code}")
        click.echo(f"Open {device.verification_uri} and enter the code.")
        return await flow.poll(device)

    token = _run_async(_login())
    CredentialStore().set("github_token", token)
    click.echo("GitHub login complete.")


@cli.command("logout")
def logout_command() -> None:
    if CredentialStore().delete("github_token"):
        click.echo("GitHub token removed.")
    else:
        click.echo("No stored GitHub token.")


@cli.command("set-key")
@click.argument("provider", type=click.Choice(sorted(CREDENTIAL_NAMES)))
@click.option("--value", default=None, help="Read from a hidden prompt when omitted.")
def set_key_command(provider: str, value: str | None) -> None:
    secret = value if value is not None else click.prompt(f"{provider} key", hide_input=True)
    if not secret.strip():
        raise click.UsageError("Key must not be empty.")
    CredentialStore().set(CREDENTIAL_NAMES[provider], secret)
    click.echo(f"Stored {provider} key.")


@cli.command("models")
def models_command() -> None:
    credentials = CredentialStore()

    async def _models() -> list[str]:
        api_key = _require_credential(
            credentials,
            "anthropic_api_key",
            "Anthropic API key",
            "Run 'prassist set-key anthropic'.",
        )
        return await AnthropicBackend(api_key).list_models()

    models = _run_async(_models())
    if not models:
        click.echo("No models available for this key.")
        return
    for model in models:
        click.echo(model)


@cli.command("status")
@click.option("--config", "config_value", default=CONFIG_FILENAME, show_default=True)
def status_command(config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = load_config(config_path)
    credentials = CredentialStore()
    payload: dict[str, Any] = {
        "checked_at": datetime.now(UTC).replace(microsecond=0).isoformat(),
        "config": str(config_path) if config_path.exists() else None,
        "backend": config.backend.primary,
        "model": config.generation.model,
        "repo": config.github.repo or None,
        "credentials": {
            provider: bool(credentials.get(name)) for provider, name in CREDENTIAL_NAMES.items()
        },
        "last_run": None,
    }
    latest = RunLog.latest(repo_root)
    if latest is not None:
        events = latest.read()
        payload["last_run"] = {
            "run_id": latest.run_id,
            "events": len(events),
            "last_event": events[-1].get("event") if events else None,
        }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
