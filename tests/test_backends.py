import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import pytest

from prassist.backends import (
    AnthropicBackend,
    BackendExecutionError,
    ModelNotFoundError,
    OpenAIBackend,
    RetryPolicy,
)
from prassist.backends.base import AgentBackend, GenerationOptions
from prassist.backends.claude import ClaudeCodeBackend
from prassist.backends.codex import CodexBackend
from prassist.backends.resilient import ResilientBackend

OPTIONS = GenerationOptions(model="claude-3-5-sonnet-latest", max_tokens=800, temperature=0.1)


class AlwaysFailBackend(AgentBackend):
    def __init__(self, *, retriable: bool = True) -> None:
        self.retriable = retriable
        self.calls = 0

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, options
        self.calls += 1
        raise BackendExecutionError("boom", backend="fake", retriable=self.retriable)
        yield ""  # pragma: no cover


class SuccessBackend(AgentBackend):
    def __init__(self) -> None:
        self.calls = 0

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, options
        self.calls += 1
        yield "ok"


async def _collect(backend: AgentBackend) -> str:
    parts: list[str] = []
    async for part in backend.execute("system", "user", OPTIONS):
        parts.append(part)
    return "".join(parts)


def test_codex_build_command_shape() -> None:
    backend = CodexBackend(binary="codex", working_directory=Path("."))
    command = backend.build_command("system", "implement feature", OPTIONS)

    assert command[0:2] == ["codex", "exec"]
    assert "--json" in command
    assert command[command.index("-m") + 1] == "claude-3-5-sonnet-latest"
    assert any(part.startswith("instructions=") for part in command)
    assert command[-1] == "implement feature"


def test_claude_build_command_shape() -> None:
    backend = ClaudeCodeBackend(binary="claude", working_directory=Path("."))
    command = backend.build_command("system", "implement feature", OPTIONS)

    assert command[0:3] == ["claude", "-p", "implement feature"]
    assert command[command.index("--output-format") + 1] == "json"
    assert command[command.index("--system-prompt") + 1] == "system"
    assert command[command.index("--model") + 1] == "claude-3-5-sonnet-latest"


def test_resilient_backend_fallback_and_retry_events() -> None:
    events: list[dict[str, Any]] = []
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=AlwaysFailBackend(),
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=RetryPolicy(max_retries=1, backoff_seconds=0.0, timeout_seconds=5.0),
        event_hook=events.append,
    )

    output = asyncio.run(_collect(backend))

    assert output == "ok"
    event_names = [event["event"] for event in events]
    assert "backend_failover_start" in event_names
    assert "backend_retry" in event_names
    assert "backend_fallback_success" in event_names


def test_default_policy_calls_provider_once() -> None:
    primary = AlwaysFailBackend()
    backend = ResilientBackend(
        primary_name="anthropic",
        primary_backend=primary,
        fallback_name="anthropic",
        fallback_backend=primary,
        retry_policy=RetryPolicy(),
    )

    with pytest.raises(BackendExecutionError, match="boom"):
        asyncio.run(_collect(backend))

    assert primary.calls == 1


def test_non_retriable_error_skips_retries() -> None:
    primary = AlwaysFailBackend(retriable=False)
    fallback = SuccessBackend()
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=primary,
        fallback_name="fallback",
        fallback_backend=fallback,
        retry_policy=RetryPolicy(max_retries=3, backoff_seconds=0.0),
    )

    assert asyncio.run(_collect(backend)) == "ok"
    assert primary.calls == 1
    assert fallback.calls == 1


def test_codex_backend_returns_final_agent_message(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict[str, Any]] = []

    class FakeStdout:
        def __init__(self, lines: list[bytes]) -> None:
            self._lines = lines
            self._index = 0

        def __aiter__(self) -> "FakeStdout":
            return self

        async def __anext__(self) -> bytes:
            if self._index >= len(self._lines):
                raise StopAsyncIteration
            line = self._lines[self._index]
            self._index += 1
            return line

    class FakeStderr:
        async def read(self) -> bytes:
            return b""

    class FakeProcess:
        def __init__(self) -> None:
            self.stdout = FakeStdout(
                [
                    b"{\"type\":\"item.completed\",\"item\":"
                    b"{\"type\":\"agent_message\",\"text\":\"Looking at the file.\"}}\n",
                    b"noise-before-json\n",
                    b"{\"type\":\"item.completed\",\"item\":"
                    b"{\"type\":\"agent_message\",\"text\":\"hello\"}}\n",
                    b"{\"type\":\"turn.completed\"}\n",
                ]
            )
            self.stderr = FakeStderr()

        async def wait(self) -> int:
            return 0

    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        _ = args, kwargs
        return FakeProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)

    output = asyncio.run(_collect(CodexBackend(event_hook=events.append)))

    assert output == "hello"
    event_names = [event.get("event") for event in events]
    assert "codex_cli_start" in event_names
    assert "codex_json_event" in event_names
    assert "codex_json_parse_fallback" in event_names
    assert "codex_cli_exit" in event_names


def test_anthropic_backend_sends_messages_request() -> None:
    captured: dict[str, Any] = {}

    class FakeMessages:
        async def create(self, **kwargs: Any) -> Any:
            captured.update(kwargs)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="--- a/x\n"),
                    SimpleNamespace(type="tool_use", text="ignored"),
                    SimpleNamespace(type="text", text="+++ b/x\n"),
                ]
            )

    backend = AnthropicBackend("key", client=SimpleNamespace(messages=FakeMessages()))

    output = asyncio.run(_collect(backend))

    assert output == "--- a/x\n+++ b/x\n"
    assert captured == {
        "model": "claude-3-5-sonnet-latest",
        "max_tokens": 800,
        "temperature": 0.1,
        "system": "system",
        "messages": [{"role": "user", "content": "user"}],
    }


def test_anthropic_unknown_model_is_not_retriable() -> None:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")

    class FakeMessages:
        async def create(self, **kwargs: Any) -> Any:
            _ = kwargs
            raise anthropic.NotFoundError(
                "model not found",
                response=httpx.Response(404, request=request),
                body=None,
            )

    backend = AnthropicBackend("key", client=SimpleNamespace(messages=FakeMessages()))

    with pytest.raises(ModelNotFoundError) as excinfo:
        asyncio.run(_collect(backend))

    assert excinfo.value.retriable is False
    assert "not_found_error" in str(excinfo.value)


def test_anthropic_lists_model_ids() -> None:
    class FakeModels:
        async def list(self) -> Any:
            return SimpleNamespace(
                data=[SimpleNamespace(id="claude-a"), SimpleNamespace(id="claude-b")]
            )

    backend = AnthropicBackend("key", client=SimpleNamespace(models=FakeModels()))

    assert asyncio.run(backend.list_models()) == ["claude-a", "claude-b"]


def test_openai_backend_uses_responses_api() -> None:
    captured: dict[str, Any] = {}

    class FakeResponses:
        def create(self, **kwargs: Any) -> dict[str, Any]:
            captured.update(kwargs)
            return {"output_text": "ok"}

    backend = OpenAIBackend("key", client=SimpleNamespace(responses=FakeResponses()))

    output = asyncio.run(_collect(backend))

    assert output == "ok"
    assert captured["model"] == "claude-3-5-sonnet-latest"
    assert captured["max_output_tokens"] == 800
    assert captured["input"][0] == {"role": "system", "content": "system"}
