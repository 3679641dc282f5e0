from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from prassist.backends.base import AgentBackend, GenerationOptions

EventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class GeneratorResponse:
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Generator:
    role: str = "generator"
    system_prompt: str = "You are a software engineering assistant."

    def __init__(
        self,
        backend: AgentBackend,
        options: GenerationOptions,
        *,
        event_hook: EventHook | None = None,
    ) -> None:
        self.backend = backend
        self.options = options
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    async def complete(self, user_prompt: str) -> GeneratorResponse:
        self._emit(
            {
                "event": "generation_request",
                "role": self.role,
                "model": self.options.model,
                "prompt_chars": len(user_prompt),
            }
        )
        chunks: list[str] = []
        async for chunk in self.backend.execute(
            system_prompt=self.system_prompt,
            user_prompt=user_prompt,
            options=self.options,
        ):
            chunks.append(chunk)
        content = "".join(chunks)
        self._emit(
            {
                "event": "generation_response",
                "role": self.role,
                "response_chars": len(content),
            }
        )
        return GeneratorResponse(
            role=self.role,
            content=content,
            metadata={"model": self.options.model},
        )
