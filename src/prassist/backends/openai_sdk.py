from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import openai

from prassist.backends.base import (
    AgentBackend,
    BackendAuthenticationError,
    BackendExecutionError,
    GenerationOptions,
    ModelNotFoundError,
)


class OpenAIBackend(AgentBackend):
    """Responses API backend run in a worker thread."""

    def __init__(self, api_key: str, *, client: Any | None = None) -> None:
        self._client = client or openai.OpenAI(api_key=api_key)

    @staticmethod
    def _extract_text(payload: Any) -> str:
        if payload is None:
            return ""
        output_text = getattr(payload, "output_text", None)
        if isinstance(output_text, str):
            return output_text
        if isinstance(payload, dict):
            value = payload.get("output_text")
            if isinstance(value, str):
                return value
        return str(output_text or "")

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        def _request() -> Any:
            return self._client.responses.create(
                model=options.model,
                max_output_tokens=options.max_tokens,
                input=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )

        try:
            payload = await asyncio.to_thread(_request)
        except openai.NotFoundError as exc:
            raise ModelNotFoundError(
                f"model: {options.model} not_found_error: {exc}",
                backend="openai",
                exit_code=404,
                retriable=False,
            ) from exc
        except openai.AuthenticationError as exc:
            raise BackendAuthenticationError(
                f"OpenAI rejected the API key: {exc}",
                backend="openai",
                exit_code=401,
                retriable=False,
            ) from exc
        except openai.OpenAIError as exc:
            raise BackendExecutionError(
                f"OpenAI request failed: {exc}",
                backend="openai",
                retriable=True,
            ) from exc

        content = self._extract_text(payload)
        if content:
            yield content
