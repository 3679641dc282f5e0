from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import anthropic

from prassist.backends.base import (
    AgentBackend,
    BackendAuthenticationError,
    BackendExecutionError,
    GenerationOptions,
    ModelNotFoundError,
)


class AnthropicBackend(AgentBackend):
    """Messages API backend, the default for patch, plan and file-body requests."""

    def __init__(self, api_key: str, *, client: Any | None = None) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    @staticmethod
    def _extract_text(message: Any) -> str:
        parts: list[str] = []
        for block in getattr(message, "content", None) or []:
            if getattr(block, "type", None) == "text":
                text = getattr(block, "text", "")
                if isinstance(text, str):
                    parts.append(text)
        return "".join(parts)

    @staticmethod
    def _translate_error(exc: anthropic.APIError, model: str) -> BackendExecutionError:
        if isinstance(exc, anthropic.NotFoundError):
            return ModelNotFoundError(
                f"model: {model} not_found_error: {exc}",
                backend="anthropic",
                exit_code=404,
                retriable=False,
            )
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return BackendAuthenticationError(
                f"Anthropic rejected the API key: {exc}",
                backend="anthropic",
                exit_code=getattr(exc, "status_code", None),
                retriable=False,
            )
        if isinstance(exc, anthropic.BadRequestError):
            return BackendExecutionError(
                f"Anthropic rejected the request: {exc}",
                backend="anthropic",
                exit_code=400,
                retriable=False,
            )
        return BackendExecutionError(
            f"Anthropic request failed: {exc}",
            backend="anthropic",
            exit_code=getattr(exc, "status_code", None),
            retriable=True,
        )

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        try:
            message = await self._client.messages.create(
                model=options.model,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APIError as exc:
            raise self._translate_error(exc, options.model) from exc

        content = self._extract_text(message)
        if content:
            yield content

    async def list_models(self) -> list[str]:
        try:
            page = await self._client.models.list()
        except anthropic.APIError as exc:
            raise self._translate_error(exc, "-") from exc
        return [item.id for item in page.data if getattr(item, "id", None)]
