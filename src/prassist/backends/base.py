from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass


class BackendExecutionError(RuntimeError):
    """Raised when a backend request fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when backend execution exceeds configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when backend process lifecycle fails."""


class BackendAuthenticationError(BackendExecutionError):
    """Raised when the provider rejects the credentials."""


class ModelNotFoundError(BackendExecutionError):
    """Raised when the configured model name is unknown to the provider."""


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    model: str
    max_tokens: int = 3000
    temperature: float = 0.2


class AgentBackend(ABC):
    @abstractmethod
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        """Run one generation request and stream textual chunks."""
