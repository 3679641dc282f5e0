from prassist.backends.anthropic_sdk import AnthropicBackend
from prassist.backends.base import (
    AgentBackend,
    BackendAuthenticationError,
    BackendExecutionError,
    BackendProcessError,
    BackendTimeoutError,
    GenerationOptions,
    ModelNotFoundError,
)
from prassist.backends.claude import ClaudeCodeBackend
from prassist.backends.codex import CodexBackend
from prassist.backends.openai_sdk import OpenAIBackend
from prassist.backends.resilient import ResilientBackend, RetryPolicy

__all__ = [
    "AgentBackend",
    "AnthropicBackend",
    "BackendAuthenticationError",
    "BackendExecutionError",
    "BackendProcessError",
    "BackendTimeoutError",
    "ClaudeCodeBackend",
    "CodexBackend",
    "GenerationOptions",
    "ModelNotFoundError",
    "OpenAIBackend",
    "ResilientBackend",
    "RetryPolicy",
]
