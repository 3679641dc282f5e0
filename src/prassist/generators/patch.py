from __future__ import annotations

from prassist.backends.base import AgentBackend, GenerationOptions
from prassist.context import truncate_text
from prassist.generators.base import EventHook, Generator
from prassist.patching.normalizer import extract_unified_diff


class PatchGenerator(Generator):
    role = "patch"
    system_prompt = (
        "Return ONLY a unified diff patch that can be applied with git apply. "
        "Do not include explanations, markdown, or code fences. "
        "If no changes are needed, return an empty response."
    )

    def __init__(
        self,
        backend: AgentBackend,
        options: GenerationOptions,
        *,
        context_chars: int = 12000,
        event_hook: EventHook | None = None,
    ) -> None:
        super().__init__(backend, options, event_hook=event_hook)
        self.context_chars = context_chars

    def build_user_prompt(self, prompt: str, context: str) -> str:
        return (
            f"Prompt:\n{prompt}\n\n"
            f"Context:\n{truncate_text(context, self.context_chars)}\n\n"
            "Output:"
        )

    async def generate(self, prompt: str, context: str) -> str:
        response = await self.complete(self.build_user_prompt(prompt, context))
        return extract_unified_diff(response.content)
