from __future__ import annotations

from prassist.backends.base import AgentBackend, GenerationOptions
from prassist.context import truncate_text
from prassist.generators.base import EventHook, Generator
from prassist.patching.normalizer import strip_code_fences


class FileContentGenerator(Generator):
    role = "file_content"
    system_prompt = (
        "Return ONLY the full file contents. "
        "Do not include markdown, code fences, or explanations."
    )

    def __init__(
        self,
        backend: AgentBackend,
        options: GenerationOptions,
        *,
        context_chars: int = 6000,
        event_hook: EventHook | None = None,
    ) -> None:
        super().__init__(backend, options, event_hook=event_hook)
        self.context_chars = context_chars

    def build_user_prompt(self, prompt: str, context: str, file_path: str) -> str:
        return (
            f"File path: {file_path}\n\n"
            f"Task:\n{prompt}\n\n"
            f"Context:\n{truncate_text(context, self.context_chars)}\n\n"
            "Output:"
        )

    async def generate(self, prompt: str, context: str, *, file_path: str) -> str:
        response = await self.complete(self.build_user_prompt(prompt, context, file_path))
        return strip_code_fences(response.content).strip()
