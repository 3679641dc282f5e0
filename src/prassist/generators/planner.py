from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from prassist.backends.base import AgentBackend, GenerationOptions
from prassist.context import truncate_text
from prassist.errors import PlanGenerationError
from prassist.generators.base import EventHook, Generator
from prassist.patching.normalizer import strip_code_fences


@dataclass(frozen=True, slots=True)
class PlanStep:
    title: str
    instruction: str

    @classmethod
    def coerce(cls, payload: Any) -> PlanStep | None:
        """Admit a decoded JSON entry as a step, or ``None`` when a field is blank."""

        if not isinstance(payload, dict):
            return None
        title = payload.get("title")
        instruction = payload.get("instruction")
        if not isinstance(title, str) or not isinstance(instruction, str):
            return None
        title = title.strip()
        instruction = instruction.strip()
        if not title or not instruction:
            return None
        return cls(title=title, instruction=instruction)


def parse_plan_json(raw: str) -> list[PlanStep]:
    """Decode a plan leniently: fences stripped, outermost ``[...]`` parsed."""

    cleaned = strip_code_fences(raw or "").strip()
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start < 0 or end <= start:
        raise PlanGenerationError()
    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise PlanGenerationError(f"Failed to generate execution plan: {exc}") from exc
    if not isinstance(payload, list):
        raise PlanGenerationError()

    steps = [step for step in (PlanStep.coerce(item) for item in payload) if step is not None]
    if not steps:
        raise PlanGenerationError()
    return steps


class PlanGenerator(Generator):
    role = "planner"
    system_prompt = (
        "Return ONLY valid JSON. Output a JSON array of steps, each with "
        '{"title": string, "instruction": string}. '
        "No markdown, no code fences, no extra text."
    )

    def __init__(
        self,
        backend: AgentBackend,
        options: GenerationOptions,
        *,
        context_chars: int = 6000,
        existing_files_chars: int = 2000,
        event_hook: EventHook | None = None,
    ) -> None:
        super().__init__(backend, options, event_hook=event_hook)
        self.context_chars = context_chars
        self.existing_files_chars = existing_files_chars

    def build_user_prompt(
        self,
        prompt: str,
        context: str,
        *,
        max_steps: int,
        target_count: int = 0,
        existing_files: Sequence[str] = (),
    ) -> str:
        constraints = [f"- Max {max_steps} steps."]
        if target_count > 0:
            constraints.append(f"- Target item count: {target_count}.")
        constraints.extend(
            [
                "- Steps must be executable in order.",
                "- Ensure the full set of requested items is covered.",
                "- If creating files, each step should create or update a single file "
                "and include the filename in the title.",
                "- Do not create files that already exist; update them instead.",
                "- Each step instruction must be specific enough to produce a patch.",
            ]
        )
        sections = [
            f"Task:\n{prompt}",
            f"Context summary:\n{truncate_text(context, self.context_chars)}",
        ]
        if existing_files:
            listing = truncate_text("\n".join(existing_files), self.existing_files_chars)
            sections.append(f"Existing files (partial):\n{listing}")
        sections.append("Constraints:\n" + "\n".join(constraints))
        return "\n\n".join(sections)

    async def generate(
        self,
        prompt: str,
        context: str,
        *,
        max_steps: int,
        target_count: int = 0,
        existing_files: Sequence[str] = (),
    ) -> list[PlanStep]:
        response = await self.complete(
            self.build_user_prompt(
                prompt,
                context,
                max_steps=max_steps,
                target_count=target_count,
                existing_files=existing_files,
            )
        )
        steps = parse_plan_json(response.content)
        self._emit({"event": "plan_parsed", "steps": len(steps), "max_steps": max_steps})
        return steps
