from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from prassist.config import ContextConfig
from prassist.context import build_repository_context
from prassist.generators.planner import PlanGenerator, PlanStep
from prassist.git import GitRepository
from prassist.patching.cascade import ApplyOutcome, PatchApplier


def build_step_prompt(request: str, step: PlanStep, index: int, total: int) -> str:
    return (
        f"Original request:\n{request}\n\n"
        f"Step {index} of {total}: {step.title}\n"
        f"Instruction:\n{step.instruction}\n\n"
        "Only make changes required for this step. "
        "Do not repeat previous steps."
    )


@dataclass(slots=True)
class PlanReport:
    steps: list[PlanStep]
    outcomes: list[ApplyOutcome] = field(default_factory=list)

    @property
    def completed_steps(self) -> int:
        return len(self.outcomes)


class PlanRunner:
    """Generate a plan and land its steps one after another."""

    def __init__(
        self,
        repo: GitRepository,
        planner: PlanGenerator,
        applier: PatchApplier,
        *,
        context_config: ContextConfig | None = None,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.repo = repo
        self.planner = planner
        self.applier = applier
        self.context_config = context_config or ContextConfig()
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    async def run(
        self,
        prompt: str,
        context: str,
        *,
        max_steps: int,
        target_count: int = 0,
        existing_files: Sequence[str] = (),
    ) -> PlanReport:
        steps = await self.planner.generate(
            prompt,
            context,
            max_steps=max_steps,
            target_count=target_count,
            existing_files=existing_files,
        )
        report = PlanReport(steps=list(steps))
        self._emit(
            {
                "event": "plan_created",
                "steps": len(steps),
                "titles": [step.title for step in steps],
            }
        )

        step_context = context
        total = len(steps)
        for index, step in enumerate(steps, start=1):
            self._emit(
                {"event": "plan_step_start", "index": index, "total": total, "title": step.title}
            )
            # A failed step raises and ends the run; earlier steps stay on disk.
            outcome = await self.applier.apply(
                build_step_prompt(prompt, step, index, total),
                step_context,
                label=f"step-{index}",
                allow_empty=True,
            )
            report.outcomes.append(outcome)
            self._emit(
                {
                    "event": "plan_step_done",
                    "index": index,
                    "total": total,
                    "kind": outcome.kind.value,
                }
            )
            step_context = await build_repository_context(self.repo, self.context_config)
        return report
