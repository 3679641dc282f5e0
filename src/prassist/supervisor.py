from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from prassist.backends.base import AgentBackend, GenerationOptions
from prassist.config import CredentialStore, PrAssistConfig
from prassist.context import build_repository_context
from prassist.errors import (
    IndexerError,
    MissingCredentialError,
    MissingRepositoryError,
    NoChangesError,
    NonDiffResponseError,
    PatchApplyError,
)
from prassist.generators import FileContentGenerator, PatchGenerator, PlanGenerator, PlanStep
from prassist.git import GitRepository
from prassist.github import GitHubClient, is_https_github_origin, parse_github_slug, split_slug
from prassist.patching.cascade import ApplyOutcome, PatchApplier
from prassist.plan_runner import PlanRunner
from prassist.sidecar import IndexerSidecar
from prassist.sizing import ExecutionTier, SizingDecision, assess_task_sizing
from prassist.state.run_log import new_run_id

SINGLE_SHOT_LABEL = "single-shot"
COMMIT_SUBJECT_CHARS = 60
PR_TITLE_CHARS = 72


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[: max_length - 3]}..."


@dataclass(slots=True)
class ExecutionReport:
    sizing: SizingDecision
    mode: Literal["single_shot", "plan"]
    outcomes: list[ApplyOutcome] = field(default_factory=list)
    plan: list[PlanStep] = field(default_factory=list)
    fallback_reason: str | None = None

    @property
    def tier(self) -> ExecutionTier:
        return self.sizing.tier


@dataclass(slots=True)
class RunSummary:
    prompt: str
    run_id: str
    started_at: str
    ended_at: str
    branch: str
    base_branch: str
    tier: ExecutionTier
    mode: str
    steps: int
    change_summary: str
    commit_message: str
    pushed: bool
    pull_request_url: str | None


class Supervisor:
    """Turns one request into a branch, a commit and, optionally, a pull request."""

    def __init__(
        self,
        repo: GitRepository,
        config: PrAssistConfig,
        backend: AgentBackend,
        *,
        credentials: CredentialStore | None = None,
        github: GitHubClient | None = None,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self.config = config
        self.backend = backend
        self.credentials = credentials or CredentialStore()
        self.github = github
        self.event_hook = event_hook
        self.now = now

        generation = config.generation
        self.patch_generator = PatchGenerator(
            backend,
            self._options(generation.patch_max_tokens),
            context_chars=generation.patch_context_chars,
            event_hook=event_hook,
        )
        self.plan_generator = PlanGenerator(
            backend,
            self._options(generation.plan_max_tokens),
            context_chars=generation.plan_context_chars,
            existing_files_chars=generation.existing_files_chars,
            event_hook=event_hook,
        )
        self.file_generator = FileContentGenerator(
            backend,
            self._options(generation.file_max_tokens),
            context_chars=generation.file_context_chars,
            event_hook=event_hook,
        )
        self.applier = PatchApplier(
            repo, self.patch_generator, self.file_generator, event_hook=event_hook
        )
        self.plan_runner = PlanRunner(
            repo,
            self.plan_generator,
            self.applier,
            context_config=config.context,
            event_hook=event_hook,
        )

    def _options(self, max_tokens: int) -> GenerationOptions:
        return GenerationOptions(
            model=self.config.generation.model,
            max_tokens=max_tokens,
            temperature=self.config.generation.temperature,
        )

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    def _step(self, message: str) -> None:
        self._emit({"event": "run_step", "message": message})

    async def execute(self, prompt: str, context: str) -> ExecutionReport:
        """Land the change for ``prompt`` in the working tree, one shot or planned."""

        sizing = assess_task_sizing(prompt, context)
        self._emit(
            {
                "event": "task_sized",
                "tier": sizing.tier.value,
                "score": sizing.score,
                "requested_count": sizing.requested_count,
                "signals": list(sizing.signals),
            }
        )
        existing_files = await self.repo.list_tracked_files()

        fallback_reason: str | None = None
        if sizing.tier is ExecutionTier.TIER_1:
            try:
                outcome = await self.applier.apply(
                    prompt, context, label=SINGLE_SHOT_LABEL, allow_empty=False
                )
            except (NonDiffResponseError, PatchApplyError) as exc:
                fallback_reason = type(exc).__name__
                self._emit({"event": "single_shot_fallback", "reason": fallback_reason})
            else:
                return ExecutionReport(sizing=sizing, mode="single_shot", outcomes=[outcome])
            max_steps = self.config.planning.fallback_max_steps
        else:
            max_steps = sizing.tier.max_steps(self.config.planning)

        report = await self.plan_runner.run(
            prompt,
            context,
            max_steps=max_steps,
            target_count=sizing.requested_count,
            existing_files=existing_files,
        )
        return ExecutionReport(
            sizing=sizing,
            mode="plan",
            outcomes=list(report.outcomes),
            plan=list(report.steps),
            fallback_reason=fallback_reason,
        )

    async def _resolve_repository_slug(self) -> str:
        slug = self.config.github.repo.strip() or parse_github_slug(await self.repo.origin_url())
        if not slug:
            raise MissingRepositoryError("Repository is missing. Enter it as owner/repo.")
        split_slug(slug)
        return slug

    def _github_client(self) -> GitHubClient:
        if self.github is not None:
            return self.github
        token = self.credentials.get("github_token")
        if not token:
            raise MissingCredentialError("GitHub token", "Run 'prassist login'.")
        self.github = GitHubClient(token, api_url=self.config.github.api_url)
        return self.github

    async def _start_indexer(self, indexer: IndexerSidecar) -> None:
        try:
            await indexer.ensure_running()
        except IndexerError as exc:
            self._emit({"event": "indexer_unavailable", "error": str(exc)})

    async def run(
        self,
        prompt: str,
        *,
        push: bool | None = None,
        open_pull_request: bool | None = None,
        indexer: IndexerSidecar | None = None,
        run_id: str | None = None,
    ) -> RunSummary:
        workflow = self.config.workflow
        if push is None:
            push = workflow.push
        if open_pull_request is None:
            open_pull_request = workflow.open_pull_request
        # A pull request needs the branch on the remote.
        open_pull_request = open_pull_request and push
        run_id = run_id or new_run_id()
        started_at = _utcnow_iso()
        self._emit({"event": "run_started", "run_id": run_id, "prompt_chars": len(prompt)})

        self._step("Validating configuration")
        slug: str | None = None
        github: GitHubClient | None = None
        if open_pull_request:
            slug = await self._resolve_repository_slug()
            github = self._github_client()

        self._step("Checking git status")
        await self.repo.ensure_clean()
        base_branch = (
            self.config.github.base_branch.strip()
            or await self.repo.detect_base_branch()
            or "main"
        )

        branch = f"{workflow.branch_prefix}{self.now().strftime('%Y%m%d-%H%M%S')}"
        self._step(f"Creating branch {branch}")
        await self.repo.create_branch(branch)

        if indexer is not None:
            await self._start_indexer(indexer)

        self._step("Collecting code context")
        context = await build_repository_context(self.repo, self.config.context)

        report = await self.execute(prompt, context)
        self._step(f"Execution tier: {report.tier.value}")

        self._step("Summarizing changes")
        await self.repo.stage_all()
        if not await self.repo.has_staged_changes():
            raise NoChangesError()
        change_summary = await self.repo.diff_summary(cached=True)

        self._step("Committing")
        commit_message = f"{workflow.commit_prefix}{truncate(prompt, COMMIT_SUBJECT_CHARS)}"
        await self.repo.commit(commit_message)

        pushed = False
        if push:
            self._step("Pushing")
            origin = await self.repo.origin_url()
            token = self.credentials.get("github_token")
            if is_https_github_origin(origin) and token:
                await self.repo.push_with_token(branch, token)
            else:
                await self.repo.push(branch)
            pushed = True

        pull_request_url: str | None = None
        if github is not None and slug is not None:
            self._step("Creating PR")
            pull_request_url = await github.create_pull_request(
                slug,
                title=truncate(prompt, PR_TITLE_CHARS),
                head=branch,
                base=base_branch,
                body=f"Prompt:\n{prompt}",
            )

        summary = RunSummary(
            prompt=prompt,
            run_id=run_id,
            started_at=started_at,
            ended_at=_utcnow_iso(),
            branch=branch,
            base_branch=base_branch,
            tier=report.tier,
            mode=report.mode,
            steps=len(report.outcomes),
            change_summary=change_summary,
            commit_message=commit_message,
            pushed=pushed,
            pull_request_url=pull_request_url,
        )
        self._emit(
            {
                "event": "run_completed",
                "run_id": run_id,
                "branch": branch,
                "mode": report.mode,
                "pull_request_url": pull_request_url,
            }
        )
        return summary
