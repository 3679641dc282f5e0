"""Apply a model-produced patch to the working tree through ordered fallbacks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from prassist.config import STATE_DIRNAME
from prassist.errors import NonDiffResponseError, PatchApplyError, PathEscapeError
from prassist.git import GitCommandError, GitRepository
from prassist.patching.normalizer import (
    NormalizedPatch,
    extract_file_path_from_prompt,
    extract_new_file_content,
    extract_patch_paths,
    mark_as_existing_file,
    mark_as_new_file,
    normalize_patch,
)

if TYPE_CHECKING:
    from prassist.generators.file_content import FileContentGenerator
    from prassist.generators.patch import PatchGenerator

PATCH_DIRNAME = "patches"


class OutcomeKind(StrEnum):
    APPLIED = "applied"
    APPLIED_VIA_THREE_WAY = "applied_via_three_way"
    APPLIED_VIA_FILE_WRITE = "applied_via_file_write"
    NO_CHANGE = "no_change"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    kind: OutcomeKind
    strategy: str
    path: str | None = None
    reason: str = ""
    error: Exception | None = field(default=None, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.kind is not OutcomeKind.FAILED


@dataclass(slots=True)
class StrategyResult:
    status: Literal["applied", "proceed", "fatal"]
    outcome: ApplyOutcome | None = None
    error: Exception | None = None

    @classmethod
    def applied(cls, outcome: ApplyOutcome) -> StrategyResult:
        return cls(status="applied", outcome=outcome)

    @classmethod
    def proceed(cls) -> StrategyResult:
        return cls(status="proceed")

    @classmethod
    def fatal(cls, error: Exception) -> StrategyResult:
        return cls(status="fatal", error=error)


@dataclass(slots=True)
class ApplyAttempt:
    """State shared by the strategies while one patch works through the cascade."""

    prompt: str
    context: str
    label: str
    patch: NormalizedPatch
    patch_path: Path
    target: str | None
    apply_error: str = ""
    three_way_error: str = ""
    history: list[str] = field(default_factory=list)


Strategy = Callable[[ApplyAttempt], Awaitable[StrategyResult]]


class PatchApplier:
    def __init__(
        self,
        repo: GitRepository,
        patch_generator: PatchGenerator,
        file_generator: FileContentGenerator,
        *,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.repo = repo
        self.patch_generator = patch_generator
        self.file_generator = file_generator
        self.event_hook = event_hook
        self.patch_dir = repo.root / STATE_DIRNAME / PATCH_DIRNAME
        self.strategies: tuple[tuple[str, Strategy], ...] = (
            ("direct", self._apply_direct),
            ("new_file", self._write_new_file),
            ("three_way", self._apply_three_way),
            ("regenerate", self._apply_regenerated),
            ("create_missing", self._create_missing_file),
            ("replace_file", self._replace_whole_file),
        )

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    async def apply(
        self,
        prompt: str,
        context: str,
        *,
        label: str,
        allow_empty: bool = False,
    ) -> ApplyOutcome:
        """Generate a patch for ``prompt`` and land it, raising once nothing works."""

        outcome = await self.attempt(prompt, context, label=label, allow_empty=allow_empty)
        if outcome.error is not None:
            raise outcome.error
        return outcome

    async def attempt(
        self,
        prompt: str,
        context: str,
        *,
        label: str,
        allow_empty: bool = False,
    ) -> ApplyOutcome:
        raw = await self.patch_generator.generate(prompt, context)
        patch = normalize_patch(raw)

        if patch.is_empty:
            if allow_empty:
                self._emit({"event": "patch_empty", "label": label})
                return ApplyOutcome(OutcomeKind.NO_CHANGE, strategy="empty")
            raise NonDiffResponseError()

        if not patch.is_diff:
            prompt_path = extract_file_path_from_prompt(prompt)
            if prompt_path is None:
                raise NonDiffResponseError()
            result = self._write_file(prompt_path, patch.text, strategy="non_diff_write")
            return self._settle(result, label)

        target = patch.primary_path or extract_file_path_from_prompt(prompt)
        if target is not None:
            target_path = self._resolve(target)
            if target_path is None:
                raise PathEscapeError(target)
            if not target_path.exists():
                patch = normalize_patch(mark_as_new_file(patch.text))
            elif "new file mode" in patch.text:
                patch = normalize_patch(mark_as_existing_file(patch.text, target))

        self.patch_dir.mkdir(parents=True, exist_ok=True)
        attempt = ApplyAttempt(
            prompt=prompt,
            context=context,
            label=label,
            patch=patch,
            patch_path=self.patch_dir / f"{label}.patch",
            target=target,
        )
        attempt.patch_path.write_text(patch.text, encoding="utf-8")

        for name, strategy in self.strategies:
            result = await strategy(attempt)
            attempt.history.append(f"{name}:{result.status}")
            self._emit(
                {
                    "event": "patch_strategy",
                    "label": label,
                    "strategy": name,
                    "status": result.status,
                }
            )
            if result.status == "proceed":
                continue
            if result.status == "fatal":
                assert result.error is not None
                raise result.error
            attempt.patch_path.unlink(missing_ok=True)
            return self._settle(result, label)

        error = PatchApplyError(
            patch_path=attempt.patch_path,
            apply_error=attempt.apply_error,
            three_way_error=attempt.three_way_error,
            label=label,
        )
        self._emit(
            {
                "event": "patch_failed",
                "label": label,
                "patch_path": str(attempt.patch_path),
                "history": list(attempt.history),
            }
        )
        return ApplyOutcome(
            OutcomeKind.FAILED,
            strategy="exhausted",
            path=attempt.target,
            reason=str(error),
            error=error,
        )

    def _settle(self, result: StrategyResult, label: str) -> ApplyOutcome:
        if result.status == "fatal":
            assert result.error is not None
            raise result.error
        assert result.outcome is not None
        self._emit(
            {
                "event": "patch_applied",
                "label": label,
                "kind": result.outcome.kind.value,
                "strategy": result.outcome.strategy,
                "path": result.outcome.path,
            }
        )
        return result.outcome

    def _resolve(self, relative_path: str) -> Path | None:
        candidate = (self.repo.root / relative_path).resolve()
        if not candidate.is_relative_to(self.repo.root):
            return None
        relative = candidate.relative_to(self.repo.root)
        if relative.parts and relative.parts[0] == ".git":
            return None
        return candidate

    def _write_file(self, relative_path: str, content: str, *, strategy: str) -> StrategyResult:
        target = self._resolve(relative_path)
        if target is None:
            return StrategyResult.fatal(PathEscapeError(relative_path))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content.rstrip("\n") + "\n", encoding="utf-8")
        return StrategyResult.applied(
            ApplyOutcome(OutcomeKind.APPLIED_VIA_FILE_WRITE, strategy=strategy, path=relative_path)
        )

    def _target_exists(self, attempt: ApplyAttempt) -> bool:
        if attempt.target is None:
            return False
        target = self._resolve(attempt.target)
        return target is not None and target.is_file()

    def _focused_context(self, attempt: ApplyAttempt, closing: str) -> str | None:
        if not self._target_exists(attempt):
            return None
        assert attempt.target is not None
        target = self.repo.root / attempt.target
        try:
            current = target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None
        return f"File: {attempt.target}\nCurrent contents:\n{current}\n\n{closing}"

    async def _check_and_apply(self, patch_path: Path) -> str | None:
        try:
            await self.repo.check_patch(patch_path)
            await self.repo.apply_patch(patch_path)
        except GitCommandError as exc:
            return str(exc)
        return None

    async def _apply_direct(self, attempt: ApplyAttempt) -> StrategyResult:
        error = await self._check_and_apply(attempt.patch_path)
        if error is not None:
            attempt.apply_error = error
            return StrategyResult.proceed()
        return StrategyResult.applied(
            ApplyOutcome(OutcomeKind.APPLIED, strategy="direct", path=attempt.target)
        )

    async def _write_new_file(self, attempt: ApplyAttempt) -> StrategyResult:
        if attempt.target is None or self._target_exists(attempt):
            return StrategyResult.proceed()
        if not attempt.patch.is_new_file:
            return StrategyResult.proceed()
        content = extract_new_file_content(attempt.patch.text)
        if content is None:
            return StrategyResult.proceed()
        return self._write_file(attempt.target, content, strategy="new_file")

    async def _apply_three_way(self, attempt: ApplyAttempt) -> StrategyResult:
        # --3way works against the index, so stage the current contents of the
        # touched files first and put everything back if the merge fails.
        paths = extract_patch_paths(attempt.patch.text)
        snapshot: dict[str, bytes | None] = {}
        for relative_path in paths:
            resolved = self._resolve(relative_path)
            if resolved is None:
                return StrategyResult.fatal(PathEscapeError(relative_path))
            snapshot[relative_path] = resolved.read_bytes() if resolved.is_file() else None
        existing = [path for path, content in snapshot.items() if content is not None]

        try:
            await self.repo.stage_paths(existing)
            await self.repo.apply_patch_three_way(attempt.patch_path)
        except GitCommandError as exc:
            attempt.three_way_error = str(exc)
            await self._restore(snapshot)
            return StrategyResult.proceed()
        return StrategyResult.applied(
            ApplyOutcome(
                OutcomeKind.APPLIED_VIA_THREE_WAY, strategy="three_way", path=attempt.target
            )
        )

    async def _restore(self, snapshot: dict[str, bytes | None]) -> None:
        for relative_path, content in snapshot.items():
            target = self.repo.root / relative_path
            if content is None:
                target.unlink(missing_ok=True)
            else:
                target.write_bytes(content)
        await self.repo.reset_paths(list(snapshot))

    async def _apply_regenerated(self, attempt: ApplyAttempt) -> StrategyResult:
        focused = self._focused_context(
            attempt, "Only modify this file. Output a unified diff."
        )
        if focused is None:
            return StrategyResult.proceed()
        regenerated = normalize_patch(await self.patch_generator.generate(attempt.prompt, focused))
        if regenerated.is_empty or not regenerated.is_diff:
            return StrategyResult.proceed()
        attempt.patch_path.write_text(regenerated.text, encoding="utf-8")
        if await self._check_and_apply(attempt.patch_path) is not None:
            return StrategyResult.proceed()
        return StrategyResult.applied(
            ApplyOutcome(
                OutcomeKind.APPLIED,
                strategy="regenerate",
                path=regenerated.primary_path or attempt.target,
            )
        )

    async def _create_missing_file(self, attempt: ApplyAttempt) -> StrategyResult:
        if attempt.target is None or self._target_exists(attempt):
            return StrategyResult.proceed()
        content = await self.file_generator.generate(
            f"Create the full contents for {attempt.target}.",
            attempt.context,
            file_path=attempt.target,
        )
        if not content.strip():
            return StrategyResult.proceed()
        return self._write_file(attempt.target, content, strategy="create_missing")

    async def _replace_whole_file(self, attempt: ApplyAttempt) -> StrategyResult:
        focused = self._focused_context(attempt, "Return the full updated file contents.")
        if focused is None:
            return StrategyResult.proceed()
        assert attempt.target is not None
        content = await self.file_generator.generate(
            attempt.prompt, focused, file_path=attempt.target
        )
        if not content.strip():
            return StrategyResult.proceed()
        return self._write_file(attempt.target, content, strategy="replace_file")
