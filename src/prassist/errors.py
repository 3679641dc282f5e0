from __future__ import annotations

from pathlib import Path

from prassist.backends.base import (
    BackendAuthenticationError,
    BackendExecutionError,
    BackendProcessError,
    ModelNotFoundError,
)


class PrAssistError(RuntimeError):
    """Base class for every error raised by a run."""


class PreconditionError(PrAssistError):
    """Raised when a run cannot start. Never retried."""


class DirtyWorktreeError(PreconditionError):
    def __init__(self, dirty_paths: list[str]) -> None:
        details = "\n".join(dirty_paths[:20])
        super().__init__(
            "Working tree is not clean. Commit or stash changes first.\n"
            f"Detected:\n{details}"
        )
        self.dirty_paths = list(dirty_paths)


class MissingCredentialError(PreconditionError):
    def __init__(self, credential: str, hint: str = "") -> None:
        message = f"Missing {credential}."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)
        self.credential = credential


class MissingRepositoryError(PreconditionError):
    """Raised when the GitHub owner/repo slug is unknown or malformed."""


class GenerationFormatError(PrAssistError):
    """Raised when the model answered in a shape the pipeline cannot use."""


class NonDiffResponseError(GenerationFormatError):
    def __init__(self, message: str = "Model response was not a patch.") -> None:
        super().__init__(message)


class PlanGenerationError(GenerationFormatError):
    def __init__(self, message: str = "Failed to generate execution plan.") -> None:
        super().__init__(message)


class NoChangesError(GenerationFormatError):
    def __init__(self, message: str = "The run finished without changing any file.") -> None:
        super().__init__(message)


class PatchApplyError(PrAssistError):
    """Raised once every strategy of the apply cascade failed for one patch.

    The patch artifact is left on disk at ``patch_path`` for inspection.
    """

    def __init__(
        self,
        *,
        patch_path: Path,
        apply_error: str,
        three_way_error: str = "",
        label: str = "",
    ) -> None:
        message = (
            f"The model returned an invalid patch. We saved it to {patch_path}.\n{apply_error}"
        )
        if three_way_error:
            message += f"\n{three_way_error}"
        super().__init__(message)
        self.patch_path = patch_path
        self.apply_error = apply_error
        self.three_way_error = three_way_error
        self.label = label


class PathEscapeError(PrAssistError):
    """Raised when a patch or model answer targets a path outside the repository."""


class GitHubError(PrAssistError):
    """Raised when the GitHub API rejects a request."""


class GitHubAuthError(GitHubError):
    """Raised when the device authorization flow does not yield a token."""


class IndexerError(PrAssistError):
    """Raised when the vector-index sidecar cannot be started."""


def to_user_message(error: BaseException) -> str:
    """Map a fatal error to a short message the user can act on."""

    raw = str(error)
    if isinstance(error, ModelNotFoundError) or "not_found_error" in raw:
        return (
            "Model not available. Set a valid model in prassist.toml "
            "([generation] model) or use 'claude-3-5-sonnet-latest'."
        )
    if isinstance(error, BackendAuthenticationError):
        return "The model provider rejected the API key. Run 'prassist set-key' to update it."
    if isinstance(error, DirtyWorktreeError):
        return (
            "Your repo has uncommitted changes. Commit, stash, or clean changes "
            "before running the assistant."
        )
    if isinstance(error, MissingCredentialError):
        if error.credential == "GitHub token":
            return "GitHub login is required. Run 'prassist login' to continue."
        return (
            f"{error.credential} is missing. "
            "Run 'prassist set-key' or set it in the environment."
        )
    if isinstance(error, MissingRepositoryError):
        return "Repository is missing. Set [github] repo in prassist.toml as owner/repo."
    if isinstance(error, PlanGenerationError):
        return "Could not plan the task. Try a smaller scope or run again."
    if isinstance(error, NonDiffResponseError):
        return (
            "The model response wasn't a patch. Try rephrasing the request or "
            "narrowing the scope."
        )
    if isinstance(error, NoChangesError):
        return "The model did not change any file. Try a more specific request."
    if isinstance(error, PatchApplyError):
        return (
            "The model produced a patch that could not be applied. "
            f"It was saved to {error.patch_path} for inspection."
        )
    if isinstance(error, PathEscapeError):
        return f"Refusing to write outside the repository: {raw}"
    if isinstance(error, GitHubAuthError):
        return f"GitHub sign-in failed: {raw}"
    if isinstance(error, GitHubError):
        return f"GitHub request failed: {raw}"
    if isinstance(error, IndexerError):
        return "Indexer is not configured. Set [indexer] binary_path to a local qdrant binary."
    if isinstance(error, BackendProcessError):
        return f"Generation backend is unavailable: {raw}"
    if isinstance(error, BackendExecutionError):
        return f"Generation request failed: {raw}"
    return raw or error.__class__.__name__
