from __future__ import annotations

from prassist.config import ContextConfig
from prassist.git import GitCommandError, GitRepository

TRUNCATION_MARKER = "\n...truncated..."


def truncate_text(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max_length]}{TRUNCATION_MARKER}"


def _read_excerpt(repo: GitRepository, relative_path: str, max_length: int) -> str | None:
    target = repo.root / relative_path
    if not target.is_file():
        return None
    try:
        content = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    return truncate_text(content, max_length)


async def build_repository_context(
    repo: GitRepository, config: ContextConfig | None = None
) -> str:
    """Text snapshot of the working tree handed to the model with each request."""

    config = config or ContextConfig()
    try:
        files = await repo.list_worktree_files()
    except GitCommandError:
        files = []
    listing = files[: config.max_tracked_files]

    sections = [f"Files (first {config.max_tracked_files}):"]
    sections.append("\n".join(listing) or "(no files)")
    for relative_path in config.excerpt_files:
        excerpt = _read_excerpt(repo, relative_path, config.excerpt_chars)
        if excerpt:
            sections.append(f"\n{relative_path}:")
            sections.append(excerpt)
    return "\n".join(sections)
